"""
templates.py — Evaluation and committee template registry.

Templates are append-only. An approved decision is only defensible if
the criteria it was scored against still exist exactly as they were,
so there is no update and no delete here: a ministry that wants
different weights registers a new template and points new assignments
at it.

The registry starts out with the reference templates every ministry
uses (one or more per methodology). These are the same definitions the
portal shipped with, ids included, so existing assignments keep
resolving.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Dict, List, Optional, Union

from tender_evaluation.config import config
from tender_evaluation.errors import InvalidInputError, NotFoundError
from tender_evaluation.schemas import (
    CommitteeTemplate,
    EvaluationTemplate,
    TemplateDefinition,
)

logger = logging.getLogger(__name__)


def _criteria(*rows) -> List[Dict[str, Any]]:
    return [
        {"id": str(i), "name": name, "max_score": max_score, "kind": kind}
        for i, (name, max_score, kind) in enumerate(rows, start=1)
    ]


_QCBS_STANDARD = _criteria(
    ("Qualifications", 20, "technical"),
    ("Methodology", 25, "technical"),
    ("Experience", 15, "technical"),
    ("Team Competence", 10, "technical"),
    ("Financial Proposal", 30, "financial"),
)

_LCS_STANDARD = _criteria(
    ("Technical Qualification", 70, "technical"),
    ("Financial Proposal", 30, "financial"),
)

REFERENCE_EVALUATION_TEMPLATES: List[Dict[str, Any]] = [
    {
        "id": "ET-001",
        "name": "Quality and Cost-Based Selection (QCBS)",
        "description": "70% Technical, 30% Financial evaluation",
        "category": "Healthcare",
        "methodology": "QCBS",
        "criteria": _QCBS_STANDARD,
    },
    {
        "id": "ET-002",
        "name": "Least Cost Selection (LCS)",
        "description": "Lowest cost among technically qualified bidders",
        "category": "Infrastructure",
        "methodology": "LCS",
        "criteria": _LCS_STANDARD,
    },
    {
        "id": "ET-003",
        "name": "Quality-Based Selection (QBS)",
        "description": "100% Technical evaluation, price negotiated later",
        "category": "Services",
        "methodology": "QBS",
        "criteria": _criteria(
            ("Technical Approach", 40, "technical"),
            ("Team Qualifications", 30, "technical"),
            ("Company Experience", 30, "technical"),
        ),
    },
    {
        "id": "ET-004",
        "name": "Fixed Budget Selection (FBS)",
        "description": "Best technical proposal within fixed budget",
        "category": "Education",
        "methodology": "FBS",
        "criteria": _criteria(
            ("Technical Proposal", 50, "technical"),
            ("Implementation Plan", 30, "technical"),
            ("Budget Compliance", 20, "financial"),
        ),
    },
    {
        "id": "ET-005",
        "name": "Simplified QCBS for Healthcare",
        "description": "Simplified QCBS template for healthcare procurement",
        "category": "Healthcare",
        "methodology": "QCBS",
        "criteria": _QCBS_STANDARD,
    },
    {
        "id": "ET-006",
        "name": "Infrastructure LCS Standard",
        "description": "Standard LCS template for infrastructure projects",
        "category": "Infrastructure",
        "methodology": "LCS",
        "criteria": _LCS_STANDARD,
    },
    {
        "id": "ET-007",
        "name": "Education Technology QCBS",
        "description": "QCBS template optimized for education technology",
        "category": "Education",
        "methodology": "QCBS",
        "criteria": _criteria(
            ("Technical Specifications", 25, "technical"),
            ("Implementation Methodology", 20, "technical"),
            ("Support and Training", 15, "technical"),
            ("Company Experience", 10, "technical"),
            ("Financial Proposal", 30, "financial"),
        ),
    },
    {
        "id": "ET-008",
        "name": "General Goods LCS",
        "description": "LCS template for general goods and supplies",
        "category": "General",
        "methodology": "LCS",
        "criteria": _criteria(
            ("Product Quality", 40, "technical"),
            ("Delivery Capability", 30, "technical"),
            ("Financial Proposal", 30, "financial"),
        ),
    },
]

REFERENCE_COMMITTEE_TEMPLATES: List[Dict[str, Any]] = [
    {"id": "CT-001", "name": "Healthcare Procurement Committee",
     "description": "Standard template for healthcare procurement evaluations",
     "category": "Healthcare"},
    {"id": "CT-002", "name": "Infrastructure Evaluation Committee",
     "description": "Template for construction and infrastructure projects",
     "category": "Infrastructure"},
    {"id": "CT-003", "name": "Education Technology Committee",
     "description": "Specialized for educational technology procurement",
     "category": "Education"},
    {"id": "CT-004", "name": "General Goods Committee",
     "description": "Standard template for general goods and supplies",
     "category": "General"},
    {"id": "CT-005", "name": "Professional Services Committee",
     "description": "Template for consultancy and professional services",
     "category": "Services"},
]


class TemplateRegistry:
    """
    Read-mostly registry of evaluation and committee templates.

    Usage:
        registry = TemplateRegistry()
        template = registry.get_template("ET-001")
        custom = registry.create_template({"name": "...", "criteria": [...]})
    """

    def __init__(self, seed: Optional[bool] = None):
        self._templates: Dict[str, EvaluationTemplate] = {}
        self._committees: Dict[str, CommitteeTemplate] = {}
        self._lock = threading.RLock()

        if seed is None:
            seed = config.store.seed_reference_templates
        if seed:
            for raw in REFERENCE_EVALUATION_TEMPLATES:
                template = EvaluationTemplate.model_validate(raw)
                self._templates[template.id] = template
            for raw in REFERENCE_COMMITTEE_TEMPLATES:
                committee = CommitteeTemplate.model_validate(raw)
                self._committees[committee.id] = committee
            logger.debug(
                "Seeded %d evaluation templates, %d committee templates",
                len(self._templates), len(self._committees),
            )

    # ── Evaluation templates ─────────────────────────────────────────

    def get_template(self, template_id: str) -> EvaluationTemplate:
        template = self.find_template(template_id)
        if template is None:
            raise NotFoundError(
                "template-not-found", f"Evaluation template '{template_id}' not found"
            )
        return template

    def find_template(self, template_id: str) -> Optional[EvaluationTemplate]:
        return self._templates.get(template_id)

    def list_templates(self) -> List[EvaluationTemplate]:
        return list(self._templates.values())

    def create_template(
        self,
        definition: Union[TemplateDefinition, Dict[str, Any]],
    ) -> EvaluationTemplate:
        """
        Register a new template under a fresh id.

        A template without criteria is accepted by the schema (the portal
        lets admins sketch one out) but can't score anything, so we refuse
        it here rather than letting an assignment bind to it.
        """
        if isinstance(definition, TemplateDefinition):
            definition = definition.model_dump()
        try:
            parsed = TemplateDefinition.model_validate(definition)
        except ValueError as exc:
            raise InvalidInputError("invalid-template", str(exc)) from exc

        if not parsed.criteria:
            raise InvalidInputError(
                "invalid-template", "An evaluation template needs at least one criterion"
            )

        with self._lock:
            template_id = f"ET-{uuid.uuid4().hex[:8].upper()}"
            template = EvaluationTemplate(id=template_id, **parsed.model_dump())
            self._templates[template_id] = template

        logger.info(
            "Created evaluation template %s (%s, %d criteria)",
            template.id, template.methodology.value, len(template.criteria),
        )
        return template

    # ── Committee templates ──────────────────────────────────────────

    def find_committee_template(self, template_id: str) -> Optional[CommitteeTemplate]:
        return self._committees.get(template_id)

    def list_committee_templates(self) -> List[CommitteeTemplate]:
        return list(self._committees.values())
