"""
schemas.py — Pydantic v2 models for the evaluation engine.

These models are the engine's contract with the outside world and with
the stores. Templates are frozen: once an assignment points at one, the
criteria must not move under the evaluators' feet, so a changed
methodology means a new template.

Criterion ids are strings everywhere. The legacy scoring screen posted
numeric ids ({1: 18, 5: 25}); those are coerced to "1", "5" on the way
in so the rest of the engine only ever sees one identifier type.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# Marker used as the bidder key of a batched (all-bidders) submission.
ALL_BIDDERS = "__all_bidders__"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Methodology(str, Enum):
    """Procurement evaluation rule family."""
    QCBS = "QCBS"
    LCS = "LCS"
    QBS = "QBS"
    FBS = "FBS"

    @classmethod
    def parse(cls, value) -> "Methodology":
        """
        Resolve a methodology name, falling back to QCBS.

        Older templates carry free-text types ("qcbs", "Quality and Cost",
        or nothing at all). Anything we don't recognise is evaluated as
        QCBS, and we say so in the log so the template can be fixed.
        """
        if isinstance(value, cls):
            return value
        name = str(value or "").strip().upper()
        try:
            return cls(name)
        except ValueError:
            logger.warning(
                "Unknown methodology %r, falling back to QCBS weighting", value
            )
            return cls.QCBS


class CriterionKind(str, Enum):
    TECHNICAL = "technical"
    FINANCIAL = "financial"


class AssignmentStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    SUSPENDED = "suspended"


class SubmissionStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"


class SubmissionProtocol(str, Enum):
    SINGLE_BIDDER = "single_bidder"
    BATCHED = "batched"


class DecisionStatus(str, Enum):
    APPROVED = "approved"
    REVISION_REQUESTED = "revision_requested"


def _coerce_id(value):
    # bool is an int subclass; True is not a criterion id
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


# ── Templates ─────────────────────────────────────────────────────────────

class EvaluationCriterion(BaseModel):
    """One scored dimension of a bid."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    kind: CriterionKind = CriterionKind.TECHNICAL
    max_score: float = Field(..., gt=0)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_numeric_id(cls, v):
        return _coerce_id(v)


class TemplateDefinition(BaseModel):
    """Input for creating a new evaluation template."""
    name: str
    methodology: Methodology = Methodology.QCBS
    criteria: List[EvaluationCriterion] = Field(default_factory=list)
    description: str = ""
    category: str = "General"

    @field_validator("methodology", mode="before")
    @classmethod
    def parse_methodology(cls, v) -> Methodology:
        return Methodology.parse(v)

    @field_validator("name")
    @classmethod
    def name_must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("template name cannot be empty")
        return v.strip()

    @field_validator("criteria")
    @classmethod
    def criterion_ids_unique(cls, v: List[EvaluationCriterion]) -> List[EvaluationCriterion]:
        seen = set()
        for criterion in v:
            if criterion.id in seen:
                raise ValueError(f"duplicate criterion id '{criterion.id}'")
            seen.add(criterion.id)
        return v


class EvaluationTemplate(TemplateDefinition):
    """A registered, immutable evaluation methodology."""
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: datetime = Field(default_factory=utcnow)

    def criterion(self, criterion_id: str) -> Optional[EvaluationCriterion]:
        for c in self.criteria:
            if c.id == criterion_id:
                return c
        return None

    def criteria_of(self, kind: CriterionKind) -> List[EvaluationCriterion]:
        return [c for c in self.criteria if c.kind == kind]


class CommitteeTemplate(BaseModel):
    """Committee composition template (membership lives elsewhere)."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    category: str = "General"
    status: str = "active"


# ── Assignments ───────────────────────────────────────────────────────────

class EvaluationWindow(BaseModel):
    start: datetime
    end: datetime


class CommitteeAssignment(BaseModel):
    """Binding of a tender to an evaluation template and committee."""
    model_config = ConfigDict(frozen=True)

    id: str
    tender_id: str
    evaluation_template_id: str
    committee_template_id: str
    window: EvaluationWindow
    status: AssignmentStatus = AssignmentStatus.DRAFT
    notes: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    created_by: str = ""

    @property
    def is_live(self) -> bool:
        return self.status in (AssignmentStatus.DRAFT, AssignmentStatus.ACTIVE)


# ── Scores ────────────────────────────────────────────────────────────────

class ScoreItem(BaseModel):
    """A single (criterion, score) pair, optionally tagged with a bidder."""
    criterion_id: str
    score: float
    bidder_name: Optional[str] = None

    @field_validator("criterion_id", mode="before")
    @classmethod
    def coerce_numeric_id(cls, v):
        return _coerce_id(v)


class ScoreSubmission(BaseModel):
    """One evaluator's scores for one bidder (or all bidders, batched)."""
    id: str
    tender_id: str
    evaluator_id: str
    bidder_name: str
    items: List[ScoreItem]
    total_score: float = 0.0
    submitted_at: datetime = Field(default_factory=utcnow)
    status: SubmissionStatus = SubmissionStatus.SUBMITTED
    protocol: SubmissionProtocol = SubmissionProtocol.SINGLE_BIDDER

    def scored_items(self):
        """Yield (bidder_name, item) with the bidder resolved per item."""
        for item in self.items:
            yield (item.bidder_name or self.bidder_name), item


class FinalScore(BaseModel):
    """Derived standing of one bidder. Never stored on its own."""
    model_config = ConfigDict(frozen=True)

    bidder_name: str
    technical_score: float = 0.0
    financial_score: float = 0.0
    final_score: float = 0.0
    rank: int = 0
    evaluator_count: int = 0


# ── Decisions ─────────────────────────────────────────────────────────────

class ChairmanDecision(BaseModel):
    """A chairman verdict. The ranking is a snapshot taken at decision time."""
    model_config = ConfigDict(frozen=True)

    id: str
    tender_id: str
    status: DecisionStatus
    approver_id: str
    decided_at: datetime = Field(default_factory=utcnow)
    reason: Optional[str] = None
    notes: Optional[str] = None
    winning_bidder_name: Optional[str] = None
    ranking: List[FinalScore] = Field(default_factory=list)
