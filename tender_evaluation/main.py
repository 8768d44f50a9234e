"""
main.py — Engine facade and CLI for the tender evaluation engine.

TenderEvaluationEngine wires the registry, assignment store, submission
intake and decision gate together and exposes the operations the portal
calls. Writes for one tender are serialised with a per-tender lock: the
HTTP layer runs handlers on a thread pool, and the one-live-assignment /
one-live-decision rules must hold even when two requests for the same
tender land together.

The CLI runs a whole evaluation from a JSON scenario file, which is how
committee secretaries dry-run a methodology before binding it:

    python -m tender_evaluation.main scenario.json --approve chair-01

Scenario shape:

    {
      "template": {...definition...}          # or "evaluation_template_id": "ET-001"
      "assignment": {"tender_id": "T1", "committee_template_id": "CT-001",
                     "window": {"start": "...", "end": "..."}},
      "submissions": [
        {"evaluator_id": "e1", "bidder_name": "Acme", "scores": {"tech": 50, "fin": 30}},
        {"evaluator_id": "e2", "items": [{"bidder_name": "Acme", "criterion_id": "tech", "score": 54}]}
      ]
    }
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Union

from tender_evaluation.assignments import AssignmentStore
from tender_evaluation.config import config
from tender_evaluation.decisions import DecisionGate, DecisionStore
from tender_evaluation.errors import EvaluationError
from tender_evaluation.schemas import (
    AssignmentStatus,
    ChairmanDecision,
    CommitteeAssignment,
    CommitteeTemplate,
    EvaluationTemplate,
    EvaluationWindow,
    FinalScore,
    ScoreSubmission,
    TemplateDefinition,
)
from tender_evaluation.submissions import ScoreSubmissions, SubmissionStore
from tender_evaluation.templates import TemplateRegistry
from tender_evaluation.validation import ItemLike, legacy_score_items

logger = logging.getLogger("tender_evaluation")


class TenderEvaluationEngine:
    """
    End-to-end evaluation engine.

    Usage:
        engine = TenderEvaluationEngine()
        engine.create_assignment("T1", "ET-001", "CT-001", window)
        engine.submit_score("T1", "eval-1", "Acme", [...])
        engine.get_final_scores("T1")
        engine.approve("T1", "chair-1")
    """

    def __init__(self, registry: Optional[TemplateRegistry] = None):
        self.registry = registry or TemplateRegistry()
        self.assignments = AssignmentStore(self.registry)
        self.submissions = ScoreSubmissions(
            self.assignments, self.registry, SubmissionStore()
        )
        self.gate = DecisionGate(
            self.assignments, self.registry, self.submissions, DecisionStore()
        )
        # one lock per tender seen, kept for the life of the process
        self._tender_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _tender_lock(self, tender_id: str):
        with self._locks_guard:
            lock = self._tender_locks.setdefault(tender_id, threading.Lock())
        with lock:
            yield

    # ── Templates ────────────────────────────────────────────────────

    def create_template(
        self, definition: Union[TemplateDefinition, Dict[str, Any]]
    ) -> EvaluationTemplate:
        return self.registry.create_template(definition)

    def get_template(self, template_id: str) -> EvaluationTemplate:
        return self.registry.get_template(template_id)

    def list_templates(self) -> List[EvaluationTemplate]:
        return self.registry.list_templates()

    def list_committee_templates(self) -> List[CommitteeTemplate]:
        return self.registry.list_committee_templates()

    # ── Assignments ──────────────────────────────────────────────────

    def create_assignment(
        self,
        tender_id: str,
        template_id: str,
        committee_template_id: str,
        window: Union[EvaluationWindow, Dict[str, Any]],
        notes: str = "",
        created_by: str = "",
        status: Union[str, AssignmentStatus] = AssignmentStatus.DRAFT,
    ) -> CommitteeAssignment:
        with self._tender_lock(tender_id):
            return self.assignments.create(
                tender_id, template_id, committee_template_id, window,
                notes=notes, created_by=created_by, status=status,
            )

    def get_assignment(self, tender_id: str) -> CommitteeAssignment:
        return self.assignments.get_by_tender_id(tender_id)

    def list_assignments(self, status: Optional[str] = None) -> List[CommitteeAssignment]:
        return self.assignments.list_assignments(status)

    def list_evaluator_assignments(self, evaluator_id: str) -> List[CommitteeAssignment]:
        return self.assignments.list_for_evaluator(evaluator_id)

    def set_assignment_status(
        self, assignment_id: str, status: Union[str, AssignmentStatus]
    ) -> CommitteeAssignment:
        tender_id = self.assignments.get(assignment_id).tender_id
        with self._tender_lock(tender_id):
            return self.assignments.set_status(assignment_id, status)

    # ── Scores ───────────────────────────────────────────────────────

    def submit_score(
        self,
        tender_id: str,
        evaluator_id: str,
        bidder_name: str,
        items: Iterable[ItemLike],
        draft: bool = False,
    ) -> ScoreSubmission:
        with self._tender_lock(tender_id):
            return self.submissions.submit(
                tender_id, evaluator_id, bidder_name, items, draft=draft
            )

    def submit_batch_scores(
        self,
        tender_id: str,
        evaluator_id: str,
        items: Iterable[ItemLike],
        draft: bool = False,
    ) -> ScoreSubmission:
        with self._tender_lock(tender_id):
            return self.submissions.submit_batch(
                tender_id, evaluator_id, items, draft=draft
            )

    def get_scores(self, tender_id: str) -> List[ScoreSubmission]:
        return self.submissions.get_scores(tender_id)

    def get_final_scores(self, tender_id: str) -> List[FinalScore]:
        """Ranked standings, recomputed on every call. [] before any scores."""
        if not self.submissions.get_scores(tender_id):
            return []
        _, ranking = self.gate.compute_ranking(tender_id)
        return ranking

    # ── Decisions ────────────────────────────────────────────────────

    def approve(
        self,
        tender_id: str,
        approver_id: str,
        winning_bidder_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ChairmanDecision:
        with self._tender_lock(tender_id):
            return self.gate.approve(tender_id, approver_id, winning_bidder_name, notes)

    def request_revision(
        self, tender_id: str, approver_id: str, reason: str
    ) -> ChairmanDecision:
        with self._tender_lock(tender_id):
            return self.gate.request_revision(tender_id, approver_id, reason)

    def get_decision(self, tender_id: str) -> ChairmanDecision:
        return self.gate.get_decision(tender_id)

    def get_decision_history(self, tender_id: str) -> List[ChairmanDecision]:
        return self.gate.decision_history(tender_id)

    # ── Scenario runs (CLI) ──────────────────────────────────────────

    def run_scenario(
        self,
        scenario: Dict[str, Any],
        approver_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Load a scenario, score it and optionally approve it.

        Returns a JSON-ready dict with the assignment, final scores and
        (when approved) the decision.
        """
        if "template" in scenario:
            template_id = self.create_template(scenario["template"]).id
        else:
            template_id = scenario.get("evaluation_template_id", "")

        assignment_data = scenario.get("assignment", {})
        assignment = self.create_assignment(
            assignment_data.get("tender_id", ""),
            template_id,
            assignment_data.get("committee_template_id", ""),
            assignment_data.get("window", {}),
            notes=assignment_data.get("notes", ""),
            created_by=assignment_data.get("created_by", ""),
            status=assignment_data.get("status", AssignmentStatus.ACTIVE),
        )
        tender_id = assignment.tender_id

        for entry in scenario.get("submissions", []):
            if "items" in entry:
                self.submit_batch_scores(tender_id, entry.get("evaluator_id", ""), entry["items"])
            else:
                self.submit_score(
                    tender_id,
                    entry.get("evaluator_id", ""),
                    entry.get("bidder_name", ""),
                    legacy_score_items(entry.get("scores", {})),
                )

        result: Dict[str, Any] = {
            "final_scores": [s.model_dump(mode="json") for s in self.get_final_scores(tender_id)],
        }
        if approver_id:
            result["decision"] = self.approve(tender_id, approver_id).model_dump(mode="json")
        result["assignment"] = self.get_assignment(tender_id).model_dump(mode="json")
        return result


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="tender_evaluation",
        description="Score, rank and optionally approve a tender evaluation scenario",
    )
    parser.add_argument("scenario", help="Path to a JSON scenario file")
    parser.add_argument("--output", "-o", default=None, help="JSON output path (default: stdout)")
    parser.add_argument("--approve", metavar="APPROVER_ID", default=None,
                        help="Approve the ranking as this chairman")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        with open(args.scenario, "r", encoding="utf-8") as f:
            scenario = json.load(f)
    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        sys.exit(1)
    except json.JSONDecodeError as exc:
        logger.error("Invalid scenario JSON: %s", exc)
        sys.exit(1)

    engine = TenderEvaluationEngine()
    try:
        result = engine.run_scenario(scenario, approver_id=args.approve)
    except EvaluationError as exc:
        logger.error("%s [%s]: %s", exc.category, exc.code, exc.message)
        sys.exit(1)

    if args.output:
        os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(result, f, indent=2, ensure_ascii=False)
        logger.info("Output written to: %s", args.output)
    else:
        print(json.dumps(result, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
