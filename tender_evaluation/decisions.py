"""
decisions.py — Chairman decision gate.

Per tender, the committee chairman either approves the computed ranking
or sends it back for revision:

    no decision ──approve──────────▶ approved
         │                              │
         └──request_revision──▶ revision_requested
                                        (either may be replaced by a
                                         fresh decision of either kind)

Approving freezes the ranking as it stands, names the winner (rank 1
unless the chairman overrides it) and completes the committee
assignment. The decision is the source of truth for downstream NOC
processing: if completing the assignment fails, that is logged and the
decision stands. A suspended assignment cannot be approved until an
administrator reinstates it.

Only one decision is live per tender. Every decision filed is also
appended to a per-tender history so that replaced decisions can still
be audited.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Dict, List, Optional, Tuple

from tender_evaluation.assignments import AssignmentStore
from tender_evaluation.config import config
from tender_evaluation.errors import (
    EvaluationError,
    InvalidInputError,
    NotFoundError,
    StateConflictError,
)
from tender_evaluation.schemas import (
    AssignmentStatus,
    ChairmanDecision,
    CommitteeAssignment,
    DecisionStatus,
    FinalScore,
)
from tender_evaluation.scoring import compute_final_scores
from tender_evaluation.submissions import ScoreSubmissions
from tender_evaluation.templates import TemplateRegistry

logger = logging.getLogger(__name__)


class DecisionStore:
    """Live decision per tender plus an append-only history."""

    def __init__(self):
        self._live: Dict[str, ChairmanDecision] = {}
        self._history: Dict[str, List[ChairmanDecision]] = {}
        self._lock = threading.RLock()

    def put(self, decision: ChairmanDecision) -> ChairmanDecision:
        with self._lock:
            previous = self._live.get(decision.tender_id)
            self._live[decision.tender_id] = decision
            self._history.setdefault(decision.tender_id, []).append(decision)
        if previous is not None:
            logger.info(
                "Decision %s replaces %s (%s) for tender %s",
                decision.id, previous.id, previous.status.value, decision.tender_id,
            )
        return decision

    def get(self, tender_id: str) -> ChairmanDecision:
        decision = self._live.get(tender_id)
        if decision is None:
            raise NotFoundError(
                "decision-not-found", f"No chairman decision for tender '{tender_id}'"
            )
        return decision

    def history(self, tender_id: str) -> List[ChairmanDecision]:
        with self._lock:
            return list(self._history.get(tender_id, []))


class DecisionGate:
    """
    Approve / request-revision state machine.

    Usage:
        gate = DecisionGate(assignments, registry, submissions)
        decision = gate.approve("TDR-001", "chair-1")
        decision.winning_bidder_name  # top-ranked bidder
    """

    def __init__(
        self,
        assignments: AssignmentStore,
        registry: TemplateRegistry,
        submissions: ScoreSubmissions,
        store: Optional[DecisionStore] = None,
    ):
        self._assignments = assignments
        self._registry = registry
        self._submissions = submissions
        self._store = store or DecisionStore()

    def compute_ranking(self, tender_id: str) -> Tuple[CommitteeAssignment, List[FinalScore]]:
        """
        Current standings for a tender, recomputed from live submissions.

        Raises:
            NotFoundError: No assignment, or its template can't be resolved.
        """
        assignment = self._assignments.get_by_tender_id(tender_id)
        template = self._registry.find_template(assignment.evaluation_template_id)
        if template is None:
            logger.error(
                "Cannot rank tender %s: assignment %s references unknown template %s",
                tender_id, assignment.id, assignment.evaluation_template_id,
            )
            raise NotFoundError(
                "template-not-found",
                f"Evaluation template '{assignment.evaluation_template_id}' not found",
            )
        ranking = compute_final_scores(self._submissions.get_scores(tender_id), template)
        return assignment, ranking

    def approve(
        self,
        tender_id: str,
        approver_id: str,
        winning_bidder_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ChairmanDecision:
        """
        Approve the current ranking.

        Raises:
            InvalidInputError: Missing approver, or an override winner that
                isn't among the ranked bidders.
            NotFoundError: assignment-not-found, template-not-found or
                no-scores.
            StateConflictError: The tender's assignment is suspended.
        """
        _require(tender_id, "tenderId")
        _require(approver_id, "approverId")

        assignment, ranking = self.compute_ranking(tender_id)
        if assignment.status == AssignmentStatus.SUSPENDED:
            raise StateConflictError(
                "assignment-suspended",
                f"Assignment {assignment.id} for tender '{tender_id}' is suspended",
            )
        if not ranking:
            raise NotFoundError(
                "no-scores", f"No aggregated scores to approve for tender '{tender_id}'"
            )

        if winning_bidder_name:
            ranked_names = {s.bidder_name for s in ranking}
            if winning_bidder_name not in ranked_names:
                raise InvalidInputError(
                    "unknown-bidder",
                    f"Bidder '{winning_bidder_name}' is not in the ranking for '{tender_id}'",
                )
            winner = winning_bidder_name
            if winner != ranking[0].bidder_name:
                logger.warning(
                    "Chairman %s overrode top-ranked bidder '%s' with '%s' on tender %s",
                    approver_id, ranking[0].bidder_name, winner, tender_id,
                )
        else:
            winner = ranking[0].bidder_name

        decision = self._store.put(ChairmanDecision(
            id=f"CD-{uuid.uuid4().hex[:8].upper()}",
            tender_id=tender_id,
            status=DecisionStatus.APPROVED,
            approver_id=approver_id,
            notes=notes,
            winning_bidder_name=winner,
            ranking=[s.model_copy() for s in ranking],
        ))
        logger.info(
            "Tender %s approved by %s, winner '%s' (%d bidders ranked)",
            tender_id, approver_id, winner, len(ranking),
        )

        try:
            self._assignments.mark_completed(assignment.id)
        except EvaluationError as exc:
            logger.warning(
                "Decision %s stands but assignment %s was not completed: %s",
                decision.id, assignment.id, exc,
            )
        return decision

    def request_revision(
        self,
        tender_id: str,
        approver_id: str,
        reason: str,
    ) -> ChairmanDecision:
        """
        Send the evaluation back to the committee. The assignment status is
        left alone; evaluators resubmit and a new approval follows.
        """
        _require(tender_id, "tenderId")
        _require(approver_id, "approverId")

        minimum = config.decisions.min_revision_reason_length
        reason = (reason or "").strip()
        if len(reason) < minimum:
            raise InvalidInputError(
                "reason-too-short",
                f"A revision request needs a reason of at least {minimum} characters",
            )

        decision = self._store.put(ChairmanDecision(
            id=f"CD-{uuid.uuid4().hex[:8].upper()}",
            tender_id=tender_id,
            status=DecisionStatus.REVISION_REQUESTED,
            approver_id=approver_id,
            reason=reason,
        ))
        logger.info("Revision requested on tender %s by %s", tender_id, approver_id)
        return decision

    def get_decision(self, tender_id: str) -> ChairmanDecision:
        return self._store.get(tender_id)

    def decision_history(self, tender_id: str) -> List[ChairmanDecision]:
        return self._store.history(tender_id)


def _require(value: Optional[str], field_name: str) -> None:
    if not value or not str(value).strip():
        raise InvalidInputError("missing-field", f"{field_name} is required")
