"""
assignments.py — Committee assignment store.

An assignment is what hands a tender to an evaluation committee: it
fixes which evaluation template the scores are checked against and
tracks where the evaluation is in its lifecycle.

    draft ──admin──▶ active ──decision gate──▶ completed
      │                │                          │
      └──────admin─────┴────────▶ suspended ◀─────┘
                                     │
                      admin (reinstate) ▶ draft / active

The one-live-assignment-per-tender rule is enforced here, inside the
store, so no caller can race around it. "Live" means draft or active;
once an assignment is completed or suspended, the tender may be handed
to a new committee.

Nothing is ever deleted. Suspending is how an assignment is retired.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Union

from tender_evaluation.errors import (
    InvalidInputError,
    NotFoundError,
    StateConflictError,
)
from tender_evaluation.schemas import (
    AssignmentStatus,
    CommitteeAssignment,
    EvaluationWindow,
)
from tender_evaluation.templates import TemplateRegistry

logger = logging.getLogger(__name__)

# Administrative transitions. COMPLETED is never a target here:
# only mark_completed(), called by the decision gate, reaches it.
_ADMIN_TRANSITIONS = {
    AssignmentStatus.DRAFT: {AssignmentStatus.ACTIVE, AssignmentStatus.SUSPENDED},
    AssignmentStatus.ACTIVE: {AssignmentStatus.SUSPENDED},
    AssignmentStatus.SUSPENDED: {AssignmentStatus.DRAFT, AssignmentStatus.ACTIVE},
    AssignmentStatus.COMPLETED: {AssignmentStatus.SUSPENDED},
}


def parse_status(value: Union[str, AssignmentStatus]) -> AssignmentStatus:
    """Parse an assignment status, case-insensitively ("Active" → active)."""
    if isinstance(value, AssignmentStatus):
        return value
    try:
        return AssignmentStatus(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in AssignmentStatus)
        raise InvalidInputError(
            "invalid-status", f"Invalid status '{value}'. Expected one of: {allowed}"
        )


class AssignmentStore:
    """
    In-memory committee assignment repository.

    Usage:
        store = AssignmentStore(registry)
        a = store.create("TDR-001", "ET-001", "CT-001", window)
        store.set_status(a.id, "active")
    """

    def __init__(self, registry: Optional[TemplateRegistry] = None):
        self._registry = registry
        self._assignments: Dict[str, CommitteeAssignment] = {}
        self._lock = threading.RLock()

    def create(
        self,
        tender_id: str,
        evaluation_template_id: str,
        committee_template_id: str,
        window: Union[EvaluationWindow, Dict[str, datetime]],
        notes: str = "",
        created_by: str = "",
        status: Union[str, AssignmentStatus] = AssignmentStatus.DRAFT,
    ) -> CommitteeAssignment:
        """
        Create an assignment for a tender.

        Raises:
            InvalidInputError: Missing ids, bad window or bad initial status.
            StateConflictError: The tender already has a live assignment.
        """
        for field_name, value in (
            ("tenderId", tender_id),
            ("evaluationTemplateId", evaluation_template_id),
            ("committeeTemplateId", committee_template_id),
        ):
            if not value or not str(value).strip():
                raise InvalidInputError("missing-field", f"{field_name} is required")

        if not isinstance(window, EvaluationWindow):
            try:
                window = EvaluationWindow.model_validate(window)
            except ValueError as exc:
                raise InvalidInputError("invalid-window", str(exc)) from exc
        try:
            ordered = window.start < window.end
        except TypeError as exc:
            # naive vs aware datetimes
            raise InvalidInputError("invalid-window", str(exc)) from exc
        if not ordered:
            raise InvalidInputError(
                "invalid-window", "Evaluation end date must be after start date"
            )

        initial = parse_status(status)
        if initial not in (AssignmentStatus.DRAFT, AssignmentStatus.ACTIVE):
            raise InvalidInputError(
                "invalid-status", "A new assignment must start as draft or active"
            )

        self._warn_on_dangling_references(
            tender_id, evaluation_template_id, committee_template_id
        )

        with self._lock:
            live = self._live_for_tender(tender_id)
            if live is not None:
                raise StateConflictError(
                    "duplicate-active-assignment",
                    f"Tender '{tender_id}' already has assignment {live.id} "
                    f"in status '{live.status.value}'",
                )

            assignment = CommitteeAssignment(
                id=f"CA-{uuid.uuid4().hex[:8].upper()}",
                tender_id=tender_id,
                evaluation_template_id=evaluation_template_id,
                committee_template_id=committee_template_id,
                window=window,
                status=initial,
                notes=notes or "",
                created_by=created_by or "",
            )
            self._assignments[assignment.id] = assignment

        logger.info(
            "Created committee assignment %s for tender %s (template %s)",
            assignment.id, tender_id, evaluation_template_id,
        )
        return assignment

    def get(self, assignment_id: str) -> CommitteeAssignment:
        assignment = self._assignments.get(assignment_id)
        if assignment is None:
            raise NotFoundError(
                "assignment-not-found", f"Assignment '{assignment_id}' not found"
            )
        return assignment

    def get_by_tender_id(self, tender_id: str) -> CommitteeAssignment:
        """
        The tender's current assignment: the live one if there is one,
        otherwise the most recently created one.
        """
        assignment = self.find_by_tender_id(tender_id)
        if assignment is None:
            raise NotFoundError(
                "assignment-not-found", f"Tender assignment not found for '{tender_id}'"
            )
        return assignment

    def find_by_tender_id(self, tender_id: str) -> Optional[CommitteeAssignment]:
        with self._lock:
            live = self._live_for_tender(tender_id)
            if live is not None:
                return live
            history = [a for a in self._assignments.values() if a.tender_id == tender_id]
            return history[-1] if history else None

    def list_assignments(
        self, status: Optional[Union[str, AssignmentStatus]] = None
    ) -> List[CommitteeAssignment]:
        assignments = list(self._assignments.values())
        if status is not None:
            wanted = parse_status(status)
            assignments = [a for a in assignments if a.status == wanted]
        return assignments

    def list_for_evaluator(self, evaluator_id: str) -> List[CommitteeAssignment]:
        """
        Assignments an evaluator can currently work on.

        Committee membership is owned by the identity service, so every
        live assignment is returned; the caller filters by membership.
        """
        if not evaluator_id:
            raise InvalidInputError("missing-field", "evaluatorId is required")
        return [a for a in self._assignments.values() if a.is_live]

    def set_status(
        self,
        assignment_id: str,
        status: Union[str, AssignmentStatus],
    ) -> CommitteeAssignment:
        """
        Administrative status change.

        Raises:
            InvalidInputError: Status outside the enumeration.
            NotFoundError: Unknown assignment.
            StateConflictError: Transition not allowed (including any
                attempt to complete an assignment outside the decision gate).
        """
        new_status = parse_status(status)
        with self._lock:
            assignment = self.get(assignment_id)
            if assignment.status == new_status:
                return assignment

            if new_status not in _ADMIN_TRANSITIONS[assignment.status]:
                raise StateConflictError(
                    "invalid-transition",
                    f"Cannot move assignment {assignment_id} from "
                    f"'{assignment.status.value}' to '{new_status.value}'",
                )

            if new_status in (AssignmentStatus.DRAFT, AssignmentStatus.ACTIVE):
                live = self._live_for_tender(assignment.tender_id)
                if live is not None and live.id != assignment.id:
                    raise StateConflictError(
                        "duplicate-active-assignment",
                        f"Tender '{assignment.tender_id}' already has live assignment {live.id}",
                    )

            return self._replace_status(assignment, new_status)

    def mark_completed(self, assignment_id: str) -> CommitteeAssignment:
        """Complete a live assignment. Reserved for the decision gate."""
        with self._lock:
            assignment = self.get(assignment_id)
            if not assignment.is_live:
                raise StateConflictError(
                    "invalid-transition",
                    f"Assignment {assignment_id} is '{assignment.status.value}' "
                    "and cannot be completed",
                )
            return self._replace_status(assignment, AssignmentStatus.COMPLETED)

    # ── Internals ────────────────────────────────────────────────────

    def _replace_status(
        self, assignment: CommitteeAssignment, status: AssignmentStatus
    ) -> CommitteeAssignment:
        updated = assignment.model_copy(update={"status": status})
        self._assignments[assignment.id] = updated
        logger.info(
            "Assignment %s (tender %s): %s → %s",
            assignment.id, assignment.tender_id,
            assignment.status.value, status.value,
        )
        return updated

    def _live_for_tender(self, tender_id: str) -> Optional[CommitteeAssignment]:
        for assignment in self._assignments.values():
            if assignment.tender_id == tender_id and assignment.is_live:
                return assignment
        return None

    def _warn_on_dangling_references(
        self, tender_id: str, evaluation_template_id: str, committee_template_id: str
    ) -> None:
        if self._registry is None:
            return
        if self._registry.find_template(evaluation_template_id) is None:
            logger.warning(
                "Tender %s bound to unknown evaluation template %s; "
                "scores will only be checked against generic bounds",
                tender_id, evaluation_template_id,
            )
        if self._registry.find_committee_template(committee_template_id) is None:
            logger.warning(
                "Tender %s bound to unknown committee template %s",
                tender_id, committee_template_id,
            )
