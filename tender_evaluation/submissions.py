"""
submissions.py — Score submission intake and storage.

Two intake protocols are supported:

  single-bidder (legacy)  one evaluator, one bidder, every criterion
  batched                 one evaluator, all bidders in one go; each item
                          names its bidder, partial coverage allowed

Submissions are upserts keyed by (tender, evaluator, bidder). A batched
submission is keyed with the ALL_BIDDERS marker in the bidder slot, so
an evaluator's next batch replaces their previous batch wholesale.
Resubmitting keeps the original submission id and overwrites the rest;
no history is retained.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Dict, Iterable, List, Optional, Tuple

from tender_evaluation.assignments import AssignmentStore
from tender_evaluation.schemas import (
    ALL_BIDDERS,
    ScoreSubmission,
    SubmissionProtocol,
    SubmissionStatus,
    utcnow,
)
from tender_evaluation.templates import TemplateRegistry
from tender_evaluation.validation import (
    ItemLike,
    check_required,
    check_scores,
    coerce_items,
)

logger = logging.getLogger(__name__)

SubmissionKey = Tuple[str, str, str]


class SubmissionStore:
    """Upsert-only store of score submissions."""

    def __init__(self):
        self._submissions: Dict[SubmissionKey, ScoreSubmission] = {}
        self._lock = threading.RLock()

    def upsert(self, submission: ScoreSubmission) -> ScoreSubmission:
        key = (submission.tender_id, submission.evaluator_id, submission.bidder_name)
        with self._lock:
            existing = self._submissions.get(key)
            if existing is not None:
                submission = submission.model_copy(update={"id": existing.id})
            self._submissions[key] = submission
        return submission

    def list_for_tender(self, tender_id: str) -> List[ScoreSubmission]:
        with self._lock:
            return [s for s in self._submissions.values() if s.tender_id == tender_id]


class ScoreSubmissions:
    """
    Validating front door to the submission store.

    Usage:
        scores = ScoreSubmissions(assignments, registry)
        scores.submit("TDR-001", "eval-1", "Acme", [{"criterion_id": "1", "score": 18}, ...])
        scores.submit_batch("TDR-001", "eval-1", [{"bidder_name": "Acme", ...}, ...])
    """

    def __init__(
        self,
        assignments: AssignmentStore,
        registry: TemplateRegistry,
        store: Optional[SubmissionStore] = None,
    ):
        self._assignments = assignments
        self._registry = registry
        self._store = store or SubmissionStore()

    def submit(
        self,
        tender_id: str,
        evaluator_id: str,
        bidder_name: str,
        items: Iterable[ItemLike],
        draft: bool = False,
    ) -> ScoreSubmission:
        """Single-bidder submission. Every template criterion must be scored."""
        return self._submit(
            tender_id, evaluator_id, bidder_name, items,
            SubmissionProtocol.SINGLE_BIDDER, draft,
        )

    def submit_batch(
        self,
        tender_id: str,
        evaluator_id: str,
        items: Iterable[ItemLike],
        draft: bool = False,
    ) -> ScoreSubmission:
        """All-bidders submission. Each item carries its own bidder_name."""
        return self._submit(
            tender_id, evaluator_id, ALL_BIDDERS, items,
            SubmissionProtocol.BATCHED, draft,
        )

    def get_scores(self, tender_id: str) -> List[ScoreSubmission]:
        return self._store.list_for_tender(tender_id)

    def _submit(
        self,
        tender_id: str,
        evaluator_id: str,
        bidder_name: str,
        items: Iterable[ItemLike],
        protocol: SubmissionProtocol,
        draft: bool,
    ) -> ScoreSubmission:
        score_items = coerce_items(items)
        if protocol == SubmissionProtocol.SINGLE_BIDDER:
            # the submission's bidder wins over whatever the items say
            score_items = [
                item.model_copy(update={"bidder_name": None}) for item in score_items
            ]
        check_required(tender_id, evaluator_id, score_items, protocol, bidder_name)

        assignment = self._assignments.get_by_tender_id(tender_id)
        template = self._registry.find_template(assignment.evaluation_template_id)
        check_scores(score_items, template, protocol, tender_id)

        submission = ScoreSubmission(
            id=f"TS-{uuid.uuid4().hex[:10].upper()}",
            tender_id=tender_id,
            evaluator_id=evaluator_id,
            bidder_name=bidder_name,
            items=score_items,
            total_score=sum(item.score for item in score_items),
            submitted_at=utcnow(),
            status=SubmissionStatus.DRAFT if draft else SubmissionStatus.SUBMITTED,
            protocol=protocol,
        )
        stored = self._store.upsert(submission)

        logger.info(
            "Stored %s %s submission %s: tender=%s evaluator=%s bidder=%s (%d items, total=%g)",
            stored.status.value, protocol.value, stored.id, tender_id,
            evaluator_id, bidder_name, len(score_items), stored.total_score,
        )
        return stored
