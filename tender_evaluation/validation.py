"""
validation.py — Score validation against the tender's evaluation template.

Every score that reaches the aggregator has been through here. The
sequence is always the same:

  1. Shape checks: ids present, at least one item, no criterion scored
     twice for the same bidder in one submission.
  2. The tender must have a committee assignment. Without one we don't
     know the methodology, so scoring is refused under both protocols.
  3. The assignment's template is resolved. If it can't be (a template
     id that points nowhere), we degrade to generic bounds, [0, 100] by
     default, and log a configuration warning. One bad reference should
     not block a whole committee from scoring.
  4. With a template: every criterion must belong to it and every score
     must sit in [0, max_score].
  5. Single-bidder (legacy) protocol only: the submission must cover
     every criterion in the template. The batched protocol lets an
     evaluator send what they have so far.

Nothing that fails validation is ever stored.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from tender_evaluation.config import config
from tender_evaluation.errors import InvalidInputError, OutOfBoundsError
from tender_evaluation.schemas import (
    ALL_BIDDERS,
    EvaluationTemplate,
    ScoreItem,
    SubmissionProtocol,
)

logger = logging.getLogger(__name__)

ItemLike = Union[ScoreItem, Dict[str, Any]]


def legacy_score_items(
    scores: Mapping[Any, float],
    bidder_name: Optional[str] = None,
) -> List[ScoreItem]:
    """
    Adapt the legacy {criterionId: score} map into typed ScoreItems.

    The old scoring screen keyed scores by numeric criterion id. JSON
    turns those keys into strings anyway ("1", "5"), so both shapes end
    up as the same string ids.
    """
    return [
        ScoreItem(criterion_id=str(criterion_id), score=score, bidder_name=bidder_name)
        for criterion_id, score in scores.items()
    ]


def coerce_items(items: Iterable[ItemLike]) -> List[ScoreItem]:
    """Turn dicts into ScoreItems, mapping pydantic errors to our taxonomy."""
    coerced: List[ScoreItem] = []
    for raw in items or []:
        if isinstance(raw, ScoreItem):
            coerced.append(raw)
            continue
        try:
            coerced.append(ScoreItem.model_validate(raw))
        except ValueError as exc:
            raise InvalidInputError("invalid-score-item", str(exc)) from exc
    return coerced


def check_required(
    tender_id: str,
    evaluator_id: str,
    items: List[ScoreItem],
    protocol: SubmissionProtocol,
    bidder_name: Optional[str] = None,
) -> None:
    """Step 1: shape checks shared by both protocols."""
    if not tender_id or not tender_id.strip():
        raise InvalidInputError("missing-field", "tenderId is required")
    if not evaluator_id or not evaluator_id.strip():
        raise InvalidInputError("missing-field", "evaluatorId is required")
    if protocol == SubmissionProtocol.SINGLE_BIDDER:
        if not bidder_name or not bidder_name.strip():
            raise InvalidInputError("missing-field", "bidderName is required")
        _check_bidder_name(bidder_name)
    if not items:
        raise InvalidInputError("missing-field", "scores are required")

    seen = set()
    for item in items:
        bidder = item.bidder_name if protocol == SubmissionProtocol.BATCHED else bidder_name
        if protocol == SubmissionProtocol.BATCHED:
            if not bidder or not bidder.strip():
                raise InvalidInputError(
                    "missing-field",
                    f"bidderName is required for every item of a batched submission "
                    f"(criterion '{item.criterion_id}')",
                )
            _check_bidder_name(bidder)
        key = (bidder, item.criterion_id)
        if key in seen:
            raise InvalidInputError(
                "duplicate-criterion",
                f"Criterion '{item.criterion_id}' scored more than once for '{bidder}'",
            )
        seen.add(key)


def _check_bidder_name(bidder_name: str) -> None:
    # reserved: batched submissions are stored under this bidder key
    if bidder_name.strip() == ALL_BIDDERS:
        raise InvalidInputError(
            "invalid-bidder", f"'{ALL_BIDDERS}' is reserved and cannot be used as a bidder name"
        )


def check_scores(
    items: List[ScoreItem],
    template: Optional[EvaluationTemplate],
    protocol: SubmissionProtocol,
    tender_id: str = "",
) -> None:
    """
    Steps 3-5: bounds and completeness against the template.

    Raises:
        InvalidInputError: unknown-criterion / missing-criterion.
        OutOfBoundsError: score-out-of-range.
    """
    if template is None:
        _check_generic_bounds(items, tender_id)
        return

    for item in items:
        criterion = template.criterion(item.criterion_id)
        if criterion is None:
            raise InvalidInputError(
                "unknown-criterion",
                f"Criterion '{item.criterion_id}' is not part of template {template.id}",
            )
        if not 0 <= item.score <= criterion.max_score:
            raise OutOfBoundsError(
                "score-out-of-range",
                f"Score {item.score:g} for '{criterion.name}' must be between "
                f"0 and {criterion.max_score:g}",
            )

    if protocol == SubmissionProtocol.SINGLE_BIDDER:
        scored = {item.criterion_id for item in items}
        for criterion in template.criteria:
            if criterion.id not in scored:
                raise InvalidInputError(
                    "missing-criterion",
                    f"Missing score for criterion '{criterion.name}' ({criterion.id})",
                )


def _check_generic_bounds(items: List[ScoreItem], tender_id: str) -> None:
    """Degraded path when the assignment's template can't be resolved."""
    upper = config.scoring.generic_max_score
    logger.warning(
        "Configuration fault: tender %s is bound to an unknown evaluation "
        "template; validating %d scores against generic bounds [0, %g]",
        tender_id, len(items), upper,
    )
    for item in items:
        if not 0 <= item.score <= upper:
            raise OutOfBoundsError(
                "score-out-of-range",
                f"Score {item.score:g} for criterion '{item.criterion_id}' must be "
                f"between 0 and {upper:g}",
            )
