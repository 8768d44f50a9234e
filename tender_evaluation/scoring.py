"""
scoring.py — Aggregation, methodology combination and ranking.

This is where a pile of individual evaluator sheets becomes one ranked
list. Three pure stages, no storage, no side effects:

  1. aggregate_scores():  per bidder, per criterion, the mean of the
     scores given by distinct evaluators. Zeros are left out of the
     mean by default (config.scoring.exclude_zero_scores): on the paper
     sheets the committee used before the portal, a blank and a zero
     looked the same, and the portal has always read 0 as "not scored".
  2. score_bidder():      averages → technical % and financial % of
     the template's maximums → one final % via the methodology formula.
  3. rank_final_scores(): stable sort, rank = 1 + number of bidders
     with a strictly higher final score.

The methodology table below is the contract every decision rests on.
The weights and the LCS threshold must stay exactly as they are:

  QCBS  0.70 × technical + 0.30 × financial
  LCS   technical ≥ 75 → 0.80 × financial + 0.20 × technical
        otherwise      → 0.50 × technical
  QBS   technical
  FBS   0.90 × technical + 0.10 × financial

Rounding is half-up to 2 decimals on the binary float, the same as
Math.round(x * 100) / 100 in the portal front end. Values such as 1.005
round to 1.0 here, not 1.01.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from tender_evaluation.config import config
from tender_evaluation.schemas import (
    CriterionKind,
    EvaluationTemplate,
    FinalScore,
    Methodology,
    ScoreSubmission,
    SubmissionStatus,
)

logger = logging.getLogger(__name__)

LCS_TECHNICAL_THRESHOLD = 75.0


def round_half_up(value: float, places: int = 2) -> float:
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


# ── Aggregation ───────────────────────────────────────────────────────────

@dataclass
class BidderAggregate:
    """Averaged per-criterion scores for one bidder."""
    bidder_name: str
    averages: Dict[str, float] = field(default_factory=dict)
    evaluator_ids: List[str] = field(default_factory=list)


def aggregate_scores(
    submissions: Iterable[ScoreSubmission],
    exclude_zero_scores: Optional[bool] = None,
) -> List[BidderAggregate]:
    """
    Average every evaluator's scores per (bidder, criterion).

    Only submitted (not draft) submissions count. If one evaluator has
    scored the same bidder and criterion twice, e.g. once on the legacy
    sheet and again in a batch, only their latest score is used, so each
    evaluator weighs in once. Bidders left with no qualifying score are
    dropped. Output order is the order bidders were first scored in.
    """
    if exclude_zero_scores is None:
        exclude_zero_scores = config.scoring.exclude_zero_scores

    submitted = [s for s in submissions if s.status == SubmissionStatus.SUBMITTED]

    bidder_order: Dict[str, None] = {}
    for submission in submitted:
        for bidder, _ in submission.scored_items():
            bidder_order.setdefault(bidder, None)

    # bidder → criterion → evaluator → score; later submissions overwrite
    latest: Dict[str, Dict[str, Dict[str, float]]] = {}
    for submission in sorted(submitted, key=lambda s: s.submitted_at):
        for bidder, item in submission.scored_items():
            by_criterion = latest.setdefault(bidder, {})
            by_criterion.setdefault(item.criterion_id, {})[submission.evaluator_id] = item.score

    aggregates: List[BidderAggregate] = []
    for bidder in bidder_order:
        aggregate = BidderAggregate(bidder_name=bidder)
        evaluators: Dict[str, None] = {}

        for criterion_id, by_evaluator in latest[bidder].items():
            contributing = [
                (evaluator, score) for evaluator, score in by_evaluator.items()
                if score > 0 or not exclude_zero_scores
            ]
            if not contributing:
                continue
            aggregate.averages[criterion_id] = (
                sum(score for _, score in contributing) / len(contributing)
            )
            for evaluator, _ in contributing:
                evaluators.setdefault(evaluator, None)

        if aggregate.averages:
            aggregate.evaluator_ids = list(evaluators)
            aggregates.append(aggregate)
        else:
            logger.debug("Bidder '%s' has no qualifying scores, excluded", bidder)

    return aggregates


# ── Methodology combination ───────────────────────────────────────────────

def _qcbs(technical: float, financial: float) -> float:
    return 0.70 * technical + 0.30 * financial


def _lcs(technical: float, financial: float) -> float:
    # below the technical bar a bidder is pushed out of contention,
    # not disqualified outright
    if technical >= LCS_TECHNICAL_THRESHOLD:
        return 0.80 * financial + 0.20 * technical
    return 0.50 * technical


def _qbs(technical: float, financial: float) -> float:
    return technical


def _fbs(technical: float, financial: float) -> float:
    return 0.90 * technical + 0.10 * financial


COMBINATION_RULES: Dict[Methodology, Callable[[float, float], float]] = {
    Methodology.QCBS: _qcbs,
    Methodology.LCS: _lcs,
    Methodology.QBS: _qbs,
    Methodology.FBS: _fbs,
}


def combine_scores(
    methodology: Union[Methodology, str],
    technical: float,
    financial: float,
) -> float:
    """
    Final percentage for a bidder under the given methodology.

    Unrecognised methodology names are evaluated as QCBS (see
    Methodology.parse, which logs the fallback).
    """
    rule = COMBINATION_RULES[Methodology.parse(methodology)]
    return round_half_up(rule(technical, financial))


def kind_percentages(
    averages: Dict[str, float],
    template: EvaluationTemplate,
) -> Tuple[float, float]:
    """
    (technical %, financial %) of the template maximums, unrounded.

    A kind with no criteria in the template scores 0. Criteria missing
    from the averages count as 0 but their maximum still counts.
    """
    percentages = []
    for kind in (CriterionKind.TECHNICAL, CriterionKind.FINANCIAL):
        criteria = template.criteria_of(kind)
        max_sum = sum(c.max_score for c in criteria)
        if not criteria or max_sum <= 0:
            percentages.append(0.0)
            continue
        scored_sum = sum(averages.get(c.id, 0.0) for c in criteria)
        percentages.append(100 * scored_sum / max_sum)
    return percentages[0], percentages[1]


def score_bidder(aggregate: BidderAggregate, template: EvaluationTemplate) -> FinalScore:
    """Combine one bidder's averages into an unranked FinalScore."""
    unknown = [cid for cid in aggregate.averages if template.criterion(cid) is None]
    if unknown:
        logger.warning(
            "Ignoring scores for criteria %s of bidder '%s': not in template %s",
            unknown, aggregate.bidder_name, template.id,
        )

    technical, financial = kind_percentages(aggregate.averages, template)
    return FinalScore(
        bidder_name=aggregate.bidder_name,
        technical_score=round_half_up(technical),
        financial_score=round_half_up(financial),
        final_score=combine_scores(template.methodology, technical, financial),
        evaluator_count=len(aggregate.evaluator_ids),
    )


# ── Ranking ───────────────────────────────────────────────────────────────

def rank_final_scores(scores: Iterable[FinalScore]) -> List[FinalScore]:
    """
    Sort descending by final score and assign ranks.

    rank = 1 + number of bidders with a strictly higher final score, so
    equal scores share a rank (90, 90, 70 → 1, 1, 3). The sort is
    stable: tied bidders keep their input order.
    """
    ordered = sorted(scores, key=lambda s: s.final_score, reverse=True)

    ranked: List[FinalScore] = []
    for index, score in enumerate(ordered):
        if index > 0 and score.final_score == ordered[index - 1].final_score:
            rank = ranked[-1].rank
        else:
            rank = index + 1
        ranked.append(score.model_copy(update={"rank": rank}))
    return ranked


def compute_final_scores(
    submissions: Iterable[ScoreSubmission],
    template: EvaluationTemplate,
    exclude_zero_scores: Optional[bool] = None,
) -> List[FinalScore]:
    """Aggregate → combine → rank. Empty list when nothing qualifies."""
    aggregates = aggregate_scores(submissions, exclude_zero_scores)
    ranked = rank_final_scores(score_bidder(a, template) for a in aggregates)
    logger.debug(
        "Ranked %d bidders under %s (template %s)",
        len(ranked), template.methodology.value, template.id,
    )
    return ranked


# ── Smoke test ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    assert combine_scores("QCBS", 80, 60) == 74.0
    assert combine_scores("LCS", 75, 90) == 87.0
    assert combine_scores("LCS", 74, 90) == 37.0
    assert combine_scores("QBS", 63.5, 10) == 63.5
    assert combine_scores("FBS", 80, 50) == 77.0
    assert combine_scores("something-else", 80, 60) == 74.0
    print("Methodology table OK")
