"""
config.py — Central configuration for the evaluation engine.

Everything tunable lives here. The methodology weights and the LCS
technical threshold are NOT in here on purpose: they are part of the
procurement rules and live next to the combination functions in
scoring.py. What is configurable is the engine's policy around them:
how zeros are treated, how permissive the fallback validation is, how
long a revision reason must be.

Most values can be overridden through environment variables so that a
deployment can flip policy without a code change.
"""

from dataclasses import dataclass, field
import os
import logging

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ScoringConfig:
    """
    Aggregation and validation policy.

    exclude_zero_scores mirrors the portal's original behaviour: a zero
    from an evaluator is read as "not scored" and left out of the mean.
    Turn it off to count zeros as real scores.

    generic_max_score is the upper bound used when a tender's assignment
    points at a template we can't resolve. Scores are then only checked
    against [0, generic_max_score].
    """
    exclude_zero_scores: bool = _env_flag("EVAL_EXCLUDE_ZERO_SCORES", True)
    generic_max_score: float = 100.0


@dataclass
class DecisionConfig:
    """Chairman decision rules."""
    min_revision_reason_length: int = int(os.getenv("EVAL_MIN_REASON_LENGTH", "5"))


@dataclass
class StoreConfig:
    """
    In-memory store settings.

    With seed_reference_templates on, the registry starts with the
    standard evaluation templates (ET-001..ET-008) and committee
    templates (CT-001..CT-005) used across ministries.
    """
    seed_reference_templates: bool = _env_flag("EVAL_SEED_TEMPLATES", True)


@dataclass
class Config:
    """All engine settings, one instance per process."""
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    decisions: DecisionConfig = field(default_factory=DecisionConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self):
        """Fail fast on nonsense values instead of mid-evaluation."""
        if self.scoring.generic_max_score <= 0:
            raise ValueError(
                f"generic_max_score must be positive, got {self.scoring.generic_max_score}"
            )
        if self.decisions.min_revision_reason_length < 1:
            raise ValueError(
                "min_revision_reason_length must be at least 1, "
                f"got {self.decisions.min_revision_reason_length}"
            )
        if not self.scoring.exclude_zero_scores:
            logger.info("Zero scores will be counted in criterion averages.")


# Shared instance imported by every module
config = Config()
