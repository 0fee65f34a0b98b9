"""Scoring of runs against scenario limits."""

from .composite import (
    WEIGHTS,
    RunMetrics,
    composite_score,
    proportional_credit,
    score_contributions,
    score_run,
)

__all__ = [
    "WEIGHTS",
    "RunMetrics",
    "composite_score",
    "proportional_credit",
    "score_contributions",
    "score_run",
]
