"""Pydantic schemas for scenarios, session events, and runs."""

from .events import SessionEvent
from .run import (
    RegressionResult,
    Run,
    ScoreCard,
    ScoreContribution,
    StepResult,
    VerificationReport,
)
from .scenario import (
    Prompt,
    PromptPlan,
    RegressionRule,
    Scenario,
    ScoringConfig,
    SuccessCriteria,
    VerificationStep,
    load_scenario,
    parse_duration,
)

__all__ = [
    "Scenario",
    "Prompt",
    "PromptPlan",
    "SuccessCriteria",
    "ScoringConfig",
    "RegressionRule",
    "VerificationStep",
    "load_scenario",
    "parse_duration",
    "SessionEvent",
    "Run",
    "RegressionResult",
    "StepResult",
    "VerificationReport",
    "ScoreCard",
    "ScoreContribution",
]
