"""Weighted composite scoring of a run against declared limits."""

from dataclasses import dataclass, field

from ..schemas.run import RegressionResult, ScoreCard, ScoreContribution
from ..schemas.scenario import ScoringConfig

# Points per contribution; fixed, not configuration
WEIGHTS = {
    "duration": 25.0,
    "turns": 20.0,
    "deploy_attempts": 20.0,
    "infra_edits": 10.0,
    "delegation": 10.0,
    "skill": 5.0,
    "regression": 5.0,
}


@dataclass(frozen=True, slots=True)
class RunMetrics:
    """Observed values scored by :func:`score_run`."""

    duration_sec: float = 0.0
    total_turns: int = 0
    deploy_attempts: int = 0
    infra_edits: int = 0
    delegated: bool = False
    skills: dict[str, bool] = field(default_factory=dict)
    regressions: dict[str, RegressionResult] = field(default_factory=dict)


def proportional_credit(weight: float, observed: float, limit: float) -> float:
    """Credit for a metric with an upper limit.

    Formula: credit = weight if observed <= limit else weight * limit / observed

    Args:
        weight: Full weight of the metric
        observed: Observed value
        limit: Declared limit (positive)

    Returns:
        Credit between 0 and weight
    """
    if observed <= limit:
        return weight
    return max(0.0, weight * limit / observed)


def _limit_contribution(name: str, observed: float, limit: int | None) -> ScoreContribution:
    weight = WEIGHTS[name]
    if not limit:
        return ScoreContribution(
            name=name,
            kind="metric",
            weight=weight,
            earned=0.0,
            included=False,
            observed=observed,
        )
    return ScoreContribution(
        name=name,
        kind="metric",
        weight=weight,
        earned=proportional_credit(weight, observed, limit),
        observed=observed,
        limit=limit,
    )


def score_contributions(scoring: ScoringConfig, metrics: RunMetrics) -> list[ScoreContribution]:
    """Every contribution for a run, including those excluded for lack of a limit."""
    contributions = [
        _limit_contribution("duration", metrics.duration_sec / 60.0, scoring.max_duration_minutes),
        _limit_contribution("turns", metrics.total_turns, scoring.max_turns),
        _limit_contribution(
            "deploy_attempts", metrics.deploy_attempts, scoring.max_deploy_attempts
        ),
        _limit_contribution("infra_edits", metrics.infra_edits, scoring.max_infra_edits),
    ]

    weight = WEIGHTS["delegation"]
    contributions.append(
        ScoreContribution(
            name="delegation",
            kind="delegation",
            weight=weight,
            earned=weight if metrics.delegated else 0.0,
            included=scoring.must_delegate,
        )
    )

    for skill in scoring.must_invoke_skills:
        weight = WEIGHTS["skill"]
        contributions.append(
            ScoreContribution(
                name=skill,
                kind="skill",
                weight=weight,
                earned=weight if metrics.skills.get(skill, False) else 0.0,
            )
        )

    for rule in scoring.regressions:
        weight = WEIGHTS["regression"]
        result = metrics.regressions.get(rule.name)
        passed = result.passed if result is not None else True
        contributions.append(
            ScoreContribution(
                name=rule.name,
                kind="regression",
                weight=weight,
                earned=weight if passed else 0.0,
                observed=result.occurrences if result is not None else 0,
                limit=rule.max_occurrences,
            )
        )

    return contributions


def composite_score(contributions: list[ScoreContribution]) -> float:
    """Renormalise included contributions to a 0-100 score.

    Only included contributions count toward both the earned points and
    the achievable ceiling. With nothing included the score is 100.
    """
    achievable = sum(c.weight for c in contributions if c.included)
    if achievable <= 0:
        return 100.0
    earned = sum(min(c.earned, c.weight) for c in contributions if c.included)
    score = 100.0 * earned / achievable
    return round(min(100.0, max(0.0, score)), 2)


def score_run(scoring: ScoringConfig, metrics: RunMetrics) -> ScoreCard:
    """Score observed metrics against a scenario's scoring block.

    Args:
        scoring: Declared limits and requirements
        metrics: Observed run metrics

    Returns:
        ScoreCard whose ``passed`` is true iff every included contribution
        earned its full weight
    """
    contributions = score_contributions(scoring, metrics)
    passed = all(c.full_credit for c in contributions if c.included)
    return ScoreCard(
        contributions=contributions,
        composite=composite_score(contributions),
        passed=passed,
    )
