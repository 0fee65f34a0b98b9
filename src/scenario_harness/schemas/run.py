"""Pydantic models for recorded runs and their scores."""

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field


class RegressionResult(BaseModel):
    """Outcome of one regression rule for a run."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    occurrences: int = Field(ge=0, validation_alias=AliasChoices("occurrences", "Occurrences"))
    max_allowed: int = Field(ge=0, validation_alias=AliasChoices("max_allowed", "MaxAllowed"))
    passed: bool = Field(validation_alias=AliasChoices("passed", "Passed"))


class StepResult(BaseModel):
    """Outcome of one verification step."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    error: str | None = None
    details: str | None = None


class VerificationReport(BaseModel):
    """Outcome of all verification steps for a run."""

    steps: dict[str, StepResult] = Field(default_factory=dict)
    passed: bool
    summary: str


class ScoreContribution(BaseModel):
    """One weighted term of the composite score."""

    name: str = Field(description="Metric, skill or regression name")
    kind: Literal["metric", "delegation", "skill", "regression"]
    weight: float = Field(ge=0, description="Full weight of this term")
    earned: float = Field(ge=0, description="Points earned, never above weight")
    included: bool = Field(default=True, description="Counted toward the composite")
    observed: float | None = Field(default=None, description="Observed value")
    limit: float | None = Field(default=None, description="Declared limit")

    @computed_field
    @property
    def full_credit(self) -> bool:
        return self.earned >= self.weight


class ScoreCard(BaseModel):
    """Composite score with its contributions."""

    contributions: list[ScoreContribution] = Field(default_factory=list)
    composite: float = Field(ge=0, le=100, description="Renormalised 0-100 score")
    passed: bool

    @computed_field
    @property
    def earned(self) -> float:
        return sum(c.earned for c in self.contributions if c.included)

    @computed_field
    @property
    def achievable(self) -> float:
        return sum(c.weight for c in self.contributions if c.included)

    def failures(self) -> list[ScoreContribution]:
        """Included contributions that did not earn full weight."""
        return [c for c in self.contributions if c.included and not c.full_credit]


class Run(BaseModel):
    """One recorded execution of a scenario."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int | None = Field(default=None, description="Store row id, set once persisted")
    scenario: str = Field(description="Scenario name")
    session_id: str = Field(description="Agent session identifier")
    git_commit: str | None = Field(default=None, description="Commit of the code under test")
    started_at: datetime = Field(description="First event timestamp (UTC)")
    duration_sec: int = Field(default=0, ge=0)
    total_turns: int = Field(default=0, ge=0)
    deploy_attempts: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("deploy_attempts", "azd_up_attempts"),
    )
    infra_edits: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("infra_edits", "bicep_edits"),
    )
    delegated: bool = False
    deployed: bool = False
    score: float = Field(default=0.0, ge=0, le=100)
    passed: bool = False
    skills: dict[str, bool] = Field(default_factory=dict)
    regressions: dict[str, RegressionResult] = Field(default_factory=dict)
    verification: dict[str, StepResult] = Field(default_factory=dict)

    def with_verification(self, report: VerificationReport) -> "Run":
        """Return a copy carrying the verification step results."""
        return self.model_copy(update={"verification": dict(report.steps)})

    def with_id(self, run_id: int) -> "Run":
        return self.model_copy(update={"id": run_id})

    def to_record(self) -> dict:
        """Interchange representation (no store id)."""
        return self.model_dump(mode="json", exclude={"id"})
