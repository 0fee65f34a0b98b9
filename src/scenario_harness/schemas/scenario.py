"""Pydantic models for scenario definitions."""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from ..config import settings
from ..errors import ScenarioLoadError

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

ACTION_ALIASES = {
    "check": "assert-visible",
    "check_not_empty": "assert-nonempty",
}


def parse_duration(value: str) -> float:
    """Parse a duration string such as ``"90s"``, ``"30m"`` or ``"1h30m"``.

    Args:
        value: Duration text, a sequence of number+unit pairs

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the text is not a valid duration
    """
    text = value.strip()
    if text == "0":
        return 0.0
    if not text:
        raise ValueError("empty duration")

    total = 0.0
    position = 0
    while position < len(text):
        match = _DURATION_PART.match(text, position)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    return total


class SuccessCriteria(BaseModel):
    """Conditions that must hold after a prompt completes."""

    model_config = ConfigDict(frozen=True)

    files_exist: list[str] = Field(
        default_factory=list,
        description="Glob patterns relative to the working directory",
    )
    deployed: bool = Field(default=False, description="A deployment must have succeeded")
    endpoint_responds: bool = Field(
        default=False,
        description="The discovered endpoint must answer with a non-error status",
    )


class Prompt(BaseModel):
    """A single user message sent to the agent."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=1, description="Prompt text")
    success_criteria: SuccessCriteria = Field(default_factory=SuccessCriteria)

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt text must not be blank")
        return value


@dataclass(frozen=True, slots=True)
class PromptPlan:
    """A prompt with its position in the scenario."""

    index: int
    text: str
    is_resumption: bool


class RegressionRule(BaseModel):
    """A named failure signature counted in assistant messages."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Rule identifier")
    pattern: str = Field(description="Regular expression, matched case-insensitively")
    max_occurrences: int = Field(default=0, ge=0, description="Allowed matches")

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str) -> str:
        try:
            re.compile(value, re.IGNORECASE)
        except re.error as exc:
            raise ValueError(f"invalid regular expression {value!r}: {exc}") from exc
        return value

    @property
    def regex(self) -> re.Pattern[str]:
        return re.compile(self.pattern, re.IGNORECASE)


class ScoringConfig(BaseModel):
    """Declared limits and requirements used to score a run."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_duration_minutes: int | None = Field(default=None, ge=0)
    max_turns: int | None = Field(default=None, ge=0)
    max_deploy_attempts: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("max_deploy_attempts", "max_azd_up_attempts"),
    )
    max_infra_edits: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("max_infra_edits", "max_bicep_edits"),
    )
    must_delegate: bool = Field(default=False)
    must_invoke_skills: list[str] = Field(default_factory=list)
    regressions: list[RegressionRule] = Field(default_factory=list)


class VerificationStep(BaseModel):
    """One scripted browser action against the deployed endpoint."""

    model_config = ConfigDict(frozen=True)

    name: str | None = Field(default=None, description="Step name (defaults to step-<n>)")
    action: Literal[
        "navigate",
        "click",
        "type",
        "wait",
        "assert-visible",
        "assert-nonempty",
        "screenshot",
    ]
    selector: str | None = None
    url: str | None = Field(default=None, description="May contain {{endpoint}}")
    value: str | None = None
    status_code: int | None = Field(default=None, ge=100, le=599)

    @field_validator("action", mode="before")
    @classmethod
    def _normalize_action(cls, value: object) -> object:
        if isinstance(value, str):
            return ACTION_ALIASES.get(value, value)
        return value

    @model_validator(mode="after")
    def _check_required_fields(self) -> "VerificationStep":
        needs_selector = {"click", "type", "assert-visible", "assert-nonempty"}
        if self.action in needs_selector and not self.selector:
            raise ValueError(f"action {self.action!r} requires a selector")
        if self.action == "type" and self.value is None:
            raise ValueError("action 'type' requires a value")
        return self

    def display_name(self, index: int) -> str:
        """Name used in results; ``index`` is zero-based."""
        return self.name or f"step-{index + 1}"


class Scenario(BaseModel):
    """Complete scenario definition matching the YAML format."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Scenario identifier")
    description: str = Field(default="", description="Scenario description")
    timeout: str = Field(default="30m", description="Scenario-level timeout (duration string)")
    prompts: list[Prompt] = Field(min_length=1, description="Ordered prompts")
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    verification: list[VerificationStep] = Field(default_factory=list)

    @field_validator("timeout")
    @classmethod
    def _timeout_parses(cls, value: str) -> str:
        if parse_duration(value) <= 0:
            raise ValueError("timeout must be positive")
        return value

    @property
    def timeout_sec(self) -> float:
        return parse_duration(self.timeout)

    @property
    def regressions(self) -> list[RegressionRule]:
        return self.scoring.regressions

    def prompt_plans(self) -> list[PromptPlan]:
        """Prompts in order, each marked as a resumption after the first."""
        return [
            PromptPlan(index=index, text=prompt.text, is_resumption=index > 0)
            for index, prompt in enumerate(self.prompts)
        ]

    def to_yaml(self, path: Path) -> Path:
        """Write the scenario to ``path`` in the scenario file format."""
        payload = self.model_dump(mode="json", exclude_none=True)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(payload, f, sort_keys=False, allow_unicode=True)
        return path


def load_scenario(path: Path, default_timeout: str | None = None) -> Scenario:
    """Load and validate a scenario file.

    Args:
        path: Path to a YAML scenario file
        default_timeout: Timeout for a scenario that declares none
            (defaults to SCENARIO_RUNNER__DEFAULT_SCENARIO_TIMEOUT)

    Returns:
        The validated scenario

    Raises:
        ScenarioLoadError: If the file is unreadable or invalid
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ScenarioLoadError(f"Cannot read scenario {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ScenarioLoadError(f"Cannot parse scenario {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ScenarioLoadError(f"Scenario {path} must be a mapping")
    if data.get("timeout") is None:
        data["timeout"] = default_timeout or settings.runner.default_scenario_timeout

    try:
        return Scenario.model_validate(data)
    except ValidationError as exc:
        raise ScenarioLoadError(f"Invalid scenario {path}: {exc}") from exc
