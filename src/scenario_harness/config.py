"""Centralized configuration using pydantic-settings.

All configurable values for the scenario harness.
Values can be overridden via environment variables with SCENARIO_ prefix.

Example:
    SCENARIO_RUNNER__IDLE_TIMEOUT_SEC=300
    SCENARIO_AGENT__BINARY=/usr/local/bin/azd
    SCENARIO_STORE__DB_PATH=scenarios/results.db
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RunnerSettings(BaseSettings):
    """Process supervision limits for a single prompt."""

    model_config = SettingsConfigDict(env_prefix="SCENARIO_RUNNER__")

    per_prompt_timeout_sec: float = Field(
        default=15 * 60,
        gt=0,
        description="Hard ceiling on a single prompt's execution",
    )
    idle_timeout_sec: float = Field(
        default=3 * 60,
        gt=0,
        description="Kill the agent after this long without console output",
    )
    idle_check_interval_sec: float = Field(
        default=1.0,
        gt=0,
        description="How often the idle watchdog samples the activity clock",
    )
    stuck_repeat_threshold: int = Field(
        default=5,
        ge=2,
        description="Consecutive identical short lines that count as a stuck loop",
    )
    stuck_line_max_len: int = Field(
        default=20,
        gt=0,
        description="Only lines up to this length are checked for repeats",
    )
    log_poll_interval_sec: float = Field(
        default=1.0,
        gt=0,
        description="Event log tail poll interval",
    )
    session_discovery_interval_sec: float = Field(
        default=2.0,
        gt=0,
        description="Poll interval while waiting for the session log to appear",
    )
    default_scenario_timeout: str = Field(
        default="30m",
        description="Scenario-level timeout when a scenario does not declare one",
    )
    join_timeout_sec: float = Field(
        default=5.0,
        gt=0,
        description="Max wait for a monitor thread to stop after a prompt concludes",
    )


class AgentSettings(BaseSettings):
    """How the external agent process is invoked and where it logs."""

    model_config = SettingsConfigDict(env_prefix="SCENARIO_AGENT__")

    binary: str | None = Field(
        default=None,
        description="Agent executable (falls back to default_binary on PATH)",
    )
    default_binary: str = Field(default="azd", description="Executable looked up on PATH")
    base_args: list[str] = Field(
        default_factory=lambda: ["copilot", "--yolo"],
        description="Arguments placed before the prompt flag",
    )
    prompt_flag: str = Field(default="-p", description="Flag that carries the prompt text")
    resume_flag: str = Field(
        default="--resume",
        description="Flag appended for every prompt after the first",
    )
    session_state_dir: Path = Field(
        default_factory=lambda: Path.home() / ".copilot" / "session-state",
        description="Directory holding one subdirectory per agent session",
    )
    events_file: str = Field(default="events.jsonl", description="Per-session event log")
    completion_marker: str = Field(
        default='"task_complete"',
        description="Substring of an event log line that marks the prompt finished",
    )


class AnalyzerSettings(BaseSettings):
    """Event log vocabulary used to derive metrics."""

    model_config = SettingsConfigDict(env_prefix="SCENARIO_ANALYZER__")

    turn_event: str = Field(default="assistant.turn_start")
    user_message_event: str = Field(default="user.message")
    assistant_message_event: str = Field(default="assistant.message")
    tool_start_event: str = Field(default="tool.execution_start")
    tool_complete_event: str = Field(default="tool.execution_complete")
    skill_event: str = Field(default="skill.invoked")
    deploy_tool: str = Field(default="powershell", description="Tool running deploy commands")
    deploy_pattern: str = Field(default=r"azd up", description="Deploy command pattern")
    infra_edit_tool: str = Field(default="edit", description="Tool editing infrastructure files")
    infra_edit_pattern: str = Field(
        default=r"main\.bicep",
        description="Infrastructure file pattern",
    )
    delegation_tool: str = Field(default="task", description="Sub-agent delegation tool")
    include_console_transcript: bool = Field(
        default=False,
        description="Also count regression matches in captured console lines",
    )
    default_skills: list[str] = Field(
        default_factory=lambda: ["avm-bicep-rules"],
        description="Required skills written into extracted scenarios",
    )
    default_regressions: list[dict[str, str | int]] = Field(
        default_factory=lambda: [
            {
                "name": "ACR auth spiral",
                "pattern": r"ACR.*auth|can't pull|registry.*credential",
                "max_occurrences": 2,
            },
            {
                "name": "zone redundancy",
                "pattern": r"zone.*redundant|requires.*subnet",
                "max_occurrences": 1,
            },
            {
                "name": "npm ci without lockfile",
                "pattern": r"npm ci.*lockfile|package-lock.*not found",
                "max_occurrences": 0,
            },
        ],
        description="Regression rules written into extracted scenarios",
    )


class StoreSettings(BaseSettings):
    """Run store locations."""

    model_config = SettingsConfigDict(env_prefix="SCENARIO_STORE__")

    db_path: Path = Field(default=Path("scenarios/results.db"))
    export_path: Path = Field(default=Path("scenarios/results.json"))
    history_limit: int = Field(default=20, gt=0)


class VerifySettings(BaseSettings):
    """Browser verification configuration."""

    model_config = SettingsConfigDict(env_prefix="SCENARIO_VERIFY__")

    env_command: list[str] = Field(
        default_factory=lambda: ["azd", "env", "get-values"],
        description="Command printing KEY=VALUE deployment outputs",
    )
    endpoint_keys: list[str] = Field(
        default_factory=lambda: [
            "AZURE_STATIC_WEB_APP_URL",
            "SERVICE_WEB_ENDPOINT_URL",
            "WEBSITE_URL",
            "AZURE_WEBAPP_URL",
        ],
    )
    env_command_timeout_sec: float = Field(default=60.0, gt=0)
    step_timeout_ms: int = Field(default=10_000, gt=0)
    wait_fallback_ms: int = Field(default=2_000, ge=0)
    http_timeout_sec: float = Field(default=15.0, gt=0)
    headless: bool = Field(default=True)


class LoopSettings(BaseSettings):
    """Improvement loop configuration."""

    model_config = SettingsConfigDict(env_prefix="SCENARIO_LOOP__")

    max_iterations: int = Field(default=3, ge=1)
    fix_timeout_sec: float = Field(default=10 * 60, gt=0)
    editable_asset_dirs: list[str] = Field(
        default_factory=lambda: [
            "cli/src/internal/assets/agents/",
            "cli/src/internal/assets/skills/",
        ],
    )
    protected_asset_dirs: list[str] = Field(
        default_factory=lambda: ["cli/src/internal/assets/ghcp4a-skills/"],
    )
    check_command: str = Field(default="cd cli && go build ./... && go test ./...")
    rebuild_commands: list[list[str]] = Field(
        default_factory=lambda: [["go", "build", "./..."], ["go", "test", "./..."]],
        description="Commands that must succeed after a fix step",
    )
    optional_rebuild_commands: list[list[str]] = Field(
        default_factory=lambda: [["mage", "build"]],
        description="Commands whose failure is logged but not fatal",
    )
    rebuild_dir: str = Field(default="cli", description="Rebuild working dir under repo root")


class HarnessSettings(BaseSettings):
    """Root configuration for the scenario harness.

    All settings can be overridden via environment variables with SCENARIO_ prefix.
    Nested settings use double underscore: SCENARIO_RUNNER__IDLE_TIMEOUT_SEC=60
    """

    model_config = SettingsConfigDict(
        env_prefix="SCENARIO_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    runner: RunnerSettings = Field(default_factory=RunnerSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    analyzer: AnalyzerSettings = Field(default_factory=AnalyzerSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    verify: VerifySettings = Field(default_factory=VerifySettings)
    loop: LoopSettings = Field(default_factory=LoopSettings)


# Singleton instance
settings = HarnessSettings()
