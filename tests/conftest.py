"""Shared test fixtures for the scenario harness."""

import json
import sys
import textwrap
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from scenario_harness.config import AgentSettings, AnalyzerSettings, RunnerSettings
from scenario_harness.schemas.run import RegressionResult, Run
from scenario_harness.schemas.scenario import Scenario

BASE_TIME = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


def make_event(
    event_type: str,
    data: dict | None = None,
    *,
    offset_sec: float = 0,
    event_id: str | None = None,
) -> dict:
    """Build an event-log record at BASE_TIME + offset."""
    return {
        "type": event_type,
        "data": data or {},
        "id": event_id or f"evt-{event_type}-{offset_sec}",
        "timestamp": (BASE_TIME + timedelta(seconds=offset_sec)).isoformat().replace("+00:00", "Z"),
        "parentId": None,
    }


def write_events(path: Path, events: list[dict | str]) -> Path:
    """Write records (or raw lines) as JSONL."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w") as f:
        for entry in events:
            f.write(entry if isinstance(entry, str) else json.dumps(entry))
            f.write("\n")
    return path


@pytest.fixture
def session_state_dir(tmp_path: Path) -> Path:
    """Empty session-state directory."""
    state = tmp_path / "session-state"
    state.mkdir()
    return state


@pytest.fixture
def agent_settings(session_state_dir: Path) -> AgentSettings:
    """Agent settings rooted at the temporary session-state directory."""
    return AgentSettings(session_state_dir=session_state_dir)


@pytest.fixture
def agent_for(session_state_dir: Path) -> Callable[[Path], AgentSettings]:
    """Agent settings that run a fake agent script with the current interpreter."""

    def _settings(script: Path) -> AgentSettings:
        return AgentSettings(
            binary=sys.executable,
            base_args=[str(script)],
            session_state_dir=session_state_dir,
        )

    return _settings


@pytest.fixture
def fast_runner() -> RunnerSettings:
    """Runner limits small enough for tests."""
    return RunnerSettings(
        per_prompt_timeout_sec=20,
        idle_timeout_sec=10,
        idle_check_interval_sec=0.05,
        log_poll_interval_sec=0.05,
        session_discovery_interval_sec=0.05,
        join_timeout_sec=5,
    )


@pytest.fixture
def analyzer_settings() -> AnalyzerSettings:
    return AnalyzerSettings()


@pytest.fixture
def fake_agent(tmp_path: Path) -> Callable[[str], Path]:
    """Write a Python script standing in for the agent CLI."""

    def _write(body: str, name: str = "fake_agent.py") -> Path:
        script = tmp_path / name
        script.write_text(textwrap.dedent(body))
        return script

    return _write


@pytest.fixture
def sample_scenario() -> Scenario:
    """Scenario with every kind of scored contribution."""
    return Scenario.model_validate(
        {
            "name": "static-web-app",
            "description": "Build and deploy a static site",
            "timeout": "30m",
            "prompts": [
                {
                    "text": "Create a static web app and deploy it",
                    "success_criteria": {"files_exist": ["azure.yaml"], "deployed": True},
                },
                {"text": "Add a contact page"},
            ],
            "scoring": {
                "max_duration_minutes": 20,
                "max_turns": 10,
                "max_azd_up_attempts": 3,
                "max_bicep_edits": 4,
                "must_delegate": True,
                "must_invoke_skills": ["avm-bicep-rules"],
                "regressions": [
                    {"name": "ACR auth spiral", "pattern": "ACR.*auth", "max_occurrences": 2}
                ],
            },
            "verification": [
                {"name": "home", "action": "navigate", "url": "{{endpoint}}/"},
                {"action": "check", "selector": "h1", "value": "Welcome"},
            ],
        }
    )


@pytest.fixture
def sample_events() -> list[dict]:
    """A short healthy session: 2 prompts, delegation, a successful deploy."""
    return [
        make_event("user.message", {"content": "Create a static web app and deploy it"}),
        make_event("assistant.turn_start", offset_sec=1),
        make_event("skill.invoked", {"name": "avm-bicep-rules"}, offset_sec=2),
        make_event(
            "tool.execution_start",
            {"toolName": "task", "toolCallId": "t1", "arguments": {"agent": "infra"}},
            offset_sec=3,
        ),
        make_event(
            "tool.execution_start",
            {"toolName": "edit", "toolCallId": "e1", "arguments": {"path": "infra/main.bicep"}},
            offset_sec=4,
        ),
        make_event(
            "tool.execution_start",
            {"toolName": "powershell", "toolCallId": "d1", "arguments": {"command": "azd up"}},
            offset_sec=5,
        ),
        make_event(
            "tool.execution_complete", {"toolCallId": "d1", "success": True}, offset_sec=60
        ),
        make_event("assistant.message", {"content": "Deployed the site."}, offset_sec=61),
        make_event("user.message", {"content": "Add a contact page"}, offset_sec=62),
        make_event("assistant.turn_start", offset_sec=63),
        make_event("assistant.message", {"content": "Added contact page."}, offset_sec=120),
    ]


@pytest.fixture
def sample_run() -> Run:
    """A stored-shape run with details."""
    return Run(
        scenario="static-web-app",
        session_id="session-001",
        git_commit="abc123def456",
        started_at=BASE_TIME,
        duration_sec=120,
        total_turns=2,
        deploy_attempts=1,
        infra_edits=1,
        delegated=True,
        deployed=True,
        score=100.0,
        passed=True,
        skills={"avm-bicep-rules": True},
        regressions={
            "ACR auth spiral": RegressionResult(occurrences=0, max_allowed=2, passed=True)
        },
    )
