"""Tests for end-to-end scenario execution with a fake runner."""

from datetime import UTC, datetime
from pathlib import Path

import pytest

from scenario_harness.errors import EventLogNotFoundError
from scenario_harness.pipeline import current_git_commit, execute_scenario
from scenario_harness.runner.race import StopReason
from scenario_harness.runner.supervisor import PromptOutcome, ScenarioExecution
from scenario_harness.schemas.scenario import Scenario
from scenario_harness.storage import RunStore

from conftest import write_events


class StaticPage:
    """Page whose every check succeeds."""

    def __init__(self):
        self.visited = []

    def goto(self, url, timeout=None):
        self.visited.append(url)
        return type("Response", (), {"status": 200})()

    def locator(self, selector):
        return StaticLocator()


class StaticLocator:
    first = property(lambda self: self)

    def wait_for(self, state=None, timeout=None):
        return None

    def inner_text(self, timeout=None):
        return "Welcome to the site"


@pytest.fixture
def fake_run(tmp_path: Path, session_state_dir: Path, sample_events):
    """Runner stand-in that records a session log and returns an execution."""
    calls = []
    workdir = tmp_path / "work"
    workdir.mkdir()
    (workdir / "azure.yaml").write_text("name: demo\n")

    def _run(scenario, agent_binary=None, **kwargs):
        calls.append((scenario.name, agent_binary, kwargs))
        write_events(session_state_dir / "sess-77" / "events.jsonl", sample_events)
        return ScenarioExecution(
            scenario=scenario,
            workdir=workdir,
            session_id="sess-77",
            started_at=datetime.now(UTC),
            outcomes=[
                PromptOutcome(
                    index=i, reason=StopReason.TASK_COMPLETE, exit_code=0, duration_sec=1
                )
                for i in range(len(scenario.prompts))
            ],
        )

    _run.calls = calls
    return _run


class TestExecuteScenario:
    """Test run, analyze, verify and persist."""

    def test_full_pipeline_persists_verified_run(
        self, tmp_path, fake_run, sample_scenario, agent_settings
    ):
        """A healthy execution is analyzed, verified and stored."""
        page = StaticPage()
        with RunStore(tmp_path / "results.db") as store:
            result = execute_scenario(
                sample_scenario,
                agent_binary="/opt/agent",
                store=store,
                git_commit="abc123",
                agent=agent_settings,
                run_fn=fake_run,
                endpoint="https://site.example/",
                page=page,
            )
            stored = store.list_runs(with_details=True)

        assert fake_run.calls[0][:2] == ("static-web-app", "/opt/agent")
        assert result.run.id == 1
        assert result.run.passed is True
        assert result.run.git_commit == "abc123"
        assert result.verification.passed is True
        assert set(result.run.verification) == {"home", "step-2"}
        assert page.visited == ["https://site.example/"]
        assert result.criteria_passed is True
        assert stored == [result.run]

    def test_verification_can_be_skipped(self, fake_run, sample_scenario, agent_settings):
        """With verification off no browser steps run and nothing is stored."""
        result = execute_scenario(
            sample_scenario,
            verify=False,
            agent=agent_settings,
            run_fn=fake_run,
        )

        assert result.verification is None
        assert result.run.verification == {}
        assert result.run.id is None
        assert result.endpoint is None

    def test_failed_criteria_are_reported(self, fake_run, sample_scenario, agent_settings):
        """Unmet success criteria are surfaced without failing the run."""
        data = sample_scenario.model_dump()
        data["prompts"][0]["success_criteria"]["files_exist"] = ["missing.txt"]
        scenario = Scenario.model_validate(data)

        result = execute_scenario(scenario, verify=False, agent=agent_settings, run_fn=fake_run)

        assert result.criteria_passed is False
        assert result.run.passed is True

    def test_missing_session_log_raises(self, tmp_path, sample_scenario, agent_settings):
        """An execution whose session log is missing cannot be analyzed."""

        def no_log_run(scenario, agent_binary=None, **kwargs):
            return ScenarioExecution(
                scenario=scenario,
                workdir=tmp_path,
                session_id="ghost",
                started_at=datetime.now(UTC),
            )

        with pytest.raises(EventLogNotFoundError):
            execute_scenario(
                sample_scenario, verify=False, agent=agent_settings, run_fn=no_log_run
            )


def test_current_git_commit_outside_repository(tmp_path):
    """Directories outside a git repository have no commit."""
    assert current_git_commit(tmp_path) is None
