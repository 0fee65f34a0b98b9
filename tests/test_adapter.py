"""Tests for the agent CLI adapter."""

import sys

import pytest

from scenario_harness.config import AgentSettings
from scenario_harness.errors import RunnerEnvironmentError
from scenario_harness.runner.adapter import AgentCliAdapter
from scenario_harness.schemas.scenario import PromptPlan


class TestAgentCliAdapter:
    """Test executable resolution and command rendering."""

    def test_first_prompt_command(self):
        """The first prompt runs without the resume flag."""
        adapter = AgentCliAdapter(sys.executable, AgentSettings())

        command = adapter.build_command(PromptPlan(index=0, text="build it", is_resumption=False))

        assert command == [sys.executable, "copilot", "--yolo", "-p", "build it"]

    def test_resumed_prompt_command(self):
        """Later prompts append the resume flag."""
        adapter = AgentCliAdapter(sys.executable, AgentSettings())

        command = adapter.build_command(PromptPlan(index=1, text="fix it", is_resumption=True))

        assert command[-3:] == ["-p", "fix it", "--resume"]

    def test_fix_command_is_not_resumed(self):
        """Fix prompts start a fresh session."""
        adapter = AgentCliAdapter(sys.executable, AgentSettings())

        assert "--resume" not in adapter.build_fix_command("improve skills")

    def test_explicit_binary_beats_settings(self, tmp_path):
        """An explicit executable overrides the configured one."""
        agent = AgentSettings(binary=str(tmp_path / "missing"))

        assert AgentCliAdapter(sys.executable, agent).validate() == sys.executable

    def test_default_binary_looked_up_on_path(self, monkeypatch):
        """Without an override the default binary is found on PATH."""
        monkeypatch.setattr(
            "scenario_harness.runner.adapter.shutil.which",
            lambda name: f"/usr/bin/{name}",
        )

        assert AgentCliAdapter(agent=AgentSettings()).validate() == "/usr/bin/azd"

    def test_unresolvable_binary_raises(self, monkeypatch):
        """A binary that is neither a file nor on PATH is an environment failure."""
        monkeypatch.setattr("scenario_harness.runner.adapter.shutil.which", lambda name: None)

        with pytest.raises(RunnerEnvironmentError, match="SCENARIO_AGENT__BINARY"):
            AgentCliAdapter(agent=AgentSettings()).validate()
