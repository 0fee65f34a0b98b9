"""Tests for scenario loading and validation."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from scenario_harness.errors import ScenarioLoadError
from scenario_harness.schemas.scenario import (
    Scenario,
    VerificationStep,
    load_scenario,
    parse_duration,
)

SCENARIO_YAML = """
name: container-app
description: Deploy a containerized API
timeout: 45m
prompts:
  - text: Build a Node API and deploy it to Container Apps
    success_criteria:
      files_exist: ["infra/*.bicep"]
      deployed: true
  - text: Add a health endpoint
scoring:
  max_duration_minutes: 30
  max_turns: 40
  max_azd_up_attempts: 3
  max_bicep_edits: 5
  must_delegate: true
  must_invoke_skills: [avm-bicep-rules]
  regressions:
    - name: ACR auth spiral
      pattern: "ACR.*auth|can't pull"
      max_occurrences: 2
verification:
  - name: home
    action: navigate
    url: "{{endpoint}}/"
  - action: check_not_empty
    selector: ".item"
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "scenario.yaml"
    path.write_text(text)
    return path


class TestParseDuration:
    """Test duration string parsing."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [("90s", 90), ("30m", 1800), ("1h30m", 5400), ("1.5h", 5400), ("250ms", 0.25)],
    )
    def test_valid_durations(self, text, expected):
        """Go-style duration strings should parse to seconds."""
        assert parse_duration(text) == pytest.approx(expected)

    @pytest.mark.parametrize("text", ["", "thirty minutes", "30", "5x", "m30"])
    def test_invalid_durations(self, text):
        """Unparseable durations should raise."""
        with pytest.raises(ValueError):
            parse_duration(text)


class TestLoadScenario:
    """Test scenario file loading."""

    def test_load_full_scenario(self, tmp_path):
        """All sections of the file format should load."""
        scenario = load_scenario(_write(tmp_path, SCENARIO_YAML))

        assert scenario.name == "container-app"
        assert scenario.timeout_sec == 45 * 60
        assert len(scenario.prompts) == 2
        assert scenario.prompts[0].success_criteria.deployed is True
        assert scenario.prompts[1].success_criteria.files_exist == []
        assert scenario.scoring.max_deploy_attempts == 3
        assert scenario.scoring.max_infra_edits == 5
        assert scenario.regressions[0].name == "ACR auth spiral"
        assert scenario.verification[1].action == "assert-nonempty"

    def test_defaults(self, tmp_path):
        """Minimal scenarios should get defaults."""
        scenario = load_scenario(_write(tmp_path, "name: tiny\nprompts:\n  - text: hi\n"))

        assert scenario.timeout == "30m"
        assert scenario.scoring.max_turns is None
        assert scenario.scoring.regressions == []
        assert scenario.verification == []

    def test_configured_default_timeout(self, tmp_path, monkeypatch):
        """A scenario without a timeout takes the configured default."""
        from scenario_harness.config import settings

        monkeypatch.setattr(settings.runner, "default_scenario_timeout", "45m")

        scenario = load_scenario(_write(tmp_path, "name: tiny\nprompts:\n  - text: hi\n"))

        assert scenario.timeout == "45m"
        assert scenario.timeout_sec == 45 * 60

    def test_explicit_default_timeout(self, tmp_path):
        """An explicit default applies only when the file declares no timeout."""
        bare = _write(tmp_path, "name: tiny\nprompts:\n  - text: hi\n")

        assert load_scenario(bare, default_timeout="2h").timeout == "2h"
        declared = tmp_path / "declared.yaml"
        declared.write_text("name: x\ntimeout: 5m\nprompts:\n  - text: hi\n")
        assert load_scenario(declared, default_timeout="2h").timeout == "5m"

    def test_missing_file_raises(self, tmp_path):
        """Unreadable files should raise ScenarioLoadError."""
        with pytest.raises(ScenarioLoadError):
            load_scenario(tmp_path / "missing.yaml")

    def test_invalid_regex_raises(self, tmp_path):
        """An invalid regression pattern is a load error."""
        text = (
            "name: bad\nprompts:\n  - text: hi\nscoring:\n  regressions:\n"
            "    - name: broken\n      pattern: '([unclosed'\n      max_occurrences: 0\n"
        )
        with pytest.raises(ScenarioLoadError, match="broken|regular expression"):
            load_scenario(_write(tmp_path, text))

    def test_unparseable_timeout_raises(self, tmp_path):
        """A timeout that is not a duration is a load error."""
        with pytest.raises(ScenarioLoadError):
            load_scenario(_write(tmp_path, "name: x\ntimeout: soon\nprompts:\n  - text: hi\n"))

    def test_no_prompts_raises(self, tmp_path):
        """Scenarios need at least one prompt."""
        with pytest.raises(ScenarioLoadError):
            load_scenario(_write(tmp_path, "name: x\nprompts: []\n"))

    def test_non_mapping_raises(self, tmp_path):
        """A YAML list is not a scenario."""
        with pytest.raises(ScenarioLoadError):
            load_scenario(_write(tmp_path, "- a\n- b\n"))


class TestScenarioModel:
    """Test scenario behavior."""

    def test_prompt_plans_mark_resumptions(self, sample_scenario):
        """Only prompts after the first are resumptions."""
        plans = sample_scenario.prompt_plans()

        assert [plan.index for plan in plans] == [0, 1]
        assert [plan.is_resumption for plan in plans] == [False, True]
        assert plans[0].text == sample_scenario.prompts[0].text

    def test_scenario_is_immutable(self, sample_scenario):
        """Loaded scenarios cannot be mutated."""
        with pytest.raises(ValidationError):
            sample_scenario.name = "changed"

    def test_to_yaml_round_trip(self, tmp_path, sample_scenario):
        """Writing then loading yields an equal scenario."""
        path = sample_scenario.to_yaml(tmp_path / "out" / "scenario.yaml")

        assert load_scenario(path) == sample_scenario

    def test_regex_is_case_insensitive(self, sample_scenario):
        """Regression patterns match regardless of case."""
        assert sample_scenario.regressions[0].regex.search("acr token auth failed")


class TestVerificationStep:
    """Test verification step validation."""

    def test_check_alias(self):
        """'check' is accepted as assert-visible."""
        step = VerificationStep(action="check", selector="h1")
        assert step.action == "assert-visible"

    def test_selector_required(self):
        """Click steps need a selector."""
        with pytest.raises(ValidationError):
            VerificationStep(action="click")

    def test_type_requires_value(self):
        """Type steps need a value."""
        with pytest.raises(ValidationError):
            VerificationStep(action="type", selector="input")

    def test_unknown_action_rejected(self):
        """Unknown actions are rejected."""
        with pytest.raises(ValidationError):
            VerificationStep(action="hover", selector="a")

    def test_display_name_defaults(self):
        """Unnamed steps are numbered from one."""
        assert VerificationStep(action="wait").display_name(2) == "step-3"
        assert VerificationStep(name="home", action="wait").display_name(0) == "home"


def test_scenario_requires_name():
    """A scenario without a name is invalid."""
    with pytest.raises(ValidationError):
        Scenario.model_validate({"prompts": [{"text": "hi"}]})
