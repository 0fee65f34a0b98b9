"""Tests for deriving scenarios from recorded sessions."""

from datetime import timedelta

import pytest

from scenario_harness.errors import ExtractionError
from scenario_harness.extract import (
    baseline_scoring,
    extract_scenario,
    scenario_from_summary,
    slugify,
)
from scenario_harness.parser.session_log import EventLogSummary, summarize_lines
from scenario_harness.schemas.scenario import load_scenario

from conftest import BASE_TIME, make_event, write_events


class TestSlugify:
    """Test scenario name slugs."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Create a Static Web App!", "create-a-static-web-app"),
            ("  --Deploy   to   Azure--  ", "deploy-to-azure"),
            ("???", "scenario"),
        ],
    )
    def test_slugs(self, text, expected):
        """Non-alphanumeric runs collapse to single dashes."""
        assert slugify(text) == expected

    def test_truncates_without_trailing_dash(self):
        """Long slugs are cut to 50 characters without a dangling dash."""
        slug = slugify("word " * 30)

        assert len(slug) <= 50
        assert not slug.endswith("-")


class TestBaselineScoring:
    """Test limits derived from an observed session."""

    def test_small_session_uses_floors(self):
        """Tiny sessions get the minimum limits."""
        scoring = baseline_scoring(EventLogSummary())

        assert scoring.max_duration_minutes == 5
        assert scoring.max_turns == 10
        assert scoring.max_deploy_attempts == 3
        assert scoring.max_infra_edits == 4
        assert scoring.must_delegate is False
        assert scoring.must_invoke_skills == ["avm-bicep-rules"]
        assert [rule.name for rule in scoring.regressions] == [
            "ACR auth spiral",
            "zone redundancy",
            "npm ci without lockfile",
        ]

    def test_large_session_gets_headroom(self):
        """Limits scale above what the session observed."""
        summary = EventLogSummary(
            turns=40, deploy_attempts=4, infra_edits=6, user_messages=["a", "b"]
        )
        summary.first_timestamp = BASE_TIME
        summary.last_timestamp = BASE_TIME + timedelta(minutes=20)

        scoring = baseline_scoring(summary)

        assert scoring.max_duration_minutes == 31
        assert scoring.max_turns == 52
        assert scoring.max_deploy_attempts == 5
        assert scoring.max_infra_edits == 8
        assert scoring.must_delegate is True


class TestExtractScenario:
    """Test end-to-end extraction."""

    def test_extracts_prompts_in_order(self, tmp_path, sample_events):
        """User messages become prompts; the first names the scenario."""
        path = write_events(tmp_path / "sess-9" / "events.jsonl", sample_events)

        scenario = extract_scenario(path)

        assert scenario.name == "create-a-static-web-app-and-deploy-it"
        assert scenario.description == "Extracted from session sess-9"
        assert [p.text for p in scenario.prompts] == [
            "Create a static web app and deploy it",
            "Add a contact page",
        ]
        assert scenario.timeout == "10m"
        assert scenario.scoring.must_delegate is True

    def test_extracted_scenario_round_trips(self, tmp_path, sample_events):
        """An extracted scenario written to YAML loads back unchanged."""
        path = write_events(tmp_path / "sess-9" / "events.jsonl", sample_events)
        scenario = extract_scenario(path)

        loaded = load_scenario(scenario.to_yaml(tmp_path / "scenarios" / "out.yaml"))

        assert loaded == scenario

    def test_session_id_source(self, session_state_dir, agent_settings, sample_events):
        """A session id is resolved under the session-state directory."""
        write_events(session_state_dir / "abc" / "events.jsonl", sample_events)

        scenario = extract_scenario("abc", agent=agent_settings)

        assert scenario.description == "Extracted from session abc"

    def test_no_user_messages_raises(self, tmp_path):
        """Sessions without user messages cannot be extracted."""
        path = write_events(
            tmp_path / "s" / "events.jsonl", [make_event("assistant.turn_start")]
        )

        with pytest.raises(ExtractionError):
            extract_scenario(path)


def test_blank_user_messages_are_ignored():
    """Whitespace-only messages are not prompts."""
    summary = summarize_lines(
        [
            '{"type": "user.message", "timestamp": "2025-01-01T00:00:00Z", '
            '"data": {"content": "   "}}',
        ]
    )

    assert summary.user_messages == ["   "]
    with pytest.raises(ExtractionError):
        scenario_from_summary(summary, "s")
