"""Derive a baseline scenario from a recorded session."""

import logging
import re
from pathlib import Path

from .config import AgentSettings, AnalyzerSettings, settings
from .errors import ExtractionError
from .parser.session_log import EventLogSummary, parse_session_log, resolve_events_path
from .schemas.scenario import Prompt, RegressionRule, Scenario, ScoringConfig

logger = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 50


def slugify(text: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    """Lowercase slug: non-alphanumerics become single dashes."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    slug = slug[:max_length].strip("-")
    return slug or "scenario"


def baseline_scoring(
    summary: EventLogSummary,
    analyzer: AnalyzerSettings | None = None,
) -> ScoringConfig:
    """Limits with headroom over what the recorded session observed.

    Formula:
        duration = max(5, int(minutes * 1.5) + 1)
        turns = max(10, int(turns * 1.3))
        deploy attempts = max(3, attempts + 1)
        infra edits = max(4, edits + 2)
    """
    analyzer = analyzer or settings.analyzer
    duration_min = max(5, int(summary.duration_sec / 60 * 1.5) + 1)
    return ScoringConfig(
        max_duration_minutes=duration_min,
        max_turns=max(10, int(summary.turns * 1.3)),
        max_deploy_attempts=max(3, summary.deploy_attempts + 1),
        max_infra_edits=max(4, summary.infra_edits + 2),
        must_delegate=len(summary.user_messages) > 1,
        must_invoke_skills=list(analyzer.default_skills),
        regressions=[RegressionRule.model_validate(rule) for rule in analyzer.default_regressions],
    )


def scenario_from_summary(
    summary: EventLogSummary,
    session_id: str,
    analyzer: AnalyzerSettings | None = None,
) -> Scenario:
    """Build a scenario replaying a session's user messages."""
    prompts = [text for text in summary.user_messages if text.strip()]
    if not prompts:
        raise ExtractionError(f"Session {session_id} has no user messages")

    scoring = baseline_scoring(summary, analyzer)
    return Scenario(
        name=slugify(prompts[0]),
        description=f"Extracted from session {session_id}",
        timeout=f"{scoring.max_duration_minutes + 5}m",
        prompts=[Prompt(text=text) for text in prompts],
        scoring=scoring,
    )


def extract_scenario(
    source: Path | str,
    *,
    agent: AgentSettings | None = None,
    analyzer: AnalyzerSettings | None = None,
) -> Scenario:
    """Derive a scenario from a recorded session.

    Args:
        source: Path to an ``events.jsonl`` file, or a session id
        agent: Agent settings used to resolve session ids
        analyzer: Event vocabulary and default rules

    Returns:
        Scenario whose limits leave headroom over the recorded session

    Raises:
        EventLogNotFoundError: If the event log cannot be opened
        ExtractionError: If the session has no user messages
    """
    if isinstance(source, Path):
        events_path = source
        session_id = source.parent.name
    else:
        session_id = source
        events_path = resolve_events_path(session_id, agent)

    summary = parse_session_log(events_path, analyzer)
    scenario = scenario_from_summary(summary, session_id, analyzer)
    logger.info(
        "Extracted scenario %s with %d prompt(s) from session %s",
        scenario.name,
        len(scenario.prompts),
        session_id,
    )
    return scenario
