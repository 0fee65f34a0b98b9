"""Streaming parser for the agent's ``events.jsonl`` session log."""

import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from ..config import AgentSettings, AnalyzerSettings, settings
from ..errors import EventLogNotFoundError
from ..schemas.events import SessionEvent

logger = logging.getLogger(__name__)


@dataclass
class EventLogSummary:
    """Everything the analyzer needs from one pass over a session log."""

    total_events: int = 0
    skipped_lines: int = 0
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None
    turns: int = 0
    deploy_attempts: int = 0
    infra_edits: int = 0
    delegated: bool = False
    skills_invoked: list[str] = field(default_factory=list)
    user_messages: list[str] = field(default_factory=list)
    assistant_messages: list[str] = field(default_factory=list)
    deploy_call_ids: set[str] = field(default_factory=set)
    deploy_completions: dict[str, bool] = field(default_factory=dict)

    @property
    def duration_sec(self) -> int:
        if self.first_timestamp is None or self.last_timestamp is None:
            return 0
        return max(0, int((self.last_timestamp - self.first_timestamp).total_seconds()))

    @property
    def deployed(self) -> bool:
        """A deploy call completed successfully.

        Logs without completion events for deploy calls fall back to
        treating any deploy attempt as a deployment.
        """
        if self.deploy_completions:
            return any(self.deploy_completions.values())
        return self.deploy_attempts > 0

    def skill_was_invoked(self, name: str) -> bool:
        return name in self.skills_invoked


def resolve_events_path(session_id: str, agent: AgentSettings | None = None) -> Path:
    """Location of a session's event log under the session-state directory."""
    agent = agent or settings.agent
    return agent.session_state_dir / session_id / agent.events_file


def parse_event_line(line: str) -> SessionEvent | None:
    """Parse one log line; returns None for blank or malformed lines."""
    text = line.strip()
    if not text:
        return None
    try:
        entry = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(entry, dict):
        return None
    try:
        event = SessionEvent.model_validate(entry)
    except ValidationError:
        return None
    if event.timestamp.tzinfo is None:
        event = event.model_copy(update={"timestamp": event.timestamp.replace(tzinfo=UTC)})
    return event


class SessionLogParser:
    """Accumulates an :class:`EventLogSummary` one line at a time."""

    def __init__(self, analyzer: AnalyzerSettings | None = None):
        self.analyzer = analyzer or settings.analyzer
        self.summary = EventLogSummary()
        self._deploy_pattern = re.compile(self.analyzer.deploy_pattern)
        self._infra_pattern = re.compile(self.analyzer.infra_edit_pattern)

    def feed(self, line: str) -> SessionEvent | None:
        if not line.strip():
            return None
        event = parse_event_line(line)
        if event is None:
            self.summary.skipped_lines += 1
            return None
        self.add_event(event)
        return event

    def add_event(self, event: SessionEvent) -> None:
        summary = self.summary
        analyzer = self.analyzer
        summary.total_events += 1
        if summary.first_timestamp is None:
            summary.first_timestamp = event.timestamp
        summary.last_timestamp = event.timestamp

        if event.type == analyzer.turn_event:
            summary.turns += 1
        elif event.type == analyzer.user_message_event:
            summary.user_messages.append(event.text_field("content"))
        elif event.type == analyzer.assistant_message_event:
            summary.assistant_messages.append(event.text_field("content"))
        elif event.type == analyzer.skill_event:
            name = event.text_field("name")
            if name and name not in summary.skills_invoked:
                summary.skills_invoked.append(name)
        elif event.type == analyzer.tool_start_event:
            self._add_tool_start(event)
        elif event.type == analyzer.tool_complete_event:
            call_id = event.tool_call_id
            if call_id and call_id in summary.deploy_call_ids:
                summary.deploy_completions[call_id] = event.data.get("success") is True

    def _add_tool_start(self, event: SessionEvent) -> None:
        summary = self.summary
        tool_name = event.tool_name
        if tool_name == self.analyzer.delegation_tool:
            summary.delegated = True
        elif tool_name == self.analyzer.deploy_tool:
            if self._deploy_pattern.search(event.arguments_text):
                summary.deploy_attempts += 1
                if event.tool_call_id:
                    summary.deploy_call_ids.add(event.tool_call_id)
        elif tool_name == self.analyzer.infra_edit_tool:
            if self._infra_pattern.search(event.arguments_text):
                summary.infra_edits += 1


def summarize_lines(
    lines: Iterable[str],
    analyzer: AnalyzerSettings | None = None,
) -> EventLogSummary:
    """Summarize an iterable of raw log lines."""
    parser = SessionLogParser(analyzer)
    for line in lines:
        parser.feed(line)
    return parser.summary


def parse_session_log(
    events_path: Path,
    analyzer: AnalyzerSettings | None = None,
) -> EventLogSummary:
    """Stream-parse a session log file in a single pass.

    Args:
        events_path: Path to ``events.jsonl``
        analyzer: Event vocabulary (defaults to settings)

    Returns:
        Summary of the log; malformed lines are counted in ``skipped_lines``

    Raises:
        EventLogNotFoundError: If the log cannot be opened
    """
    try:
        f = open(events_path, encoding="utf-8", errors="replace")
    except OSError as exc:
        raise EventLogNotFoundError(f"Cannot open event log {events_path}: {exc}") from exc

    with f:
        summary = summarize_lines(f, analyzer)

    if summary.skipped_lines:
        logger.warning(
            "Skipped %d malformed line(s) in %s", summary.skipped_lines, events_path
        )
    return summary
