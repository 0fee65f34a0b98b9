"""Session log parsing."""

from .session_log import (
    EventLogSummary,
    SessionLogParser,
    parse_event_line,
    parse_session_log,
    resolve_events_path,
    summarize_lines,
)

__all__ = [
    "EventLogSummary",
    "SessionLogParser",
    "parse_event_line",
    "parse_session_log",
    "resolve_events_path",
    "summarize_lines",
]
