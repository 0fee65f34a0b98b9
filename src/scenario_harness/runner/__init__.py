"""Supervised replay of scenario prompts against the agent process."""

from .adapter import AgentCliAdapter
from .monitor import ActivityClock, ConsoleRelay, IdleWatchdog, StuckLoopDetector
from .race import FirstSignal, Monitor, Race, StopReason
from .supervisor import PromptOutcome, ScenarioExecution, run_prompt, run_scenario
from .tail import EventLogTail, EventLogTailMonitor, find_latest_session, latest_session_id

__all__ = [
    "AgentCliAdapter",
    "ActivityClock",
    "ConsoleRelay",
    "IdleWatchdog",
    "StuckLoopDetector",
    "FirstSignal",
    "Monitor",
    "Race",
    "StopReason",
    "PromptOutcome",
    "ScenarioExecution",
    "run_prompt",
    "run_scenario",
    "EventLogTail",
    "EventLogTailMonitor",
    "find_latest_session",
    "latest_session_id",
]
