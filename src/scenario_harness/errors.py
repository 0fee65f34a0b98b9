"""Exception types raised across the harness."""


class HarnessError(RuntimeError):
    """Base class for errors that abort a scenario execution."""


class ScenarioLoadError(HarnessError):
    """Scenario file could not be read or failed validation."""


class RunnerEnvironmentError(HarnessError):
    """Working directory or agent executable is unavailable."""


class SessionNotFoundError(HarnessError):
    """No agent session directory could be located."""


class EventLogNotFoundError(HarnessError):
    """The session's structured event log could not be opened."""


class RunStoreError(HarnessError):
    """Run store is unavailable or its schema does not match."""


class ExtractionError(HarnessError):
    """A recorded session has nothing to build a scenario from."""


class RebuildError(HarnessError):
    """A required rebuild command failed after a fix step."""
