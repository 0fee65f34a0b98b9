"""Session discovery and incremental tailing of the session event log."""

import logging
from pathlib import Path

from ..errors import SessionNotFoundError
from .race import FirstSignal, Monitor, StopReason

logger = logging.getLogger(__name__)


def find_latest_session(session_state_dir: Path) -> Path | None:
    """Most recently modified session directory, or None."""
    try:
        candidates = [p for p in session_state_dir.iterdir() if p.is_dir()]
    except OSError:
        return None
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime)


def latest_session_id(session_state_dir: Path) -> str:
    """Identifier of the most recently modified session.

    Raises:
        SessionNotFoundError: If no session directory exists
    """
    latest = find_latest_session(session_state_dir)
    if latest is None:
        raise SessionNotFoundError(f"No session directories under {session_state_dir}")
    return latest.name


class EventLogTail:
    """Reads lines appended to the newest session's event log.

    The newest session is re-resolved on every poll. Sizes of the logs that
    already exist when the tail is created are recorded, and a log that
    existed then is read only from its recorded size, so a resumed session
    never replays an earlier prompt's events.
    """

    def __init__(self, session_state_dir: Path, events_file: str):
        self.session_state_dir = session_state_dir
        self.events_file = events_file
        self.baseline = self._snapshot()
        self.path: Path | None = None
        self.offset = 0
        self._partial = b""

    def _snapshot(self) -> dict[Path, int]:
        sizes: dict[Path, int] = {}
        try:
            sessions = [p for p in self.session_state_dir.iterdir() if p.is_dir()]
        except OSError:
            return sizes
        for session in sessions:
            path = session / self.events_file
            try:
                sizes[path] = path.stat().st_size
            except OSError:
                continue
        return sizes

    def _switch_to(self, path: Path) -> None:
        self.path = path
        self._partial = b""
        self.offset = self.baseline.get(path, 0)
        logger.debug("Tailing %s from offset %d", path, self.offset)

    def poll(self) -> list[str] | None:
        """Complete lines appended since the last poll.

        Returns:
            New lines, or None when no log file exists yet
        """
        session = find_latest_session(self.session_state_dir)
        if session is None:
            return None
        path = session / self.events_file
        if not path.is_file():
            return None
        if path != self.path:
            self._switch_to(path)

        try:
            size = path.stat().st_size
            if size < self.offset:
                self.offset = 0
                self._partial = b""
            if size == self.offset:
                return []
            with open(path, "rb") as f:
                f.seek(self.offset)
                data = f.read()
        except OSError as exc:
            logger.debug("Cannot read %s: %s", path, exc)
            return []

        self.offset += len(data)
        data = self._partial + data
        *complete, self._partial = data.split(b"\n")
        return [line.decode("utf-8", errors="replace") for line in complete]


class EventLogTailMonitor(Monitor):
    """Fires ``task_complete`` when an appended log line carries the marker."""

    def __init__(
        self,
        signal: FirstSignal,
        tail: EventLogTail,
        completion_marker: str,
        poll_interval: float = 1.0,
        discovery_interval: float = 2.0,
    ):
        super().__init__("event-log-tail", signal)
        self.tail = tail
        self.completion_marker = completion_marker
        self.poll_interval = poll_interval
        self.discovery_interval = discovery_interval

    def watch(self) -> None:
        while not self.stop_event.is_set():
            lines = self.tail.poll()
            if lines is None:
                self.stop_event.wait(self.discovery_interval)
                continue
            for line in lines:
                if self.completion_marker in line:
                    if self.signal.fire(StopReason.TASK_COMPLETE, f"marker in {self.tail.path}"):
                        logger.info("Completion marker seen in %s", self.tail.path)
                    return
            self.stop_event.wait(self.poll_interval)
