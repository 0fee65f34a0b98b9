"""First-wins race over cancelable monitor threads."""

import logging
import threading
from collections.abc import Iterable
from enum import Enum

logger = logging.getLogger(__name__)


class StopReason(str, Enum):
    """Why a prompt's execution ended."""

    PROCESS_EXIT = "process_exit"
    TASK_COMPLETE = "task_complete"
    STUCK_LOOP = "stuck_loop"
    IDLE_TIMEOUT = "idle_timeout"
    PROMPT_TIMEOUT = "prompt_timeout"
    SCENARIO_TIMEOUT = "scenario_timeout"


class FirstSignal:
    """Records the first reason fired and ignores all later ones."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self.reason: StopReason | None = None
        self.detail = ""

    def fire(self, reason: StopReason, detail: str = "") -> bool:
        """Fire the signal. Returns True only for the winning call."""
        with self._lock:
            if self.reason is not None:
                return False
            self.reason = reason
            self.detail = detail
        self._event.set()
        return True

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    @property
    def is_set(self) -> bool:
        return self._event.is_set()


class Monitor(threading.Thread):
    """Daemon thread owning a stop event and reporting into a FirstSignal."""

    def __init__(self, name: str, signal: FirstSignal):
        super().__init__(name=name, daemon=True)
        self.signal = signal
        self.stop_event = threading.Event()

    def stop(self) -> None:
        self.stop_event.set()

    def run(self) -> None:
        try:
            self.watch()
        except Exception:
            logger.exception("Monitor %s failed", self.name)

    def watch(self) -> None:
        raise NotImplementedError


class Race:
    """Starts monitors, waits for the first signal, then stops and joins them all."""

    def __init__(self, signal: FirstSignal, monitors: Iterable[Monitor]):
        self.signal = signal
        self.monitors = list(monitors)

    def start(self) -> None:
        for monitor in self.monitors:
            monitor.start()

    def wait(self, timeout: float | None) -> StopReason | None:
        """Block until a monitor fires or ``timeout`` elapses."""
        self.signal.wait(timeout)
        return self.signal.reason

    def stop_all(self, join_timeout: float) -> list[str]:
        """Stop every monitor and join it.

        Returns:
            Names of monitors that did not finish within ``join_timeout``
        """
        for monitor in self.monitors:
            monitor.stop()
        lingering = []
        for monitor in self.monitors:
            if monitor.ident is not None:
                monitor.join(join_timeout)
            if monitor.is_alive():
                lingering.append(monitor.name)
        if lingering:
            logger.warning("Monitors still running after stop: %s", ", ".join(lingering))
        return lingering
