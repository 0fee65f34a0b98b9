"""Console monitoring: activity clock, stuck-loop detection, output relay."""

import codecs
import logging
import threading
import time
from collections.abc import Callable
from typing import IO, TextIO

from .race import FirstSignal, Monitor, StopReason

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


class ActivityClock:
    """Tracks when console output was last seen."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._last = clock()

    def touch(self) -> None:
        with self._lock:
            self._last = self._clock()

    def idle_for(self) -> float:
        with self._lock:
            return self._clock() - self._last


class StuckLoopDetector:
    """Detects the same short console line repeated consecutively.

    A line counts only when, stripped, it is non-empty and at most
    ``max_len`` characters. Any other line resets the run.
    """

    def __init__(self, threshold: int = 5, max_len: int = 20):
        self.threshold = threshold
        self.max_len = max_len
        self._last: str | None = None
        self._count = 0

    def reset(self) -> None:
        self._last = None
        self._count = 0

    def observe(self, line: str) -> bool:
        """Feed one line; True when the repeat count reaches the threshold."""
        text = line.strip()
        if not text or len(text) > self.max_len:
            self.reset()
            return False
        if text == self._last:
            self._count += 1
        else:
            self._last = text
            self._count = 1
        return self._count == self.threshold

    @property
    def repeated_line(self) -> str | None:
        return self._last


class ConsoleRelay(Monitor):
    """Relays the agent's console stream to a sink and watches for stuck loops.

    Reads raw chunks so that any byte of output counts as activity, then
    assembles complete lines for the transcript and the stuck detector.
    The relay runs until the stream reaches EOF.
    """

    def __init__(
        self,
        stream: IO[bytes],
        signal: FirstSignal,
        clock: ActivityClock,
        detector: StuckLoopDetector,
        sink: TextIO | None = None,
        transcript: list[str] | None = None,
    ):
        super().__init__("console-relay", signal)
        self.stream = stream
        self.clock = clock
        self.detector = detector
        self.sink = sink
        self.transcript = transcript if transcript is not None else []
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def watch(self) -> None:
        read = getattr(self.stream, "read1", self.stream.read)
        while True:
            chunk = read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self.clock.touch()
            self._handle_text(self._decoder.decode(chunk))
        self._handle_text(self._decoder.decode(b"", final=True))
        if self._pending:
            self._handle_line(self._pending)
            self._pending = ""

    def _handle_text(self, text: str) -> None:
        if not text:
            return
        if self.sink is not None:
            self.sink.write(text)
            self.sink.flush()
        self._pending += text
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            self._handle_line(line)

    def _handle_line(self, line: str) -> None:
        line = line.rstrip("\r")
        self.transcript.append(line)
        if self.detector.observe(line):
            detail = f"line {line.strip()!r} repeated {self.detector.threshold} times"
            if self.signal.fire(StopReason.STUCK_LOOP, detail):
                logger.warning("Stuck loop detected: %s", detail)


class IdleWatchdog(Monitor):
    """Fires when no console output has been seen for ``idle_timeout`` seconds."""

    def __init__(
        self,
        signal: FirstSignal,
        clock: ActivityClock,
        idle_timeout: float,
        check_interval: float = 1.0,
    ):
        super().__init__("idle-watchdog", signal)
        self.clock = clock
        self.idle_timeout = idle_timeout
        self.check_interval = check_interval

    def watch(self) -> None:
        while not self.stop_event.wait(self.check_interval):
            idle = self.clock.idle_for()
            if idle >= self.idle_timeout:
                detail = f"no console output for {idle:.0f}s"
                if self.signal.fire(StopReason.IDLE_TIMEOUT, detail):
                    logger.warning("Idle timeout: %s", detail)
                return
