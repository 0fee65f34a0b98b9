"""Tests for console monitoring: activity, stuck loops and idle timeouts."""

import io

import pytest

from scenario_harness.runner.monitor import (
    ActivityClock,
    ConsoleRelay,
    IdleWatchdog,
    StuckLoopDetector,
)
from scenario_harness.runner.race import FirstSignal, StopReason


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestStuckLoopDetector:
    """Test repeated short line detection."""

    def test_fires_on_threshold_repeats(self):
        """The fifth consecutive identical short line fires."""
        detector = StuckLoopDetector(threshold=5, max_len=20)

        results = [detector.observe("Thinking...") for _ in range(6)]

        assert results == [False, False, False, False, True, False]
        assert detector.repeated_line == "Thinking..."

    def test_long_lines_reset(self):
        """Lines longer than the limit never count and break the run."""
        detector = StuckLoopDetector(threshold=3, max_len=10)

        detector.observe("waiting")
        detector.observe("waiting")
        assert detector.observe("a line that is far too long") is False
        assert detector.observe("waiting") is False
        assert detector.observe("waiting") is False
        assert detector.observe("waiting") is True

    def test_blank_lines_reset(self):
        """Blank lines break a run of repeats."""
        detector = StuckLoopDetector(threshold=2, max_len=20)

        detector.observe("retry")
        assert detector.observe("   ") is False
        assert detector.observe("retry") is False
        assert detector.observe("retry") is True

    def test_whitespace_is_ignored_when_comparing(self):
        """Surrounding whitespace does not make lines differ."""
        detector = StuckLoopDetector(threshold=2, max_len=20)

        detector.observe("  spin")
        assert detector.observe("spin  ") is True

    def test_varied_lines_never_fire(self):
        """Distinct lines never fire."""
        detector = StuckLoopDetector(threshold=2, max_len=20)

        assert not any(detector.observe(f"step {i}") for i in range(20))


class TestActivityClock:
    """Test the activity clock."""

    def test_idle_for_tracks_last_touch(self):
        """Idle time counts from the last touch."""
        fake = FakeClock(100.0)
        clock = ActivityClock(fake)

        fake.now = 130.0
        assert clock.idle_for() == pytest.approx(30.0)

        clock.touch()
        fake.now = 135.0
        assert clock.idle_for() == pytest.approx(5.0)


class TestIdleWatchdog:
    """Test the idle watchdog monitor."""

    def test_fires_after_idle_timeout(self):
        """An idle clock fires IDLE_TIMEOUT."""
        fake = FakeClock(0.0)
        clock = ActivityClock(fake)
        fake.now = 200.0
        signal = FirstSignal()
        watchdog = IdleWatchdog(signal, clock, idle_timeout=180, check_interval=0.01)

        watchdog.start()
        assert signal.wait(5)
        watchdog.join(5)

        assert signal.reason is StopReason.IDLE_TIMEOUT
        assert "200s" in signal.detail

    def test_stops_without_firing_when_active(self):
        """A recently touched clock keeps the watchdog quiet until stopped."""
        fake = FakeClock(0.0)
        clock = ActivityClock(fake)
        signal = FirstSignal()
        watchdog = IdleWatchdog(signal, clock, idle_timeout=180, check_interval=0.01)

        watchdog.start()
        assert signal.wait(0.1) is False
        watchdog.stop()
        watchdog.join(5)

        assert not watchdog.is_alive()
        assert signal.reason is None


class TestConsoleRelay:
    """Test relaying the console stream."""

    def _relay(self, data: bytes, *, threshold=5, clock=None):
        signal = FirstSignal()
        sink = io.StringIO()
        relay = ConsoleRelay(
            io.BytesIO(data),
            signal,
            clock or ActivityClock(),
            StuckLoopDetector(threshold=threshold, max_len=20),
            sink=sink,
        )
        relay.watch()
        return relay, signal, sink

    def test_echoes_and_records_lines(self):
        """Output is echoed verbatim and split into transcript lines."""
        relay, signal, sink = self._relay(b"hello\r\nworld\npartial")

        assert sink.getvalue() == "hello\r\nworld\npartial"
        assert relay.transcript == ["hello", "world", "partial"]
        assert signal.reason is None

    def test_stuck_loop_fires(self):
        """Five identical short lines fire STUCK_LOOP."""
        relay, signal, _ = self._relay(b"Thinking...\n" * 7)

        assert signal.reason is StopReason.STUCK_LOOP
        assert "Thinking..." in signal.detail
        assert len(relay.transcript) == 7

    def test_output_touches_activity_clock(self):
        """Reading output resets the idle clock."""
        fake = FakeClock(0.0)
        clock = ActivityClock(fake)
        fake.now = 50.0

        self._relay(b"tick\n", clock=clock)

        assert clock.idle_for() == 0.0

    def test_invalid_utf8_is_replaced(self):
        """Undecodable bytes do not stop the relay."""
        relay, _, _ = self._relay(b"ok \xff\xfe done\n")

        assert relay.transcript[0].startswith("ok ")
        assert relay.transcript[0].endswith(" done")
