"""Supervised execution of scenario prompts against the agent process."""

import logging
import os
import signal
import subprocess
import sys
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TextIO

from ..config import AgentSettings, RunnerSettings, settings
from ..errors import RunnerEnvironmentError
from ..schemas.scenario import PromptPlan, Scenario
from .adapter import AgentCliAdapter
from .monitor import ActivityClock, ConsoleRelay, IdleWatchdog, StuckLoopDetector
from .race import FirstSignal, Monitor, Race, StopReason
from .tail import EventLogTail, EventLogTailMonitor, latest_session_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PromptOutcome:
    """How one prompt's execution ended."""

    index: int
    reason: StopReason
    exit_code: int | None
    duration_sec: float
    detail: str = ""

    @property
    def clean(self) -> bool:
        if self.reason == StopReason.PROCESS_EXIT:
            return self.exit_code == 0
        return self.reason == StopReason.TASK_COMPLETE


@dataclass
class ScenarioExecution:
    """Everything observed while running one scenario."""

    scenario: Scenario
    workdir: Path
    session_id: str
    started_at: datetime
    outcomes: list[PromptOutcome] = field(default_factory=list)
    transcript: list[str] = field(default_factory=list)
    timed_out: bool = False

    @property
    def prompts_skipped(self) -> int:
        return len(self.scenario.prompts) - len(self.outcomes)


class ProcessExitWaiter(Monitor):
    """Fires ``process_exit`` when the agent process ends on its own."""

    def __init__(self, first: FirstSignal, process: subprocess.Popen, poll_interval: float = 0.2):
        super().__init__("process-exit", first)
        self.process = process
        self.poll_interval = poll_interval

    def watch(self) -> None:
        while not self.stop_event.is_set():
            code = self.process.poll()
            if code is not None:
                self.signal.fire(StopReason.PROCESS_EXIT, f"exit code {code}")
                return
            self.stop_event.wait(self.poll_interval)


def _kill(process: subprocess.Popen) -> None:
    """Kill the agent and every process in its group (the group id is its pid)."""
    if sys.platform != "win32":
        try:
            os.killpg(process.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    if process.poll() is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass


def run_prompt(
    plan: PromptPlan,
    workdir: Path,
    adapter: AgentCliAdapter,
    *,
    deadline: float | None = None,
    runner: RunnerSettings | None = None,
    agent: AgentSettings | None = None,
    sink: TextIO | None = None,
    transcript: list[str] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> PromptOutcome:
    """Run one prompt and wait for the first stop signal.

    Args:
        plan: Prompt to run
        workdir: Working directory for the agent process
        adapter: Agent CLI adapter
        deadline: Scenario deadline on the ``clock`` timeline
        runner: Supervision limits (defaults to settings)
        agent: Agent settings (defaults to settings)
        sink: Where console output is echoed
        transcript: List collecting console lines
        clock: Monotonic clock

    Returns:
        PromptOutcome describing how the prompt ended. Process-level
        failures are recorded here rather than raised.

    Raises:
        RunnerEnvironmentError: If the agent process cannot be started
    """
    runner = runner or settings.runner
    agent = agent or settings.agent
    command = adapter.build_command(plan)
    started = clock()
    tail = EventLogTail(agent.session_state_dir, agent.events_file)

    logger.info(
        "Prompt %d%s: %s", plan.index + 1, " (resumed)" if plan.is_resumption else "", plan.text
    )
    try:
        process = subprocess.Popen(
            command,
            cwd=workdir,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=sys.platform != "win32",
        )
    except OSError as exc:
        raise RunnerEnvironmentError(f"Cannot start agent process {command[0]}: {exc}") from exc

    first = FirstSignal()
    activity = ActivityClock(clock)
    relay = ConsoleRelay(
        process.stdout,
        first,
        activity,
        StuckLoopDetector(runner.stuck_repeat_threshold, runner.stuck_line_max_len),
        sink=sink,
        transcript=transcript,
    )
    race = Race(
        first,
        [
            relay,
            EventLogTailMonitor(
                first,
                tail,
                agent.completion_marker,
                poll_interval=runner.log_poll_interval_sec,
                discovery_interval=runner.session_discovery_interval_sec,
            ),
            IdleWatchdog(
                first,
                activity,
                runner.idle_timeout_sec,
                check_interval=runner.idle_check_interval_sec,
            ),
            ProcessExitWaiter(first, process),
        ],
    )

    prompt_deadline = started + runner.per_prompt_timeout_sec
    timeout_reason = StopReason.PROMPT_TIMEOUT
    if deadline is not None and deadline < prompt_deadline:
        prompt_deadline = deadline
        timeout_reason = StopReason.SCENARIO_TIMEOUT

    race.start()
    try:
        reason = race.wait(max(0.0, prompt_deadline - clock()))
        if reason is None:
            first.fire(timeout_reason, f"exceeded {prompt_deadline - started:.0f}s")
            reason = first.reason
    finally:
        _kill(process)
        try:
            process.wait(timeout=runner.join_timeout_sec)
        except subprocess.TimeoutExpired:
            logger.warning("Agent process %d did not exit after kill", process.pid)
        race.stop_all(runner.join_timeout_sec)
        if process.stdout is not None:
            process.stdout.close()

    outcome = PromptOutcome(
        index=plan.index,
        reason=reason,
        exit_code=process.returncode,
        duration_sec=round(clock() - started, 3),
        detail=first.detail,
    )
    if outcome.clean:
        logger.info("Prompt %d finished: %s", plan.index + 1, reason.value)
    else:
        logger.warning(
            "Prompt %d did not complete cleanly: %s (exit code %s) %s",
            plan.index + 1,
            reason.value,
            outcome.exit_code,
            outcome.detail,
        )
    return outcome


def create_workdir(scenario_name: str, base_dir: Path | None = None) -> Path:
    """Fresh temporary working directory for one scenario execution."""
    try:
        return Path(tempfile.mkdtemp(prefix=f"scenario-{scenario_name}-", dir=base_dir))
    except OSError as exc:
        raise RunnerEnvironmentError(f"Cannot create working directory: {exc}") from exc


def run_scenario(
    scenario: Scenario,
    agent_binary: str | None = None,
    *,
    runner: RunnerSettings | None = None,
    agent: AgentSettings | None = None,
    sink: TextIO | None = None,
    echo: bool = True,
    workdir_base: Path | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> ScenarioExecution:
    """Run every prompt of a scenario in order.

    Args:
        scenario: Scenario to replay
        agent_binary: Agent executable override
        runner: Supervision limits (defaults to settings)
        agent: Agent settings (defaults to settings)
        sink: Where console output is echoed (defaults to stdout)
        echo: Set False to silence console echo
        workdir_base: Parent directory for the temp working directory
        clock: Monotonic clock

    Returns:
        ScenarioExecution with per-prompt outcomes and the session id

    Raises:
        RunnerEnvironmentError: Working directory or executable unavailable
        SessionNotFoundError: No session directory after the run
    """
    runner = runner or settings.runner
    agent = agent or settings.agent
    if sink is None and echo:
        sink = sys.stdout
    adapter = AgentCliAdapter(agent_binary, agent)
    adapter.validate()

    workdir = create_workdir(scenario.name, workdir_base)
    started_at = datetime.now(UTC)
    deadline = clock() + scenario.timeout_sec
    logger.info("Running scenario %s in %s", scenario.name, workdir)

    outcomes: list[PromptOutcome] = []
    transcript: list[str] = []
    timed_out = False
    for plan in scenario.prompt_plans():
        if clock() >= deadline:
            timed_out = True
            break
        outcome = run_prompt(
            plan,
            workdir,
            adapter,
            deadline=deadline,
            runner=runner,
            agent=agent,
            sink=sink,
            transcript=transcript,
            clock=clock,
        )
        outcomes.append(outcome)
        if outcome.reason == StopReason.SCENARIO_TIMEOUT:
            timed_out = True
            break

    if timed_out:
        skipped = len(scenario.prompts) - len(outcomes)
        logger.warning(
            "Scenario %s timed out after %s; %d prompt(s) skipped",
            scenario.name,
            scenario.timeout,
            skipped,
        )

    session_id = latest_session_id(agent.session_state_dir)
    logger.info("Scenario %s finished, session %s", scenario.name, session_id)
    return ScenarioExecution(
        scenario=scenario,
        workdir=workdir,
        session_id=session_id,
        started_at=started_at,
        outcomes=outcomes,
        transcript=transcript,
        timed_out=timed_out,
    )
