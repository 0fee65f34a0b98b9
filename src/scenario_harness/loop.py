"""Improvement loop: run, report, ask the agent to fix itself, rebuild, repeat."""

import logging
import subprocess
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from .config import AgentSettings, LoopSettings, RunnerSettings, settings
from .errors import RebuildError, RunnerEnvironmentError
from .parser.session_log import resolve_events_path
from .pipeline import PipelineResult, current_git_commit, execute_scenario
from .report import render_run
from .runner.adapter import AgentCliAdapter
from .runner.supervisor import PromptOutcome, run_prompt
from .schemas.run import Run, ScoreCard
from .schemas.scenario import PromptPlan, Scenario, load_scenario
from .storage import RunStore

logger = logging.getLogger(__name__)

METRIC_HINTS = {
    "duration": "Took too long: {observed:.0f} min (limit: {limit:.0f} min).",
    "turns": (
        "Too many agent turns: {observed:.0f} (limit: {limit:.0f}). Improve agent efficiency."
    ),
    "deploy_attempts": (
        "Too many deploy attempts: {observed:.0f} (limit: {limit:.0f}). "
        "Fix deployment issues so it succeeds on fewer tries."
    ),
    "infra_edits": (
        "Too many infrastructure edits: {observed:.0f} (limit: {limit:.0f}). "
        "Get infrastructure right the first time."
    ),
}


@dataclass(frozen=True, slots=True)
class LoopConfig:
    """Inputs for one improvement loop."""

    scenario_file: Path
    repo_root: Path
    db_path: Path
    agent_binary: str | None = None
    max_iterations: int | None = None
    verify: bool = True


@dataclass(frozen=True, slots=True)
class LoopIteration:
    """Outcome of one loop iteration."""

    iteration: int
    session_id: str
    run: Run
    report: str


def build_fix_prompt(
    run: Run,
    scenario: Scenario,
    scorecard: ScoreCard,
    *,
    agent: AgentSettings | None = None,
    loop: LoopSettings | None = None,
) -> str:
    """Remediation prompt listing every failed contribution.

    Args:
        run: The failed run
        scenario: Scenario that was run
        scorecard: Scorecard of the run
        agent: Agent settings (session log location)
        loop: Loop settings (editable and protected directories)

    Returns:
        Prompt text for the fix step
    """
    agent = agent or settings.agent
    loop = loop or settings.loop

    lines = [
        f"The scenario test '{scenario.name}' failed. "
        "Here are the issues to fix in our skills and agents:",
        "",
    ]
    for contribution in scorecard.failures():
        if contribution.kind == "metric":
            hint = METRIC_HINTS[contribution.name].format(
                observed=contribution.observed, limit=contribution.limit
            )
            lines.append(f"- {hint}")
        elif contribution.kind == "delegation":
            lines.append(
                "- Agent did not delegate to specialized agents. Use task() to delegate."
            )
        elif contribution.kind == "skill":
            lines.append(f"- Required skill '{contribution.name}' was not invoked.")
        elif contribution.kind == "regression":
            result = run.regressions[contribution.name]
            lines.append(
                f"- Regression '{contribution.name}': {result.occurrences} occurrences "
                f"(max: {result.max_allowed}). Fix the root cause."
            )
    for name, step in run.verification.items():
        if not step.passed:
            lines.append(f"- Verification step '{name}' failed: {step.error or 'unknown error'}.")

    events_path = resolve_events_path(run.session_id, agent)
    editable = " and ".join(loop.editable_asset_dirs)
    protected = " and ".join(loop.protected_asset_dirs)
    closing = (
        f"Analyze the session log at {events_path} to understand what went wrong, "
        f"then update the skills and agents to fix these issues. "
        f"Only edit files in {editable}."
    )
    if protected:
        closing += f" Do NOT edit files in {protected}."
    if loop.check_command:
        closing += f" After making changes, run '{loop.check_command}' to verify."
    lines += ["", closing]
    return "\n".join(lines)


def run_fix_step(
    prompt: str,
    repo_root: Path,
    *,
    agent_binary: str | None = None,
    runner: RunnerSettings | None = None,
    agent: AgentSettings | None = None,
    loop: LoopSettings | None = None,
    sink: TextIO | None = None,
) -> PromptOutcome | None:
    """Send the remediation prompt through the supervised prompt machinery.

    Failures are logged; the loop continues either way.
    """
    runner = runner or settings.runner
    loop = loop or settings.loop
    fix_runner = runner.model_copy(update={"per_prompt_timeout_sec": loop.fix_timeout_sec})
    try:
        adapter = AgentCliAdapter(agent_binary, agent)
        return run_prompt(
            PromptPlan(index=0, text=prompt, is_resumption=False),
            repo_root,
            adapter,
            runner=fix_runner,
            agent=agent,
            sink=sink,
        )
    except RunnerEnvironmentError as exc:
        logger.warning("Fix step failed: %s; continuing to next iteration", exc)
        return None


def rebuild(
    repo_root: Path,
    loop: LoopSettings | None = None,
    run_command: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> None:
    """Run the rebuild commands after a fix step.

    Raises:
        RebuildError: If a required command fails
    """
    loop = loop or settings.loop
    workdir = repo_root / loop.rebuild_dir if loop.rebuild_dir else repo_root

    for command in loop.rebuild_commands:
        logger.info("Rebuild: %s", " ".join(command))
        try:
            result = run_command(command, cwd=workdir)
        except OSError as exc:
            raise RebuildError(f"Cannot run {' '.join(command)}: {exc}") from exc
        if result.returncode != 0:
            raise RebuildError(f"{' '.join(command)} failed with exit code {result.returncode}")

    for command in loop.optional_rebuild_commands:
        try:
            result = run_command(command, cwd=workdir)
        except OSError as exc:
            logger.warning("%s failed (non-fatal): %s", " ".join(command), exc)
            continue
        if result.returncode != 0:
            logger.warning(
                "%s failed (non-fatal) with exit code %d", " ".join(command), result.returncode
            )


def run_loop(
    config: LoopConfig,
    *,
    execute: Callable[..., PipelineResult] = execute_scenario,
    fix: Callable[..., PromptOutcome | None] = run_fix_step,
    rebuild_fn: Callable[..., None] = rebuild,
    loop: LoopSettings | None = None,
    sink: TextIO | None = None,
) -> list[LoopIteration]:
    """Repeat run, persist, report and fix until the scenario passes.

    Args:
        config: Loop inputs
        execute: Pipeline execution for one iteration
        fix: Fix step runner
        rebuild_fn: Rebuild step
        loop: Loop settings (defaults to settings)
        sink: Console echo target for agent output

    Returns:
        One LoopIteration per completed iteration

    Raises:
        HarnessError: Environment, persistence or rebuild failures
    """
    loop = loop or settings.loop
    max_iterations = config.max_iterations or loop.max_iterations
    scenario = load_scenario(config.scenario_file)
    sink = sink if sink is not None else sys.stdout

    iterations: list[LoopIteration] = []
    with RunStore(config.db_path) as store:
        for iteration in range(1, max_iterations + 1):
            logger.info("Iteration %d/%d: %s", iteration, max_iterations, scenario.name)
            result = execute(
                scenario,
                agent_binary=config.agent_binary,
                store=store,
                verify=config.verify,
                git_commit=current_git_commit(config.repo_root),
                sink=sink,
            )
            run = result.run
            report = render_run(run, result.analysis.scorecard, result.verification)
            iterations.append(
                LoopIteration(
                    iteration=iteration,
                    session_id=run.session_id,
                    run=run,
                    report=report,
                )
            )

            if run.passed:
                logger.info("Passed on iteration %d with score %.2f", iteration, run.score)
                break
            if iteration == max_iterations:
                logger.info("Max iterations reached; last score %.2f", run.score)
                break

            prompt = build_fix_prompt(run, scenario, result.analysis.scorecard, loop=loop)
            fix(prompt, config.repo_root, agent_binary=config.agent_binary, loop=loop, sink=sink)
            rebuild_fn(config.repo_root, loop)
            logger.info(
                "Iteration %d complete with score %.2f; running again", iteration, run.score
            )

    return iterations
