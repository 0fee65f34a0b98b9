"""One end-to-end scenario execution: run, analyze, verify, persist."""

import logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TextIO

from .analyzer import AnalysisResult, CriterionResult, analyze_session, evaluate_success_criteria
from .config import AgentSettings, RunnerSettings, settings
from .runner.supervisor import ScenarioExecution, run_scenario
from .schemas.run import Run, VerificationReport
from .schemas.scenario import Scenario
from .storage import RunStore
from .verifier import discover_endpoint, run_verification

logger = logging.getLogger(__name__)

GIT_COMMIT_LENGTH = 12


def current_git_commit(repo_dir: Path | None = None) -> str | None:
    """Abbreviated HEAD commit of ``repo_dir``, or None outside a repository."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=repo_dir,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()[:GIT_COMMIT_LENGTH] or None


@dataclass
class PipelineResult:
    """Everything produced by one scenario execution."""

    execution: ScenarioExecution
    analysis: AnalysisResult
    run: Run
    endpoint: str | None = None
    verification: VerificationReport | None = None
    criteria: dict[int, list[CriterionResult]] = field(default_factory=dict)

    @property
    def criteria_passed(self) -> bool:
        return all(result.passed for results in self.criteria.values() for result in results)


def _needs_endpoint(scenario: Scenario, verify: bool) -> bool:
    if verify and scenario.verification:
        return True
    return any(prompt.success_criteria.endpoint_responds for prompt in scenario.prompts)


def execute_scenario(
    scenario: Scenario,
    *,
    agent_binary: str | None = None,
    store: RunStore | None = None,
    verify: bool = True,
    git_commit: str | None = None,
    runner: RunnerSettings | None = None,
    agent: AgentSettings | None = None,
    sink: TextIO | None = None,
    echo: bool = True,
    run_fn: Callable[..., ScenarioExecution] = run_scenario,
    endpoint: str | None = None,
    page: Any = None,
) -> PipelineResult:
    """Run a scenario end to end.

    Args:
        scenario: Scenario to execute
        agent_binary: Agent executable override
        store: Run store to persist into (skipped when None)
        verify: Run browser verification steps
        git_commit: Commit of the code under test
        runner: Supervision limits
        agent: Agent settings
        sink: Console echo target
        echo: Set False to silence console echo
        run_fn: Scenario runner
        endpoint: Endpoint URL override (skips discovery)
        page: Playwright page override for verification

    Returns:
        PipelineResult; ``run`` carries the store id when persisted
    """
    agent = agent or settings.agent
    execution = run_fn(
        scenario,
        agent_binary,
        runner=runner,
        agent=agent,
        sink=sink,
        echo=echo,
    )
    analysis = analyze_session(
        execution.session_id,
        scenario,
        git_commit=git_commit,
        transcript=execution.transcript,
        agent=agent,
    )
    run = analysis.run

    if endpoint is None and _needs_endpoint(scenario, verify):
        endpoint = discover_endpoint(execution.workdir)
        if endpoint:
            logger.info("Discovered endpoint %s", endpoint)

    criteria = {
        index: evaluate_success_criteria(
            prompt, execution.workdir, deployed=run.deployed, endpoint=endpoint
        )
        for index, prompt in enumerate(scenario.prompts)
    }
    for index, results in criteria.items():
        for result in results:
            if not result.passed:
                logger.warning(
                    "Prompt %d criterion %s not met %s", index + 1, result.name, result.detail
                )

    report = None
    if verify and scenario.verification:
        report = run_verification(
            scenario.verification,
            endpoint,
            page=page,
            artifacts_dir=execution.workdir / "verification",
        )
        run = run.with_verification(report)
        logger.info("Verification: %s", report.summary)

    if store is not None:
        run = run.with_id(store.insert_run(run))

    return PipelineResult(
        execution=execution,
        analysis=analysis,
        run=run,
        endpoint=endpoint,
        verification=report,
        criteria=criteria,
    )
