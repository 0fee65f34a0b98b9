"""Session analysis: event log + scenario -> scored Run."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import httpx

from .config import AgentSettings, AnalyzerSettings, settings
from .parser.session_log import EventLogSummary, parse_session_log, resolve_events_path
from .schemas.run import RegressionResult, Run, ScoreCard
from .schemas.scenario import Prompt, RegressionRule, Scenario
from .scoring import RunMetrics, score_run

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """Run with the scorecard and log summary it was derived from."""

    run: Run
    scorecard: ScoreCard
    summary: EventLogSummary


@dataclass(frozen=True, slots=True)
class CriterionResult:
    """Outcome of one per-prompt success criterion."""

    name: str
    passed: bool
    detail: str = ""


def count_regressions(
    rules: Sequence[RegressionRule],
    assistant_messages: Sequence[str],
    console_lines: Sequence[str] | None = None,
) -> dict[str, RegressionResult]:
    """Count regression matches.

    Each assistant message (and console line, when given) that matches a
    rule's pattern counts as one occurrence.

    Args:
        rules: Regression rules from the scenario
        assistant_messages: Assistant message contents
        console_lines: Optional console transcript lines

    Returns:
        Mapping of rule name to result
    """
    texts = list(assistant_messages)
    if console_lines:
        texts.extend(console_lines)

    results: dict[str, RegressionResult] = {}
    for rule in rules:
        regex = rule.regex
        occurrences = sum(1 for text in texts if regex.search(text))
        results[rule.name] = RegressionResult(
            occurrences=occurrences,
            max_allowed=rule.max_occurrences,
            passed=occurrences <= rule.max_occurrences,
        )
    return results


def analyze_summary(
    summary: EventLogSummary,
    scenario: Scenario,
    *,
    session_id: str,
    git_commit: str | None = None,
    transcript: Sequence[str] | None = None,
    analyzer: AnalyzerSettings | None = None,
) -> AnalysisResult:
    """Score an already-parsed session log against a scenario."""
    analyzer = analyzer or settings.analyzer
    console_lines = transcript if analyzer.include_console_transcript else None

    skills = {
        skill: summary.skill_was_invoked(skill) for skill in scenario.scoring.must_invoke_skills
    }
    regressions = count_regressions(scenario.regressions, summary.assistant_messages, console_lines)

    metrics = RunMetrics(
        duration_sec=summary.duration_sec,
        total_turns=summary.turns,
        deploy_attempts=summary.deploy_attempts,
        infra_edits=summary.infra_edits,
        delegated=summary.delegated,
        skills=skills,
        regressions=regressions,
    )
    scorecard = score_run(scenario.scoring, metrics)

    run = Run(
        scenario=scenario.name,
        session_id=session_id,
        git_commit=git_commit,
        started_at=summary.first_timestamp or datetime.now(UTC),
        duration_sec=summary.duration_sec,
        total_turns=summary.turns,
        deploy_attempts=summary.deploy_attempts,
        infra_edits=summary.infra_edits,
        delegated=summary.delegated,
        deployed=summary.deployed,
        score=scorecard.composite,
        passed=scorecard.passed,
        skills=skills,
        regressions=regressions,
    )
    return AnalysisResult(run=run, scorecard=scorecard, summary=summary)


def analyze_session(
    source: Path | str,
    scenario: Scenario,
    *,
    git_commit: str | None = None,
    transcript: Sequence[str] | None = None,
    agent: AgentSettings | None = None,
    analyzer: AnalyzerSettings | None = None,
) -> AnalysisResult:
    """Analyze a recorded session against a scenario.

    Args:
        source: Path to an ``events.jsonl`` file, or a session id resolved
            under the session-state directory
        scenario: Scenario providing limits and rules
        git_commit: Commit of the code under test
        transcript: Console transcript lines captured by the runner
        agent: Agent settings used to resolve session ids
        analyzer: Event vocabulary

    Returns:
        AnalysisResult with the Run, its scorecard and the log summary

    Raises:
        EventLogNotFoundError: If the event log cannot be opened
    """
    if isinstance(source, Path):
        events_path = source
        session_id = source.parent.name
    else:
        session_id = source
        events_path = resolve_events_path(session_id, agent)

    summary = parse_session_log(events_path, analyzer)
    result = analyze_summary(
        summary,
        scenario,
        session_id=session_id,
        git_commit=git_commit,
        transcript=transcript,
        analyzer=analyzer,
    )
    logger.info(
        "Analyzed session %s: score %.2f (%s)",
        session_id,
        result.run.score,
        "pass" if result.run.passed else "fail",
    )
    return result


def endpoint_responds(endpoint: str, timeout: float | None = None) -> tuple[bool, str]:
    """GET the endpoint; any status below 400 counts as responding."""
    timeout = timeout or settings.verify.http_timeout_sec
    try:
        response = httpx.get(endpoint, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as exc:
        return False, f"request failed: {exc}"
    return response.status_code < 400, f"HTTP {response.status_code}"


def evaluate_success_criteria(
    prompt: Prompt,
    workdir: Path,
    *,
    deployed: bool,
    endpoint: str | None,
) -> list[CriterionResult]:
    """Check a prompt's success criteria after the run.

    Args:
        prompt: Prompt whose criteria are checked
        workdir: Working directory the agent ran in
        deployed: Whether the session shows a successful deployment
        endpoint: Discovered endpoint URL, if any

    Returns:
        One result per declared criterion
    """
    criteria = prompt.success_criteria
    results: list[CriterionResult] = []

    for pattern in criteria.files_exist:
        matches = sorted(workdir.glob(pattern))
        results.append(
            CriterionResult(
                name=f"files_exist:{pattern}",
                passed=bool(matches),
                detail=f"{len(matches)} match(es)",
            )
        )

    if criteria.deployed:
        results.append(CriterionResult(name="deployed", passed=deployed))

    if criteria.endpoint_responds:
        if not endpoint:
            results.append(
                CriterionResult(name="endpoint_responds", passed=False, detail="no endpoint")
            )
        else:
            ok, detail = endpoint_responds(endpoint)
            results.append(CriterionResult(name="endpoint_responds", passed=ok, detail=detail))

    return results
