"""Markdown rendering of runs, history and loop progress."""

from collections.abc import Sequence

from .schemas.run import Run, ScoreCard, VerificationReport
from .storage import ScenarioStats


def _mark(passed: bool) -> str:
    return "PASS" if passed else "FAIL"


def _format_value(value: float | None) -> str:
    if value is None:
        return "-"
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.1f}"


def render_run(
    run: Run,
    scorecard: ScoreCard | None = None,
    verification: VerificationReport | None = None,
) -> str:
    """Markdown report for a single run."""
    lines = [
        f"# {run.scenario}: {_mark(run.passed)} ({run.score:.2f}/100)",
        "",
        f"- Session: `{run.session_id}`",
        f"- Commit: `{run.git_commit or 'unknown'}`",
        f"- Started: {run.started_at.isoformat()}",
        f"- Duration: {run.duration_sec}s",
        f"- Turns: {run.total_turns}",
        f"- Deploy attempts: {run.deploy_attempts}",
        f"- Infra edits: {run.infra_edits}",
        f"- Delegated: {'yes' if run.delegated else 'no'}",
        f"- Deployed: {'yes' if run.deployed else 'no'}",
    ]

    if scorecard is not None:
        lines += [
            "",
            "## Score",
            "",
            "| Contribution | Observed | Limit | Earned | Weight |",
            "|---|---|---|---|---|",
        ]
        for c in scorecard.contributions:
            if not c.included:
                continue
            lines.append(
                f"| {c.name} | {_format_value(c.observed)} | {_format_value(c.limit)} "
                f"| {c.earned:.2f} | {c.weight:.0f} |"
            )

    if run.skills:
        lines += ["", "## Skills", ""]
        lines += [
            f"- {skill}: {'invoked' if invoked else 'missing'}"
            for skill, invoked in run.skills.items()
        ]

    if run.regressions:
        lines += ["", "## Regressions", ""]
        lines += [
            f"- {name}: {result.occurrences}/{result.max_allowed} {_mark(result.passed)}"
            for name, result in run.regressions.items()
        ]

    steps = verification.steps if verification is not None else run.verification
    if verification is not None or steps:
        lines += ["", "## Verification", ""]
        if verification is not None:
            lines.append(verification.summary)
            lines.append("")
        for name, result in steps.items():
            suffix = f" ({result.error})" if result.error else ""
            lines.append(f"- {name}: {_mark(result.passed)}{suffix}")

    return "\n".join(lines) + "\n"


def render_history(runs: Sequence[Run]) -> str:
    """Table of runs, newest first as given."""
    if not runs:
        return "No runs recorded.\n"
    lines = [
        "| Started | Scenario | Score | Result | Turns | Duration | Commit |",
        "|---|---|---|---|---|---|---|",
    ]
    for run in runs:
        lines.append(
            f"| {run.started_at:%Y-%m-%d %H:%M} | {run.scenario} | {run.score:.2f} "
            f"| {_mark(run.passed)} | {run.total_turns} | {run.duration_sec}s "
            f"| {run.git_commit or '-'} |"
        )
    return "\n".join(lines) + "\n"


def render_stats(stats: dict[str, ScenarioStats]) -> str:
    """Per-scenario trend table."""
    if not stats:
        return "No runs recorded.\n"
    lines = [
        "| Scenario | Runs | Pass rate | Avg score | Score variance | Avg duration |",
        "|---|---|---|---|---|---|",
    ]
    for item in stats.values():
        lines.append(
            f"| {item.scenario} | {item.count} | {item.pass_rate:.0%} | {item.avg_score:.2f} "
            f"| {item.score_variance:.2f} | {item.avg_duration_sec:.0f}s |"
        )
    return "\n".join(lines) + "\n"


def render_loop_summary(runs: Sequence[Run]) -> str:
    """One line per improvement-loop iteration."""
    lines = ["# Improvement loop", ""]
    for iteration, run in enumerate(runs, start=1):
        lines.append(
            f"- Iteration {iteration}: {run.score:.2f} {_mark(run.passed)} "
            f"(session `{run.session_id}`)"
        )
    if runs:
        first, last = runs[0], runs[-1]
        lines += ["", f"Score change: {last.score - first.score:+.2f}"]
    return "\n".join(lines) + "\n"
