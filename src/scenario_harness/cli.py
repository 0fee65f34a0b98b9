"""CLI entrypoint for the scenario harness."""

from __future__ import annotations

import logging
from pathlib import Path

import click
from dotenv import load_dotenv

from .analyzer import analyze_session
from .config import settings
from .errors import HarnessError
from .extract import extract_scenario
from .loop import LoopConfig, run_loop
from .pipeline import current_git_commit, execute_scenario
from .report import render_history, render_loop_summary, render_run, render_stats
from .schemas.scenario import load_scenario
from .storage import RunStore, aggregate_runs
from .verifier import discover_endpoint, run_verification

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

db_option = click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Run store database (default: SCENARIO_STORE__DB_PATH)",
)


def _open_store(db_path: Path | None) -> RunStore:
    store = RunStore(db_path or settings.store.db_path)
    store.connect()
    return store


def _write_report(report: str, output: Path | None) -> None:
    if output is None:
        click.echo(report)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(report, encoding="utf-8")
    click.echo(f"Report saved to {output}")


@click.group()
@click.version_option(package_name="scenario-harness")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Scenario-driven quality harness for agentic CLIs."""
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


@main.command()
@click.argument("scenario_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--agent-binary", type=str, default=None, help="Agent executable override")
@db_option
@click.option("--no-verify", is_flag=True, help="Skip browser verification")
@click.option("--no-store", is_flag=True, help="Do not persist the run")
@click.option(
    "--repo-root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Repository whose commit is recorded with the run",
)
@click.option(
    "--report",
    "report_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the markdown report here instead of stdout",
)
def run(
    scenario_file: Path,
    agent_binary: str | None,
    db_path: Path | None,
    no_verify: bool,
    no_store: bool,
    repo_root: Path | None,
    report_path: Path | None,
) -> None:
    """Replay a scenario against the agent and score it."""
    try:
        scenario = load_scenario(scenario_file)
        click.echo(f"Scenario: {scenario.name} ({len(scenario.prompts)} prompt(s))")
        store = None if no_store else _open_store(db_path)
        try:
            result = execute_scenario(
                scenario,
                agent_binary=agent_binary,
                store=store,
                verify=not no_verify,
                git_commit=current_git_commit(repo_root),
            )
        finally:
            if store is not None:
                store.close()
    except HarnessError as exc:
        raise click.ClickException(str(exc)) from exc

    for outcome in result.execution.outcomes:
        click.echo(
            f"Prompt {outcome.index + 1}: {outcome.reason.value} ({outcome.duration_sec:.0f}s)"
        )
    _write_report(
        render_run(result.run, result.analysis.scorecard, result.verification), report_path
    )
    if result.run.id is not None:
        click.echo(f"Run ID: {result.run.id}")


@main.command()
@click.argument("scenario_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--session", "session_id", type=str, default=None, help="Session id to analyze")
@click.option(
    "--events",
    "events_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to an events.jsonl file",
)
@click.option("--git-commit", type=str, default=None, help="Commit recorded with the run")
@click.option("--store", "store_run", is_flag=True, help="Persist the analyzed run")
@db_option
def analyze(
    scenario_file: Path,
    session_id: str | None,
    events_path: Path | None,
    git_commit: str | None,
    store_run: bool,
    db_path: Path | None,
) -> None:
    """Score a recorded session against a scenario."""
    if bool(session_id) == bool(events_path):
        raise click.UsageError("Provide exactly one of --session or --events")
    try:
        scenario = load_scenario(scenario_file)
        result = analyze_session(events_path or session_id, scenario, git_commit=git_commit)
        run_record = result.run
        if store_run:
            with RunStore(db_path or settings.store.db_path) as store:
                run_record = run_record.with_id(store.insert_run(run_record))
    except HarnessError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(render_run(run_record, result.scorecard))
    if result.summary.skipped_lines:
        click.echo(f"Skipped {result.summary.skipped_lines} malformed log line(s)")


@main.command()
@click.option("--session", "session_id", type=str, default=None, help="Session id to extract")
@click.option(
    "--events",
    "events_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to an events.jsonl file",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Scenario file to write (default: scenarios/<name>.yaml)",
)
def extract(session_id: str | None, events_path: Path | None, output: Path | None) -> None:
    """Derive a baseline scenario from a recorded session."""
    if bool(session_id) == bool(events_path):
        raise click.UsageError("Provide exactly one of --session or --events")
    try:
        scenario = extract_scenario(events_path or session_id)
    except HarnessError as exc:
        raise click.ClickException(str(exc)) from exc

    output_path = output or Path("scenarios") / f"{scenario.name}.yaml"
    scenario.to_yaml(output_path)
    click.echo(f"Scenario {scenario.name} saved to {output_path}")


@main.command()
@click.argument("scenario_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--endpoint", type=str, default=None, help="Endpoint URL (skips discovery)")
@click.option(
    "--workdir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path("."),
    help="Deployment directory used for endpoint discovery",
)
def verify(scenario_file: Path, endpoint: str | None, workdir: Path) -> None:
    """Run a scenario's browser verification steps."""
    try:
        scenario = load_scenario(scenario_file)
    except HarnessError as exc:
        raise click.ClickException(str(exc)) from exc

    endpoint = endpoint or discover_endpoint(workdir)
    report = run_verification(scenario.verification, endpoint, artifacts_dir=workdir)
    for name, result in report.steps.items():
        suffix = f": {result.error}" if result.error else ""
        click.echo(f"{'PASS' if result.passed else 'FAIL'} {name}{suffix}")
    click.echo(report.summary)
    if not report.passed:
        raise click.ClickException("Verification failed")


@main.command()
@click.option("--scenario", type=str, default=None, help="Only runs of this scenario")
@click.option("--limit", type=int, default=None, help="Number of runs to show")
@click.option("--stats", is_flag=True, help="Show per-scenario trends instead of runs")
@db_option
def history(scenario: str | None, limit: int | None, stats: bool, db_path: Path | None) -> None:
    """Show recorded runs."""
    try:
        with RunStore(db_path or settings.store.db_path) as store:
            if stats:
                click.echo(render_stats(aggregate_runs(store.list_runs(scenario, limit=None))))
                return
            runs = store.list_runs(scenario, limit=limit or settings.store.history_limit)
    except HarnessError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(render_history(runs))


@main.command(name="export")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Interchange file (default: SCENARIO_STORE__EXPORT_PATH)",
)
@db_option
def export_runs(output: Path | None, db_path: Path | None) -> None:
    """Export all runs to a JSON interchange file."""
    output_path = output or settings.store.export_path
    try:
        with RunStore(db_path or settings.store.db_path) as store:
            count = store.export_json(output_path)
    except HarnessError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Exported {count} run(s) to {output_path}")


@main.command(name="import")
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@db_option
def import_runs(input_path: Path, db_path: Path | None) -> None:
    """Import runs from a JSON interchange file, skipping known sessions."""
    try:
        with RunStore(db_path or settings.store.db_path) as store:
            count = store.import_json(input_path)
    except HarnessError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Imported {count} new run(s) from {input_path}")


@main.command()
@click.argument("scenario_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--repo-root",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=True,
    help="Repository containing the agent's skills and agents",
)
@click.option("--agent-binary", type=str, default=None, help="Agent executable override")
@click.option("--max-iterations", type=int, default=None, help="Iteration cap")
@click.option("--no-verify", is_flag=True, help="Skip browser verification")
@db_option
def loop(
    scenario_file: Path,
    repo_root: Path,
    agent_binary: str | None,
    max_iterations: int | None,
    no_verify: bool,
    db_path: Path | None,
) -> None:
    """Run, report and fix repeatedly until the scenario passes."""
    config = LoopConfig(
        scenario_file=scenario_file,
        repo_root=repo_root,
        db_path=db_path or settings.store.db_path,
        agent_binary=agent_binary,
        max_iterations=max_iterations,
        verify=not no_verify,
    )
    try:
        iterations = run_loop(config)
    except HarnessError as exc:
        raise click.ClickException(str(exc)) from exc

    for item in iterations:
        click.echo(item.report)
    click.echo(render_loop_summary([item.run for item in iterations]))
