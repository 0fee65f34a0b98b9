"""SQLite run store with JSON interchange and per-scenario aggregates."""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError

from .errors import RunStoreError
from .schemas.run import RegressionResult, Run, StepResult

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS runs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    scenario        TEXT NOT NULL,
    session_id      TEXT NOT NULL,
    git_commit      TEXT,
    started_at      TEXT NOT NULL,
    duration_sec    INTEGER NOT NULL DEFAULT 0,
    total_turns     INTEGER NOT NULL DEFAULT 0,
    deploy_attempts INTEGER NOT NULL DEFAULT 0,
    infra_edits     INTEGER NOT NULL DEFAULT 0,
    delegated       INTEGER NOT NULL DEFAULT 0,
    deployed        INTEGER NOT NULL DEFAULT 0,
    score           REAL NOT NULL DEFAULT 0,
    passed          INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_runs_scenario ON runs (scenario, started_at);
CREATE INDEX IF NOT EXISTS idx_runs_session ON runs (session_id);

CREATE TABLE IF NOT EXISTS run_skills (
    run_id   INTEGER NOT NULL REFERENCES runs(id) ON DELETE CASCADE,
    skill    TEXT NOT NULL,
    invoked  INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (run_id, skill)
);

CREATE TABLE IF NOT EXISTS run_regressions (
    run_id       INTEGER NOT NULL REFERENCES runs(id) ON DELETE CASCADE,
    name         TEXT NOT NULL,
    occurrences  INTEGER NOT NULL DEFAULT 0,
    max_allowed  INTEGER NOT NULL DEFAULT 0,
    passed       INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (run_id, name)
);

CREATE TABLE IF NOT EXISTS run_verification (
    run_id   INTEGER NOT NULL REFERENCES runs(id) ON DELETE CASCADE,
    step     TEXT NOT NULL,
    passed   INTEGER NOT NULL DEFAULT 0,
    error    TEXT,
    details  TEXT,
    PRIMARY KEY (run_id, step)
);
"""

RUN_COLUMNS = (
    "scenario",
    "session_id",
    "git_commit",
    "started_at",
    "duration_sec",
    "total_turns",
    "deploy_attempts",
    "infra_edits",
    "delegated",
    "deployed",
    "score",
    "passed",
)


def _to_utc_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


class RunStore:
    """Persistent store of scenario runs.

    The connection is shared between threads, so every read and write holds
    the store lock. Each run is written in a single transaction together with
    its skills, regressions and verification rows, so readers never see a run
    without its sub-records.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Open the database and initialize the schema."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._init_schema()
        except (OSError, sqlite3.Error) as exc:
            self.close()
            raise RunStoreError(f"Cannot open run store {self.db_path}: {exc}") from exc

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "RunStore":
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _init_schema(self) -> None:
        self._conn.executescript(SCHEMA)
        self._conn.commit()
        cursor = self._conn.execute("PRAGMA table_info(runs)")
        columns = {row[1] for row in cursor.fetchall()}
        missing = [column for column in RUN_COLUMNS if column not in columns]
        if missing:
            raise RunStoreError(
                f"Run store {self.db_path} has an incompatible schema; "
                f"missing columns: {', '.join(missing)}"
            )

    @property
    def conn(self) -> sqlite3.Connection:
        """Get the database connection, raising if not connected."""
        if self._conn is None:
            raise RunStoreError("Not connected to run store. Call connect() first.")
        return self._conn

    # =========================================================================
    # Writes
    # =========================================================================

    def insert_run(self, run: Run) -> int:
        """Insert a run and all of its child rows atomically.

        Returns:
            The database ID of the inserted run
        """
        conn = self.conn
        with self._lock:
            try:
                with conn:
                    run_id = self._insert_run_rows(conn, run)
            except sqlite3.Error as exc:
                raise RunStoreError(f"Cannot save run {run.session_id}: {exc}") from exc
        logger.debug("Stored run %d for session %s", run_id, run.session_id)
        return run_id

    def _insert_run_rows(self, conn: sqlite3.Connection, run: Run) -> int:
        cursor = conn.execute(
            f"INSERT INTO runs ({', '.join(RUN_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in RUN_COLUMNS)})",
            (
                run.scenario,
                run.session_id,
                run.git_commit,
                _to_utc_text(run.started_at),
                run.duration_sec,
                run.total_turns,
                run.deploy_attempts,
                run.infra_edits,
                int(run.delegated),
                int(run.deployed),
                run.score,
                int(run.passed),
            ),
        )
        run_id = cursor.lastrowid
        conn.executemany(
            "INSERT INTO run_skills (run_id, skill, invoked) VALUES (?, ?, ?)",
            [(run_id, skill, int(invoked)) for skill, invoked in run.skills.items()],
        )
        conn.executemany(
            "INSERT INTO run_regressions (run_id, name, occurrences, max_allowed, passed) "
            "VALUES (?, ?, ?, ?, ?)",
            [
                (run_id, name, result.occurrences, result.max_allowed, int(result.passed))
                for name, result in run.regressions.items()
            ],
        )
        conn.executemany(
            "INSERT INTO run_verification (run_id, step, passed, error, details) "
            "VALUES (?, ?, ?, ?, ?)",
            [
                (run_id, step, int(result.passed), result.error, result.details)
                for step, result in run.verification.items()
            ],
        )
        return run_id

    # =========================================================================
    # Reads
    # =========================================================================

    def has_session(self, session_id: str) -> bool:
        conn = self.conn
        with self._lock:
            return self._has_session(conn, session_id)

    @staticmethod
    def _has_session(conn: sqlite3.Connection, session_id: str) -> bool:
        cursor = conn.execute("SELECT 1 FROM runs WHERE session_id = ? LIMIT 1", (session_id,))
        return cursor.fetchone() is not None

    def list_scenarios(self) -> list[str]:
        conn = self.conn
        with self._lock:
            cursor = conn.execute("SELECT DISTINCT scenario FROM runs ORDER BY scenario")
            return [row["scenario"] for row in cursor.fetchall()]

    def list_runs(
        self,
        scenario: str | None = None,
        limit: int | None = 20,
        *,
        with_details: bool = False,
    ) -> list[Run]:
        """Runs newest-first by start time.

        Args:
            scenario: Only runs of this scenario
            limit: Maximum number of runs (None for all)
            with_details: Populate skills, regressions and verification

        Returns:
            List of runs
        """
        query = "SELECT * FROM runs"
        params: list = []
        if scenario:
            query += " WHERE scenario = ?"
            params.append(scenario)
        query += " ORDER BY started_at DESC, id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        conn = self.conn
        with self._lock:
            try:
                rows = conn.execute(query, params).fetchall()
                return [self._row_to_run(conn, row, with_details) for row in rows]
            except sqlite3.Error as exc:
                raise RunStoreError(f"Cannot read runs: {exc}") from exc

    def _row_to_run(self, conn: sqlite3.Connection, row: sqlite3.Row, with_details: bool) -> Run:
        skills: dict[str, bool] = {}
        regressions: dict[str, RegressionResult] = {}
        verification: dict[str, StepResult] = {}
        if with_details:
            run_id = row["id"]
            for child in conn.execute(
                "SELECT skill, invoked FROM run_skills WHERE run_id = ? ORDER BY skill", (run_id,)
            ):
                skills[child["skill"]] = bool(child["invoked"])
            for child in conn.execute(
                "SELECT * FROM run_regressions WHERE run_id = ? ORDER BY name", (run_id,)
            ):
                regressions[child["name"]] = RegressionResult(
                    occurrences=child["occurrences"],
                    max_allowed=child["max_allowed"],
                    passed=bool(child["passed"]),
                )
            for child in conn.execute(
                "SELECT * FROM run_verification WHERE run_id = ? ORDER BY step", (run_id,)
            ):
                verification[child["step"]] = StepResult(
                    passed=bool(child["passed"]),
                    error=child["error"],
                    details=child["details"],
                )

        return Run(
            id=row["id"],
            scenario=row["scenario"],
            session_id=row["session_id"],
            git_commit=row["git_commit"],
            started_at=datetime.fromisoformat(row["started_at"]),
            duration_sec=row["duration_sec"],
            total_turns=row["total_turns"],
            deploy_attempts=row["deploy_attempts"],
            infra_edits=row["infra_edits"],
            delegated=bool(row["delegated"]),
            deployed=bool(row["deployed"]),
            score=row["score"],
            passed=bool(row["passed"]),
            skills=skills,
            regressions=regressions,
            verification=verification,
        )

    # =========================================================================
    # Interchange
    # =========================================================================

    def export_json(self, path: Path) -> int:
        """Write every run, oldest first, with details inline.

        Returns:
            Number of runs written

        Raises:
            RunStoreError: If the file cannot be written
        """
        runs = list(reversed(self.list_runs(limit=None, with_details=True)))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump([run.to_record() for run in runs], f, indent=2)
                f.write("\n")
        except OSError as exc:
            raise RunStoreError(f"Cannot write interchange file {path}: {exc}") from exc
        logger.info("Exported %d run(s) to %s", len(runs), path)
        return len(runs)

    def import_json(self, path: Path) -> int:
        """Insert runs from an interchange file, skipping known sessions.

        Every record is validated before anything is written, and all new
        runs are inserted in one transaction, so a bad file imports nothing.

        Returns:
            Number of runs inserted
        """
        try:
            with open(path) as f:
                records = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise RunStoreError(f"Cannot read interchange file {path}: {exc}") from exc
        if not isinstance(records, list):
            raise RunStoreError(f"Interchange file {path} must contain a list of runs")

        runs: list[Run] = []
        for position, record in enumerate(records):
            try:
                runs.append(Run.model_validate({**record, "id": None}))
            except (TypeError, ValidationError) as exc:
                raise RunStoreError(f"Invalid run record #{position} in {path}: {exc}") from exc

        conn = self.conn
        inserted = 0
        with self._lock:
            try:
                with conn:
                    for run in runs:
                        if self._has_session(conn, run.session_id):
                            continue
                        self._insert_run_rows(conn, run)
                        inserted += 1
            except sqlite3.Error as exc:
                raise RunStoreError(f"Cannot import runs from {path}: {exc}") from exc
        logger.info("Imported %d new run(s) from %s", inserted, path)
        return inserted


@dataclass(frozen=True, slots=True)
class ScenarioStats:
    """Trend statistics for one scenario."""

    scenario: str
    count: int
    pass_rate: float
    avg_score: float
    score_variance: float
    avg_duration_sec: float
    latest_started_at: datetime | None


def _variance(values: list[float]) -> float:
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    return sum((value - mean) ** 2 for value in values) / len(values)


def _safe_average(values: list[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def aggregate_runs(runs: list[Run]) -> dict[str, ScenarioStats]:
    """Aggregate runs per scenario.

    Args:
        runs: Runs in any order

    Returns:
        Mapping of scenario name to its statistics
    """
    by_scenario: dict[str, list[Run]] = {}
    for run in runs:
        by_scenario.setdefault(run.scenario, []).append(run)

    stats: dict[str, ScenarioStats] = {}
    for scenario, group in sorted(by_scenario.items()):
        scores = [run.score for run in group]
        stats[scenario] = ScenarioStats(
            scenario=scenario,
            count=len(group),
            pass_rate=sum(1 for run in group if run.passed) / len(group),
            avg_score=_safe_average(scores),
            score_variance=_variance(scores),
            avg_duration_sec=_safe_average([float(run.duration_sec) for run in group]),
            latest_started_at=max(run.started_at for run in group),
        )
    return stats
