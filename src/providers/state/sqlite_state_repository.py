"""SQLite-backed repository for processing periods.

Each period is one row of ``processing_periods`` keyed by ``year_month``.
The status lives in its own column so guarded transitions can be written
as a single compare-and-set ``UPDATE ... WHERE status IN (...)``; the rest
of the period (checksums, per-file stats) is the pydantic JSON dump of the
frozen model.

Opens a short-lived connection per operation, like the session store: each
call touches one small row.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable
from pathlib import Path

import structlog

from src.interfaces.state_repository import IStateRepository
from src.models.processing import ProcessingPeriod, ProcessingStatus
from src.utils.errors import StoreUnavailableError
from src.utils.logging import get_logger

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS processing_periods (
    year_month  TEXT PRIMARY KEY,
    status      TEXT NOT NULL,
    period_json TEXT NOT NULL,
    created_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

_CREATE_INDEX_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_processing_periods_status ON processing_periods(status);"
)

_INSERT_IGNORE_SQL = """\
INSERT OR IGNORE INTO processing_periods (year_month, status, period_json)
VALUES (?, ?, ?);
"""

_UPSERT_SQL = """\
INSERT INTO processing_periods (year_month, status, period_json)
VALUES (?, ?, ?)
ON CONFLICT(year_month)
DO UPDATE SET status      = excluded.status,
              period_json = excluded.period_json,
              updated_at  = strftime('%Y-%m-%dT%H:%M:%fZ', 'now');
"""

_CAS_SQL = """\
UPDATE processing_periods
SET status      = ?,
    period_json = ?,
    updated_at  = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
WHERE year_month = ? AND status IN ({placeholders});
"""

_SELECT_SQL = "SELECT period_json FROM processing_periods WHERE year_month = ?;"

_LATEST_SQL = (
    "SELECT period_json FROM processing_periods ORDER BY year_month DESC LIMIT 1;"
)

_ALL_SQL = "SELECT period_json FROM processing_periods ORDER BY year_month DESC;"


class SQLiteStateRepository(IStateRepository):
    """Processing-period persistence in SQLite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  May be the same file as the
        catalog store.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute(_CREATE_TABLE_SQL)
            conn.execute(_CREATE_INDEX_SQL)
            conn.commit()
        finally:
            conn.close()
        self._logger.info("state_repository_initialized", db_path=str(self._db_path))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, period_key: str) -> ProcessingPeriod | None:
        conn = self._connect()
        try:
            row = conn.execute(_SELECT_SQL, (period_key,)).fetchone()
        finally:
            conn.close()
        return ProcessingPeriod.model_validate_json(row[0]) if row else None

    def latest(self) -> ProcessingPeriod | None:
        conn = self._connect()
        try:
            row = conn.execute(_LATEST_SQL).fetchone()
        finally:
            conn.close()
        return ProcessingPeriod.model_validate_json(row[0]) if row else None

    def list_periods(self) -> list[ProcessingPeriod]:
        conn = self._connect()
        try:
            rows = conn.execute(_ALL_SQL).fetchall()
        finally:
            conn.close()
        return [ProcessingPeriod.model_validate_json(row[0]) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_if_missing(self, period: ProcessingPeriod) -> ProcessingPeriod:
        conn = self._connect()
        try:
            cursor = conn.execute(
                _INSERT_IGNORE_SQL,
                (period.year_month, period.status.value, period.model_dump_json()),
            )
            conn.commit()
            created = cursor.rowcount == 1
            row = conn.execute(_SELECT_SQL, (period.year_month,)).fetchone()
        finally:
            conn.close()
        if created:
            self._logger.info("processing_period_created", period_key=period.year_month)
        return ProcessingPeriod.model_validate_json(row[0])

    def save(self, period: ProcessingPeriod) -> None:
        conn = self._connect()
        try:
            conn.execute(
                _UPSERT_SQL,
                (period.year_month, period.status.value, period.model_dump_json()),
            )
            conn.commit()
        finally:
            conn.close()

    def compare_and_set(
        self,
        period: ProcessingPeriod,
        expected: Iterable[ProcessingStatus],
    ) -> bool:
        statuses = [s.value for s in expected]
        if not statuses:
            return False
        sql = _CAS_SQL.format(placeholders=",".join("?" * len(statuses)))
        conn = self._connect()
        try:
            cursor = conn.execute(
                sql,
                (period.status.value, period.model_dump_json(), period.year_month, *statuses),
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        """Open a new SQLite connection with WAL mode for concurrency."""
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=30.0)
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as exc:
            raise StoreUnavailableError(
                f"Cannot open state database {self._db_path}: {exc}"
            ) from exc
        return conn

    def get_provider_name(self) -> str:
        return f"sqlite_state_repository:{self._db_path.name}"
