"""SQLite-backed ingestion state provider.

Persists each tenant's active index generation and the history of
ingestion runs to a local SQLite database at ``data/ingestion_state.db``.
Uses ``aiosqlite`` for async I/O.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import aiosqlite
import structlog

from sitekb.interfaces.ingestion_state_provider import IIngestionStateProvider
from sitekb.models.ingestion import IngestionPhase, IngestionRun

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/ingestion_state.db")

_CREATE_GENERATIONS_SQL = """\
CREATE TABLE IF NOT EXISTS active_generations (
    tenant_id   TEXT PRIMARY KEY,
    generation  TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

_CREATE_RUNS_SQL = """\
CREATE TABLE IF NOT EXISTS ingestion_runs (
    run_id           TEXT PRIMARY KEY,
    tenant_id        TEXT    NOT NULL,
    base_url         TEXT    NOT NULL,
    status           TEXT    NOT NULL,
    pages_crawled    INTEGER NOT NULL DEFAULT 0,
    chunks_created   INTEGER NOT NULL DEFAULT 0,
    records_written  INTEGER NOT NULL DEFAULT 0,
    degraded         INTEGER NOT NULL DEFAULT 0,
    error_message    TEXT,
    started_at       TEXT    NOT NULL,
    completed_at     TEXT
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_runs_tenant ON ingestion_runs(tenant_id, started_at);",
]

_SET_GENERATION_SQL = """\
INSERT INTO active_generations (tenant_id, generation)
VALUES (?, ?)
ON CONFLICT(tenant_id)
DO UPDATE SET generation = excluded.generation,
              updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now');
"""

_UPSERT_RUN_SQL = """\
INSERT INTO ingestion_runs (
    run_id, tenant_id, base_url, status, pages_crawled, chunks_created,
    records_written, degraded, error_message, started_at, completed_at
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(run_id)
DO UPDATE SET status          = excluded.status,
              pages_crawled   = excluded.pages_crawled,
              chunks_created  = excluded.chunks_created,
              records_written = excluded.records_written,
              degraded        = excluded.degraded,
              error_message   = excluded.error_message,
              completed_at    = excluded.completed_at;
"""

_SELECT_RUN_COLUMNS = (
    "SELECT run_id, tenant_id, base_url, status, pages_crawled, chunks_created, "
    "records_written, degraded, error_message, started_at, completed_at "
    "FROM ingestion_runs"
)


class SQLiteIngestionStateProvider(IIngestionStateProvider):
    """SQLite-backed active-generation pointer and run history."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_GENERATIONS_SQL)
            await db.execute(_CREATE_RUNS_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("ingestion_state_db_initialized", path=str(self._db_path))

    # -- Active generation ---------------------------------------------------

    async def get_active_generation(self, tenant_id: str) -> str | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT generation FROM active_generations WHERE tenant_id = ?",
                (tenant_id,),
            )
            row = await cursor.fetchone()
        return row[0] if row else None

    async def set_active_generation(self, tenant_id: str, generation: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_SET_GENERATION_SQL, (tenant_id, generation))
            await db.commit()
        logger.info("active_generation_set", tenant_id=tenant_id, generation=generation)

    async def clear_active_generation(self, tenant_id: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("DELETE FROM active_generations WHERE tenant_id = ?", (tenant_id,))
            await db.commit()
        logger.info("active_generation_cleared", tenant_id=tenant_id)

    # -- Run history ---------------------------------------------------------

    async def record_run(self, run: IngestionRun) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _UPSERT_RUN_SQL,
                (
                    run.run_id,
                    run.tenant_id,
                    run.base_url,
                    run.phase.value,
                    run.pages_crawled,
                    run.chunks_created,
                    run.records_written,
                    int(run.degraded),
                    run.error_message,
                    run.started_at.isoformat(),
                    run.completed_at.isoformat() if run.completed_at else None,
                ),
            )
            await db.commit()
        logger.debug("ingestion_run_recorded", run_id=run.run_id, status=run.phase.value)

    async def get_run(self, run_id: str) -> IngestionRun | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(f"{_SELECT_RUN_COLUMNS} WHERE run_id = ?", (run_id,))
            row = await cursor.fetchone()
        return self._row_to_run(row) if row else None

    async def list_runs(self, tenant_id: str, limit: int = 20) -> list[IngestionRun]:
        """Return the tenant's runs, newest first."""
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"{_SELECT_RUN_COLUMNS} WHERE tenant_id = ? ORDER BY started_at DESC LIMIT ?",
                (tenant_id, limit),
            )
            rows = await cursor.fetchall()
        return [self._row_to_run(r) for r in rows]

    @staticmethod
    def _row_to_run(row: aiosqlite.Row) -> IngestionRun:
        return IngestionRun(
            run_id=row["run_id"],
            tenant_id=row["tenant_id"],
            base_url=row["base_url"],
            phase=IngestionPhase(row["status"]),
            pages_crawled=row["pages_crawled"],
            chunks_created=row["chunks_created"],
            records_written=row["records_written"],
            degraded=bool(row["degraded"]),
            error_message=row["error_message"],
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=(
                datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None
            ),
        )
