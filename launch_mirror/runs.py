from __future__ import annotations

from typing import Any, Dict, List, Optional

from .db import Database, execute, fetchall_dicts, fetchone, fetchone_dict
from .exceptions import StoreError
from .models import RunStats, SyncRun, SyncStatus, SyncType

_COLUMNS = """
id, sync_type, started_at, completed_at,
records_fetched, records_added, records_updated, records_unchanged, records_invalid,
api_calls_made, status, error_message, last_api_offset, page_size, changed_since, resumed_from_id
"""

SQL_START = """
INSERT INTO sync_runs (
  sync_type, started_at, status,
  records_fetched, records_added, records_updated, records_unchanged, records_invalid,
  api_calls_made, last_api_offset, page_size, changed_since, resumed_from_id
)
VALUES (%s, %s, 'running', %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
RETURNING id
"""

# Counters and offset move together in one statement: that is the checkpoint.
SQL_CHECKPOINT = """
UPDATE sync_runs
SET records_fetched = %s,
    records_added = %s,
    records_updated = %s,
    records_unchanged = %s,
    records_invalid = %s,
    api_calls_made = %s,
    last_api_offset = %s
WHERE id = %s AND status = 'running'
"""

SQL_FINISH = """
UPDATE sync_runs
SET completed_at = %s,
    status = %s,
    error_message = %s,
    records_fetched = %s,
    records_added = %s,
    records_updated = %s,
    records_unchanged = %s,
    records_invalid = %s,
    api_calls_made = %s
WHERE id = %s AND status = 'running'
"""

SQL_GET = f"SELECT {_COLUMNS} FROM sync_runs WHERE id = %s"

SQL_RUNNING = f"""
SELECT {_COLUMNS} FROM sync_runs
WHERE sync_type = %s AND status = 'running'
ORDER BY id DESC
LIMIT 1
"""

SQL_LATEST = f"""
SELECT {_COLUMNS} FROM sync_runs
WHERE sync_type = %s
ORDER BY id DESC
LIMIT 1
"""

SQL_RECENT = f"""
SELECT {_COLUMNS} FROM sync_runs
ORDER BY id DESC
LIMIT %s
"""

SQL_LAST_SUCCESS = f"""
SELECT {_COLUMNS} FROM sync_runs
WHERE status = 'success'
ORDER BY completed_at DESC, id DESC
LIMIT 1
"""


class RunStateError(StoreError):
    """A journal write found the run already finalized."""


class SyncRunJournal:
    """Durable record of every full load and incremental sync."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def start(
        self,
        sync_type: SyncType,
        started_at: str,
        page_size: int,
        *,
        changed_since: str | None = None,
        stats: RunStats | None = None,
        api_calls_made: int = 0,
        last_api_offset: int | None = None,
        resumed_from_id: int | None = None,
    ) -> SyncRun:
        stats = stats or RunStats()
        with self.database.connect() as conn:
            row = fetchone(
                conn,
                SQL_START,
                (
                    sync_type.value,
                    started_at,
                    stats.fetched,
                    stats.added,
                    stats.updated,
                    stats.unchanged,
                    stats.invalid,
                    api_calls_made,
                    last_api_offset,
                    page_size,
                    changed_since,
                    resumed_from_id,
                ),
            )
        return SyncRun(
            id=int(row[0]),
            sync_type=sync_type,
            started_at=started_at,
            stats=RunStats(**vars(stats)),
            api_calls_made=api_calls_made,
            last_api_offset=last_api_offset,
            page_size=page_size,
            changed_since=changed_since,
            resumed_from_id=resumed_from_id,
        )

    def get(self, run_id: int) -> Optional[SyncRun]:
        return self._one(SQL_GET, (run_id,))

    def find_running(self, sync_type: SyncType) -> Optional[SyncRun]:
        return self._one(SQL_RUNNING, (sync_type.value,))

    def latest(self, sync_type: SyncType) -> Optional[SyncRun]:
        return self._one(SQL_LATEST, (sync_type.value,))

    def last_success(self) -> Optional[SyncRun]:
        return self._one(SQL_LAST_SUCCESS)

    def recent(self, limit: int = 10) -> List[SyncRun]:
        with self.database.connect() as conn:
            rows = fetchall_dicts(conn, SQL_RECENT, (limit,))
        return [_run_from_row(r) for r in rows]

    def checkpoint(self, run: SyncRun) -> None:
        s = run.stats
        with self.database.connect() as conn:
            n = execute(
                conn,
                SQL_CHECKPOINT,
                (s.fetched, s.added, s.updated, s.unchanged, s.invalid, run.api_calls_made, run.last_api_offset, run.id),
            )
        if n != 1:
            raise RunStateError(f"sync run {run.id} is no longer running")

    def finish(self, run: SyncRun, status: SyncStatus, completed_at: str, error: str | None = None) -> None:
        if status is SyncStatus.RUNNING:
            raise ValueError("finish() needs a terminal status")
        s = run.stats
        with self.database.connect() as conn:
            n = execute(
                conn,
                SQL_FINISH,
                (
                    completed_at,
                    status.value,
                    error,
                    s.fetched,
                    s.added,
                    s.updated,
                    s.unchanged,
                    s.invalid,
                    run.api_calls_made,
                    run.id,
                ),
            )
        if n != 1:
            raise RunStateError(f"sync run {run.id} was already finalized")
        run.status = status
        run.completed_at = completed_at
        run.error_message = error

    def abandon(self, run_id: int, completed_at: str, reason: str = "abandoned by operator") -> SyncRun:
        """Mark a stuck `running` run failed; its checkpoint stays resumable."""
        run = self.get(run_id)
        if run is None:
            raise KeyError(run_id)
        self.finish(run, SyncStatus.FAILED, completed_at, reason)
        return run

    def _one(self, sql: str, params: tuple = ()) -> Optional[SyncRun]:
        with self.database.connect() as conn:
            row = fetchone_dict(conn, sql, params)
        return _run_from_row(row) if row else None


def _run_from_row(row: Dict[str, Any]) -> SyncRun:
    return SyncRun(
        id=int(row["id"]),
        sync_type=SyncType(row["sync_type"]),
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        status=SyncStatus(row["status"]),
        stats=RunStats(
            fetched=row["records_fetched"],
            added=row["records_added"],
            updated=row["records_updated"],
            unchanged=row["records_unchanged"],
            invalid=row["records_invalid"],
        ),
        api_calls_made=row["api_calls_made"],
        error_message=row["error_message"],
        last_api_offset=row["last_api_offset"],
        page_size=row["page_size"],
        changed_since=row["changed_since"],
        resumed_from_id=row["resumed_from_id"],
    )
