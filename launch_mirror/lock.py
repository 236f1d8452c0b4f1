from __future__ import annotations

import os
import socket
from datetime import datetime, timedelta
from typing import Callable
from uuid import uuid4

from .db import Database, execute, fetchone
from .exceptions import SyncInProgressError
from .utils import as_iso, now_utc

LEASE_NAME = "sync"

# The WHERE on the conflict branch only lets an expired lease (or our own)
# be taken over; a live lease held by someone else is left untouched.
SQL_ACQUIRE = """
INSERT INTO sync_lock (name, owner, acquired_at, expires_at)
VALUES (%s, %s, %s, %s)
ON CONFLICT (name) DO UPDATE SET
  owner = EXCLUDED.owner,
  acquired_at = EXCLUDED.acquired_at,
  expires_at = EXCLUDED.expires_at
WHERE sync_lock.expires_at < EXCLUDED.acquired_at OR sync_lock.owner = EXCLUDED.owner
"""

SQL_HOLDER = "SELECT owner, expires_at FROM sync_lock WHERE name = %s"
SQL_REFRESH = "UPDATE sync_lock SET expires_at = %s WHERE name = %s AND owner = %s"
SQL_RELEASE = "DELETE FROM sync_lock WHERE name = %s AND owner = %s"


class SyncLease:
    """Single-writer admission for sync runs.

    Full loads and incremental syncs share one lease, so two runs can never
    interleave their checkpoint writes. The lease expires on its own if the
    holder dies without releasing it.
    """

    def __init__(
        self,
        database: Database,
        ttl_sec: float,
        *,
        now: Callable[[], datetime] = now_utc,
        owner: str | None = None,
    ) -> None:
        self.database = database
        self.ttl = timedelta(seconds=ttl_sec)
        self._now = now
        self.owner = owner or f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"
        self.held = False

    def acquire(self) -> None:
        now = self._now()
        with self.database.connect() as conn:
            execute(conn, SQL_ACQUIRE, (LEASE_NAME, self.owner, as_iso(now), as_iso(now + self.ttl)))
            holder = fetchone(conn, SQL_HOLDER, (LEASE_NAME,))
        if holder is None or holder[0] != self.owner:
            who, until = (holder[0], holder[1]) if holder else ("unknown", "unknown")
            raise SyncInProgressError(f"sync already in progress (lease held by {who} until {until})")
        self.held = True

    def refresh(self) -> None:
        with self.database.connect() as conn:
            n = execute(conn, SQL_REFRESH, (as_iso(self._now() + self.ttl), LEASE_NAME, self.owner))
        if n != 1:
            self.held = False
            raise SyncInProgressError("sync lease was lost to another writer")

    def release(self) -> None:
        if not self.held:
            return
        with self.database.connect() as conn:
            execute(conn, SQL_RELEASE, (LEASE_NAME, self.owner))
        self.held = False

    def __enter__(self) -> "SyncLease":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
