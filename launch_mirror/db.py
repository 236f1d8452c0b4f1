from __future__ import annotations

import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from .exceptions import StoreError

SQLITE_PREFIX = "sqlite:///"
POSTGRES_PREFIXES = ("postgresql://", "postgres://")


class Database:
    """Store handle. One connection, and one transaction, per `connect()` block.

    `sqlite:///relative.db` and `sqlite:////abs/path.db` use the stdlib driver in
    WAL mode; `postgresql://` DSNs go through psycopg at REPEATABLE READ so a
    block reads from a single snapshot on both backends.
    """

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        if dsn.startswith(SQLITE_PREFIX):
            self.dialect = "sqlite"
            self.path = dsn[len(SQLITE_PREFIX):]
            if not self.path or self.path == ":memory:":
                raise ValueError("sqlite DATABASE_URL needs a file path")
        elif dsn.startswith(POSTGRES_PREFIXES):
            self.dialect = "postgres"
            self.path = None
        else:
            raise ValueError(f"Unsupported DATABASE_URL {dsn!r}; use sqlite:///<path> or postgresql://")

    @contextmanager
    def connect(self) -> Iterator[Any]:
        if self.dialect == "postgres":
            import psycopg

            driver_error: type[Exception] = psycopg.Error
            try:
                conn = psycopg.connect(self.dsn)
                conn.isolation_level = psycopg.IsolationLevel.REPEATABLE_READ
            except psycopg.Error as e:
                raise StoreError(f"cannot open database: {e}") from e
        else:
            driver_error = sqlite3.Error
            try:
                conn = self._open_sqlite()
            except sqlite3.Error as e:
                raise StoreError(f"cannot open database {self.path}: {e}") from e

        try:
            yield conn
            conn.commit()
        except driver_error as e:
            conn.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _open_sqlite(self) -> sqlite3.Connection:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=30, isolation_level=None, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("BEGIN")
        return conn


def _sql(conn: Any, sql: str) -> str:
    if isinstance(conn, sqlite3.Connection):
        return sql.replace("%s", "?")
    return sql


def execute(conn: Any, sql: str, params: tuple = ()) -> int:
    with closing(conn.cursor()) as cur:
        cur.execute(_sql(conn, sql), params)
        return cur.rowcount


def fetchone(conn: Any, sql: str, params: tuple = ()) -> Optional[tuple]:
    with closing(conn.cursor()) as cur:
        cur.execute(_sql(conn, sql), params)
        return cur.fetchone()


def fetchone_dict(conn: Any, sql: str, params: tuple = ()) -> Optional[dict[str, Any]]:
    with closing(conn.cursor()) as cur:
        cur.execute(_sql(conn, sql), params)
        row = cur.fetchone()
        if row is None:
            return None
        names = [d[0] for d in cur.description]
        return dict(zip(names, row))


def fetchall_dicts(conn: Any, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
    with closing(conn.cursor()) as cur:
        cur.execute(_sql(conn, sql), params)
        names = [d[0] for d in cur.description]
        return [dict(zip(names, row)) for row in cur.fetchall()]
