from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from .db import Database, execute, fetchall_dicts, fetchone, fetchone_dict
from .filters import FilterSpec, compile_filters
from .models import LAUNCH_COLUMNS, Launch
from .utils import as_iso, now_utc

_INSERT_COLUMNS = LAUNCH_COLUMNS + ("imported_at", "updated_at")

SQL_UPSERT = (
    f"INSERT INTO launches ({', '.join(_INSERT_COLUMNS)})\n"
    f"VALUES ({', '.join(['%s'] * len(_INSERT_COLUMNS))})\n"
    "ON CONFLICT (id) DO UPDATE SET\n  "
    + ",\n  ".join(f"{c} = EXCLUDED.{c}" for c in LAUNCH_COLUMNS if c != "id")
    + ",\n  updated_at = EXCLUDED.updated_at"
)

SQL_EXISTS = "SELECT 1 FROM launches WHERE id = %s"
SQL_GET = "SELECT * FROM launches WHERE id = %s"

SQL_PROVIDERS = """
SELECT provider_name AS name, provider_abbrev AS abbrev, COUNT(*) AS count
FROM launches
WHERE provider_name IS NOT NULL
GROUP BY provider_name, provider_abbrev
ORDER BY count DESC, name
"""

SQL_COUNTRIES = """
SELECT location_country_code AS code, COUNT(*) AS count
FROM launches
WHERE location_country_code IS NOT NULL
GROUP BY location_country_code
ORDER BY count DESC, code
"""

SQL_LOCATIONS = """
SELECT location_name AS name, location_country_code AS country_code, COUNT(*) AS count
FROM launches
WHERE location_name IS NOT NULL
GROUP BY location_name, location_country_code
ORDER BY count DESC, name
"""

SQL_STATUSES = """
SELECT status_abbrev AS abbrev, status_name AS name, COUNT(*) AS count
FROM launches
WHERE status_abbrev IS NOT NULL
GROUP BY status_abbrev, status_name
ORDER BY count DESC, abbrev
"""

SQL_ROCKET_FAMILIES = """
SELECT rocket_family AS family, COUNT(*) AS count
FROM launches
WHERE rocket_family IS NOT NULL
GROUP BY rocket_family
ORDER BY count DESC, family
"""

SQL_LAST_SUCCESS = """
SELECT completed_at FROM sync_runs
WHERE status = 'success'
ORDER BY completed_at DESC
LIMIT 1
"""

SQL_NEXT_LAUNCH = """
SELECT id, name, net FROM launches
WHERE net >= %s
ORDER BY net ASC, id ASC
LIMIT 1
"""


class LaunchStore:
    """Keyed launch collection on top of a Database handle.

    Every public call runs in its own transaction: an upsert is never visible
    half-written, and a query's page and total come from the same snapshot.
    """

    def __init__(self, database: Database, now: Callable[[], datetime] = now_utc) -> None:
        self.database = database
        self._now = now

    def upsert(self, launch: Launch) -> bool:
        """Insert or fully replace `launch`. Returns True when the id was new."""
        stamp = as_iso(self._now())
        values = [_to_db(name, value) for name, value in launch.catalog_values().items()]
        with self.database.connect() as conn:
            existed = fetchone(conn, SQL_EXISTS, (launch.id,)) is not None
            execute(conn, SQL_UPSERT, tuple(values) + (stamp, stamp))
        return not existed

    def get_by_id(self, launch_id: str) -> Optional[Launch]:
        with self.database.connect() as conn:
            row = fetchone_dict(conn, SQL_GET, (launch_id,))
        return _launch_from_row(row) if row else None

    def query(self, spec: FilterSpec, now: Optional[datetime] = None) -> Tuple[List[Launch], int]:
        compiled = compile_filters(spec, now or self._now())
        params = tuple(compiled.params)
        with self.database.connect() as conn:
            total = fetchone(conn, f"SELECT COUNT(*) FROM launches{compiled.where_sql}", params)[0]
            rows = fetchall_dicts(
                conn,
                f"SELECT * FROM launches{compiled.where_sql}{compiled.order_sql} LIMIT %s OFFSET %s",
                params + (spec.limit, spec.offset),
            )
        return [_launch_from_row(r) for r in rows], int(total)

    def count(self) -> int:
        with self.database.connect() as conn:
            return int(fetchone(conn, "SELECT COUNT(*) FROM launches")[0])

    def filter_options(self) -> Dict[str, List[Dict[str, Any]]]:
        with self.database.connect() as conn:
            return {
                "providers": fetchall_dicts(conn, SQL_PROVIDERS),
                "countries": fetchall_dicts(conn, SQL_COUNTRIES),
                "locations": fetchall_dicts(conn, SQL_LOCATIONS),
                "statuses": fetchall_dicts(conn, SQL_STATUSES),
                "rocketFamilies": fetchall_dicts(conn, SQL_ROCKET_FAMILIES),
            }

    def stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or self._now()
        year_start = datetime(now.year, 1, 1, tzinfo=timezone.utc)
        next_year = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
        with self.database.connect() as conn:
            total = fetchone(conn, "SELECT COUNT(*) FROM launches")[0]
            upcoming = fetchone(conn, "SELECT COUNT(*) FROM launches WHERE net >= %s", (as_iso(now),))[0]
            this_year = fetchone(
                conn,
                "SELECT COUNT(*) FROM launches WHERE net >= %s AND net < %s",
                (as_iso(year_start), as_iso(next_year)),
            )[0]
            last_sync = fetchone(conn, SQL_LAST_SUCCESS)
            next_launch = fetchone_dict(conn, SQL_NEXT_LAUNCH, (as_iso(now),))
        return {
            "totalLaunches": int(total),
            "upcomingLaunches": int(upcoming),
            "launchesThisYear": int(this_year),
            "lastSync": last_sync[0] if last_sync else None,
            "nextLaunch": next_launch,
        }


def _to_db(name: str, value: Any) -> Any:
    # webcast_live is an INTEGER column on both backends.
    if name == "webcast_live" and value is not None:
        return int(bool(value))
    return value


def _launch_from_row(row: Dict[str, Any]) -> Launch:
    values = {name: row.get(name) for name in _INSERT_COLUMNS}
    if values["webcast_live"] is not None:
        values["webcast_live"] = bool(values["webcast_live"])
    return Launch(**values)
