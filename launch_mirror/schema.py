from __future__ import annotations

from .db import Database, execute

# Timestamps are stored as ISO-8601 UTC text ("...Z") on both backends so
# range filters compare the same way everywhere.
SQL_LAUNCHES = """
CREATE TABLE IF NOT EXISTS launches (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  slug TEXT,
  status_id INTEGER,
  status_name TEXT,
  status_abbrev TEXT,
  status_description TEXT,
  net TEXT,
  window_start TEXT,
  window_end TEXT,
  rocket_id INTEGER,
  rocket_name TEXT,
  rocket_family TEXT,
  rocket_variant TEXT,
  rocket_full_name TEXT,
  provider_id INTEGER,
  provider_name TEXT,
  provider_abbrev TEXT,
  provider_type TEXT,
  provider_country_code TEXT,
  pad_id INTEGER,
  pad_name TEXT,
  pad_wiki_url TEXT,
  pad_map_url TEXT,
  pad_latitude {float},
  pad_longitude {float},
  location_id INTEGER,
  location_name TEXT,
  location_country_code TEXT,
  location_map_image TEXT,
  location_timezone TEXT,
  mission_id INTEGER,
  mission_name TEXT,
  mission_description TEXT,
  mission_type TEXT,
  mission_orbit_id INTEGER,
  mission_orbit_name TEXT,
  mission_orbit_abbrev TEXT,
  spacecraft_stage_id INTEGER,
  spacecraft_name TEXT,
  spacecraft_serial_number TEXT,
  spacecraft_status TEXT,
  spacecraft_description TEXT,
  spacecraft_destination TEXT,
  payload_count INTEGER,
  payload_total_mass_kg {float},
  image_url TEXT,
  infographic_url TEXT,
  webcast_live INTEGER,
  slug_url TEXT,
  last_updated TEXT,
  imported_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
)
"""

SQL_SYNC_RUNS = """
CREATE TABLE IF NOT EXISTS sync_runs (
  id {serial_pk},
  sync_type TEXT NOT NULL,
  started_at TEXT NOT NULL,
  completed_at TEXT,
  records_fetched INTEGER NOT NULL DEFAULT 0,
  records_added INTEGER NOT NULL DEFAULT 0,
  records_updated INTEGER NOT NULL DEFAULT 0,
  records_unchanged INTEGER NOT NULL DEFAULT 0,
  records_invalid INTEGER NOT NULL DEFAULT 0,
  api_calls_made INTEGER NOT NULL DEFAULT 0,
  status TEXT NOT NULL DEFAULT 'running',
  error_message TEXT,
  last_api_offset INTEGER,
  page_size INTEGER NOT NULL,
  changed_since TEXT,
  resumed_from_id INTEGER
)
"""

SQL_SYNC_LOCK = """
CREATE TABLE IF NOT EXISTS sync_lock (
  name TEXT PRIMARY KEY,
  owner TEXT NOT NULL,
  acquired_at TEXT NOT NULL,
  expires_at TEXT NOT NULL
)
"""

SQL_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_launches_net ON launches(net)",
    "CREATE INDEX IF NOT EXISTS idx_launches_provider_name ON launches(provider_name)",
    "CREATE INDEX IF NOT EXISTS idx_launches_location_name ON launches(location_name)",
    "CREATE INDEX IF NOT EXISTS idx_launches_location_country ON launches(location_country_code)",
    "CREATE INDEX IF NOT EXISTS idx_launches_status ON launches(status_abbrev)",
    "CREATE INDEX IF NOT EXISTS idx_launches_rocket_name ON launches(rocket_name)",
    "CREATE INDEX IF NOT EXISTS idx_launches_last_updated ON launches(last_updated)",
    "CREATE INDEX IF NOT EXISTS idx_sync_runs_type_status ON sync_runs(sync_type, status)",
    "CREATE INDEX IF NOT EXISTS idx_sync_runs_started ON sync_runs(started_at)",
)

_DIALECT_TYPES = {
    "sqlite": {"float": "REAL", "serial_pk": "INTEGER PRIMARY KEY AUTOINCREMENT"},
    "postgres": {"float": "DOUBLE PRECISION", "serial_pk": "BIGSERIAL PRIMARY KEY"},
}


def schema_statements(dialect: str) -> list[str]:
    types = _DIALECT_TYPES[dialect]
    return [
        SQL_LAUNCHES.format(**types),
        SQL_SYNC_RUNS.format(**types),
        SQL_SYNC_LOCK,
        *SQL_INDEXES,
    ]


def init_schema(database: Database) -> None:
    with database.connect() as conn:
        for stmt in schema_statements(database.dialect):
            execute(conn, stmt)
