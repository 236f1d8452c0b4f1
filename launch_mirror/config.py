from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_DATABASE_URL = "sqlite:///data/launches.db"
DEFAULT_LL2_API_BASE_URL = "https://ll.thespacedevs.com/2.2.0"
MAX_PAGE_SIZE = 100


def env(name: str, default: str | None = None) -> str | None:
    v = os.getenv(name)
    return v if v is not None else default


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"

    ll2_api_base_url: str = DEFAULT_LL2_API_BASE_URL
    ll2_api_key: str | None = None
    http_connect_timeout: float = 10.0
    http_read_timeout: float = 30.0

    # Sync pacing
    sync_delay_sec: float = 5.0
    sync_lookback_hours: int = 48
    sync_page_size: int = MAX_PAGE_SIZE
    sync_max_retries: int = 3
    sync_throttle_cooldown_sec: float = 300.0
    sync_backoff_base_sec: float = 2.0
    sync_backoff_max_sec: float = 60.0
    sync_lock_ttl_sec: float = 3600.0

    # Scheduler cadence (minutes); keep it shorter than the lookback window
    sched_incremental_minutes: int = 1440

    @property
    def page_size(self) -> int:
        return min(max(self.sync_page_size, 1), MAX_PAGE_SIZE)


def load_settings() -> Settings:
    return Settings(
        database_url=env("DATABASE_URL", DEFAULT_DATABASE_URL) or DEFAULT_DATABASE_URL,
        log_level=env("LOG_LEVEL", "INFO") or "INFO",
        ll2_api_base_url=(env("LL2_API_BASE_URL", DEFAULT_LL2_API_BASE_URL) or DEFAULT_LL2_API_BASE_URL).rstrip("/"),
        ll2_api_key=env("LL2_API_KEY", None) or None,
        http_connect_timeout=float(env("HTTP_CONNECT_TIMEOUT", "10") or "10"),
        http_read_timeout=float(env("HTTP_READ_TIMEOUT", "30") or "30"),
        sync_delay_sec=float(env("SYNC_DELAY_SEC", "5") or "5"),
        sync_lookback_hours=int(env("SYNC_LOOKBACK_HOURS", "48") or "48"),
        sync_page_size=int(env("SYNC_PAGE_SIZE", "100") or "100"),
        sync_max_retries=int(env("SYNC_MAX_RETRIES", "3") or "3"),
        sync_throttle_cooldown_sec=float(env("SYNC_THROTTLE_COOLDOWN_SEC", "300") or "300"),
        sync_backoff_base_sec=float(env("SYNC_BACKOFF_BASE_SEC", "2") or "2"),
        sync_backoff_max_sec=float(env("SYNC_BACKOFF_MAX_SEC", "60") or "60"),
        sync_lock_ttl_sec=float(env("SYNC_LOCK_TTL_SEC", "3600") or "3600"),
        sched_incremental_minutes=int(env("SCHED_INCREMENTAL_MINUTES", "1440") or "1440"),
    )
