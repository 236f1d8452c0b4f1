from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Dict

from .config import Settings
from .exceptions import ThrottledError, TransientSourceError

# Launch Library 2 allowances: a token buys a daily budget, anonymous callers get an hourly one.
KEYED_LIMIT = {"requests": 300, "period": "day"}
ANONYMOUS_LIMIT = {"requests": 15, "period": "hour"}


@dataclass
class RetryPolicy:
    max_retries: int = 3
    throttle_cooldown_sec: float = 300.0
    backoff_base_sec: float = 2.0
    backoff_max_sec: float = 60.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.sync_max_retries,
            throttle_cooldown_sec=settings.sync_throttle_cooldown_sec,
            backoff_base_sec=settings.sync_backoff_base_sec,
            backoff_max_sec=settings.sync_backoff_max_sec,
        )

    def delay_for(self, attempt: int, error: TransientSourceError) -> float:
        """Seconds to wait before retry number `attempt` (1-based)."""
        if isinstance(error, ThrottledError):
            if error.retry_after is not None:
                return error.retry_after
            return self.throttle_cooldown_sec

        base = self.backoff_base_sec * (2 ** (attempt - 1))
        wait = min(base, self.backoff_max_sec)
        if self.jitter:
            wait += random.uniform(0, 0.25 * wait)
        return wait


def rate_limit_info(has_api_key: bool, request_delay_sec: float) -> Dict[str, Any]:
    return {
        "hasApiKey": has_api_key,
        "limits": dict(KEYED_LIMIT if has_api_key else ANONYMOUS_LIMIT),
        "requestDelaySec": request_delay_sec,
    }
