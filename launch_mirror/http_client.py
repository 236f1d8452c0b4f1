from __future__ import annotations

import re
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import requests

from .exceptions import SourceRequestError, SourceResponseError, ThrottledError, TransientSourceError
from .utils import now_utc

RETRY_STATUS = {408, 500, 502, 503, 504}
THROTTLE_STATUS = 429

# LL2 puts the cool-down in the body: "Request was throttled. Expected available in 803 seconds."
_THROTTLE_DETAIL = re.compile(r"available in (\d+(?:\.\d+)?) seconds?")


@dataclass
class HttpConfig:
    user_agent: str = "launch_mirror/0.1"
    connect_timeout: float = 10.0
    read_timeout: float = 30.0


class HttpClient:
    """One attempt per call. Failures come back as typed errors; the caller
    decides whether and when to retry."""

    def __init__(self, cfg: HttpConfig, session: Optional[requests.Session] = None):
        self.cfg = cfg
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": cfg.user_agent})

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        timeout = kwargs.pop("timeout", (self.cfg.connect_timeout, self.cfg.read_timeout))
        try:
            resp = self.session.request(method, url, timeout=timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientSourceError(f"{method} {url}: {e}") from e
        except requests.RequestException as e:
            raise SourceRequestError(f"{method} {url}: {e}") from e

        if resp.status_code == THROTTLE_STATUS:
            raise ThrottledError(f"{method} {url}: throttled (429)", retry_after=_retry_after(resp))
        if resp.status_code in RETRY_STATUS or resp.status_code >= 500:
            raise TransientSourceError(f"{method} {url}: HTTP {resp.status_code}")
        return resp

    def get_json(self, url: str, *, allow_404: bool = False, **kwargs: Any) -> Any:
        resp = self.request("GET", url, **kwargs)
        if resp.status_code == 404 and allow_404:
            return None
        if resp.status_code >= 400:
            raise SourceRequestError(f"GET {url}: HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise SourceResponseError(f"GET {url}: body is not JSON") from e


def _retry_after(resp: requests.Response) -> float | None:
    ra = resp.headers.get("Retry-After")
    if ra:
        try:
            return max(float(ra), 0.0)
        except ValueError:
            try:
                when = parsedate_to_datetime(ra)
            except (TypeError, ValueError):
                when = None
            if when is not None and when.tzinfo is not None:
                return max((when - now_utc()).total_seconds(), 0.0)

    m = _THROTTLE_DETAIL.search(resp.text or "")
    if m:
        return float(m.group(1))
    return None
