from __future__ import annotations

from typing import Any, Dict, Optional

from ..config import Settings
from ..connector_base import LaunchSource, Page, PageParams
from ..exceptions import SourceResponseError
from ..http_client import HttpClient, HttpConfig
from ..rate_limit import rate_limit_info


class LaunchLibraryClient(LaunchSource):
    """Launch Library 2 `/launch/` endpoint, one page per call."""

    @property
    def name(self) -> str:
        return "launch_library_2"

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        request_delay_sec: float = 5.0,
        http: HttpClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.request_delay_sec = request_delay_sec
        self.client = http or HttpClient(HttpConfig())

    @classmethod
    def from_settings(cls, settings: Settings) -> "LaunchLibraryClient":
        http = HttpClient(
            HttpConfig(connect_timeout=settings.http_connect_timeout, read_timeout=settings.http_read_timeout)
        )
        return cls(
            settings.ll2_api_base_url,
            settings.ll2_api_key,
            request_delay_sec=settings.sync_delay_sec,
            http=http,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Token {self.api_key}"
        return headers

    def _query(self, params: PageParams) -> Dict[str, Any]:
        q: Dict[str, Any] = {
            "limit": params.limit,
            "offset": params.offset,
            "ordering": params.ordering,
        }
        # Nested objects (spacecraft stage, pad coordinates) only come back in detailed mode,
        # which anonymous callers can't afford at 15 requests an hour.
        if self.api_key:
            q["mode"] = "detailed"
        if params.changed_since:
            q["last_updated__gte"] = params.changed_since
        if params.net_from:
            q["net__gte"] = params.net_from
        if params.net_to:
            q["net__lte"] = params.net_to
        if params.search:
            q["search"] = params.search
        return q

    def fetch_page(self, params: PageParams) -> Page:
        url = f"{self.base_url}/launch/"
        data = self.client.get_json(url, params=self._query(params), headers=self._headers())
        return parse_page(data, params)

    def fetch_by_id(self, launch_id: str) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}/launch/{launch_id}/"
        data = self.client.get_json(url, allow_404=True, params={"mode": "detailed"}, headers=self._headers())
        if data is None:
            return None
        if not isinstance(data, dict):
            raise SourceResponseError(f"launch {launch_id}: expected an object, got {type(data).__name__}")
        return data

    def rate_limit_info(self) -> Dict[str, Any]:
        return rate_limit_info(bool(self.api_key), self.request_delay_sec)


def parse_page(data: Any, params: PageParams) -> Page:
    """Check the envelope of a paginated answer. Individual results are left
    to the reconciler."""
    if not isinstance(data, dict):
        raise SourceResponseError(f"page at offset {params.offset}: expected an object, got {type(data).__name__}")
    results = data.get("results")
    if not isinstance(results, list):
        raise SourceResponseError(f"page at offset {params.offset}: 'results' is missing or not a list")

    count = data.get("count")
    if count is not None and (isinstance(count, bool) or not isinstance(count, int)):
        raise SourceResponseError(f"page at offset {params.offset}: 'count' is not an integer")

    has_more = data.get("next") is not None
    return Page(
        results=results,
        count=count,
        has_more=has_more,
        next_params=params.next() if has_more else None,
    )
