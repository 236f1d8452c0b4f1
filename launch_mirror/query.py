from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from .filters import FilterSpec
from .models import Launch
from .storage import LaunchStore
from .utils import now_utc


@dataclass
class QueryResult:
    launches: List[Launch]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.launches) < self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records": [launch.to_dict() for launch in self.launches],
            "pagination": {
                "total": self.total,
                "limit": self.limit,
                "offset": self.offset,
                "hasMore": self.has_more,
            },
        }


class QueryEngine:
    """Read side of the mirror. Never writes, never calls the catalog."""

    def __init__(self, store: LaunchStore, now: Callable[[], datetime] = now_utc) -> None:
        self.store = store
        self._now = now

    def search(self, spec: FilterSpec) -> QueryResult:
        launches, total = self.store.query(spec, now=self._now())
        return QueryResult(launches=launches, total=total, limit=spec.limit, offset=spec.offset)

    def search_params(self, params: Mapping[str, Any]) -> QueryResult:
        """Same as search() for raw request parameters. Raises FilterError."""
        return self.search(FilterSpec.from_params(params))

    def get(self, launch_id: str) -> Optional[Dict[str, Any]]:
        launch = self.store.get_by_id(launch_id)
        return launch.to_dict() if launch else None

    def filter_options(self) -> Dict[str, List[Dict[str, Any]]]:
        return self.store.filter_options()

    def stats(self) -> Dict[str, Any]:
        return self.store.stats(now=self._now())
