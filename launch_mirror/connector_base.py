from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from .config import MAX_PAGE_SIZE


@dataclass(frozen=True)
class PageParams:
    """Where the next page starts and which slice of the catalog it covers."""

    limit: int = MAX_PAGE_SIZE
    offset: int = 0
    ordering: str = "id"
    changed_since: Optional[str] = None
    net_from: Optional[str] = None
    net_to: Optional[str] = None
    search: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "limit", min(max(int(self.limit), 1), MAX_PAGE_SIZE))
        object.__setattr__(self, "offset", max(int(self.offset), 0))

    def next(self) -> "PageParams":
        return replace(self, offset=self.offset + self.limit)


@dataclass
class Page:
    results: List[Any]
    count: Optional[int]
    has_more: bool
    next_params: Optional[PageParams] = None


class LaunchSource(ABC):
    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def fetch_page(self, params: PageParams) -> Page:
        """Fetch one page. Must NOT write to the store or sleep between retries."""
        ...

    @abstractmethod
    def fetch_by_id(self, launch_id: str) -> Optional[Dict[str, Any]]:
        """Return the raw launch payload, or None when the catalog does not know the id."""
        ...

    def rate_limit_info(self) -> Dict[str, Any]:
        return {}
