from __future__ import annotations

import copy
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..connector_base import LaunchSource, Page, PageParams
from ..utils import parse_iso


class InMemoryLaunchSource(LaunchSource):
    """Launch catalog held in a list, for offline runs and tests.

    Paging, ordering and the change window behave like the live endpoint, so
    the orchestrator can't tell the two apart.
    """

    def __init__(self, launches: Iterable[Dict[str, Any]], *, name: str = "memory"):
        self._name = name
        self._launches: List[Dict[str, Any]] = [copy.deepcopy(x) for x in launches]
        self.calls: List[PageParams] = []

    @property
    def name(self) -> str:
        return self._name

    @classmethod
    def from_fixture(cls, path: str | Path) -> "InMemoryLaunchSource":
        """Load a JSON file holding either a list of launches or an LL2 page."""
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("results") or []
        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a list of launches or an object with 'results'")
        return cls(data, name=f"fixture:{Path(path).name}")

    def put(self, launch: Dict[str, Any]) -> None:
        """Add a launch, or replace the one with the same id."""
        for i, existing in enumerate(self._launches):
            if isinstance(existing, dict) and existing.get("id") == launch.get("id"):
                self._launches[i] = copy.deepcopy(launch)
                return
        self._launches.append(copy.deepcopy(launch))

    def fetch_page(self, params: PageParams) -> Page:
        self.calls.append(params)
        rows = [r for r in self._launches if _matches(r, params)]
        rows = _ordered(rows, params.ordering)
        page = rows[params.offset : params.offset + params.limit]
        has_more = params.offset + len(page) < len(rows)
        return Page(
            results=copy.deepcopy(page),
            count=len(rows),
            has_more=has_more,
            next_params=params.next() if has_more else None,
        )

    def fetch_by_id(self, launch_id: str) -> Optional[Dict[str, Any]]:
        for r in self._launches:
            if isinstance(r, dict) and r.get("id") == launch_id:
                return copy.deepcopy(r)
        return None


def _instant(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return parse_iso(value)
    except ValueError:
        return None


def _matches(row: Any, params: PageParams) -> bool:
    if not isinstance(row, dict):
        # Malformed entries still travel so the reconciler can count them.
        return params.changed_since is None and params.net_from is None and params.net_to is None and not params.search

    if params.changed_since:
        changed = _instant(row.get("last_updated"))
        if changed is None or changed < parse_iso(params.changed_since):
            return False
    if params.net_from or params.net_to:
        net = _instant(row.get("net"))
        if net is None:
            return False
        if params.net_from and net < parse_iso(params.net_from):
            return False
        if params.net_to and net > parse_iso(params.net_to):
            return False
    if params.search:
        needle = params.search.lower()
        mission = row.get("mission") if isinstance(row.get("mission"), dict) else {}
        hay = [row.get("name"), mission.get("name")]
        if not any(isinstance(h, str) and needle in h.lower() for h in hay):
            return False
    return True


def _field(row: Any, field: str) -> Any:
    return row.get(field) if isinstance(row, dict) else None


def _ordered(rows: List[Any], ordering: str) -> List[Any]:
    # Stable sorts applied from the least significant key up; rows without
    # the field stay last in either direction.
    keys = [k.strip() for k in (ordering or "id").split(",") if k.strip()]
    for key in reversed(keys):
        desc = key.startswith("-")
        field = key.lstrip("-")
        present = [r for r in rows if _field(r, field) is not None]
        missing = [r for r in rows if _field(r, field) is None]
        rows = sorted(present, key=lambda r: str(_field(r, field)), reverse=desc) + missing
    return rows
