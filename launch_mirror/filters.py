from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Mapping, Optional

from .exceptions import FilterError
from .utils import as_iso, parse_iso

DEFAULT_LIMIT = 20
MAX_LIMIT = 100

# Free-text search is OR'd across these columns.
SEARCH_COLUMNS = ("name", "mission_name", "mission_description", "provider_name")

_TRUE = {"true", "1", "yes", "on"}


class SortField(str, Enum):
    NET = "net"
    PROVIDER = "provider_name"
    LOCATION = "location_name"
    ROCKET = "rocket_name"

    @classmethod
    def parse(cls, value: Any) -> "SortField":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NET


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: Any) -> "SortDirection":
        if isinstance(value, cls):
            return value
        if str(value).strip().lower() == "desc":
            return cls.DESC
        return cls.ASC


@dataclass(frozen=True)
class FilterSpec:
    """Validated description of one launch query.

    Unset predicates add nothing; set ones are ANDed. `limit` is clamped to
    [1, MAX_LIMIT] and `offset` to >= 0 on construction, and unknown sort
    values fall back to ascending `net`.
    """

    upcoming: bool = False
    past: bool = False
    provider: Optional[str] = None
    country: Optional[str] = None
    location: Optional[str] = None
    rocket: Optional[str] = None
    status: Optional[str] = None
    search: Optional[str] = None
    net_from: Optional[datetime] = None
    net_to: Optional[datetime] = None
    limit: int = DEFAULT_LIMIT
    offset: int = 0
    sort: SortField = SortField.NET
    direction: SortDirection = SortDirection.ASC

    def __post_init__(self) -> None:
        object.__setattr__(self, "limit", min(max(int(self.limit), 1), MAX_LIMIT))
        object.__setattr__(self, "offset", max(int(self.offset), 0))
        object.__setattr__(self, "sort", SortField.parse(self.sort))
        object.__setattr__(self, "direction", SortDirection.parse(self.direction))

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "FilterSpec":
        """Build a spec from plain query-string style key/values."""
        return cls(
            upcoming=_flag(params.get("upcoming")),
            past=_flag(params.get("past")),
            provider=_text(params.get("provider")),
            country=_text(params.get("country")),
            location=_text(params.get("location")),
            rocket=_text(params.get("rocket")),
            status=_text(params.get("status")),
            search=_text(params.get("search")),
            net_from=_when("from", params.get("from")),
            net_to=_when("to", params.get("to")),
            limit=_integer("limit", params.get("limit"), DEFAULT_LIMIT),
            offset=_integer("offset", params.get("offset"), 0),
            sort=params.get("sort") or SortField.NET,
            direction=params.get("order") or params.get("direction") or SortDirection.ASC,
        )


@dataclass
class CompiledQuery:
    where_sql: str = ""
    params: List[Any] = field(default_factory=list)
    order_sql: str = ""


def compile_filters(spec: FilterSpec, now: datetime) -> CompiledQuery:
    clauses: List[str] = []
    params: List[Any] = []

    if spec.upcoming:
        clauses.append("net >= %s")
        params.append(as_iso(now))
    elif spec.past:
        clauses.append("net < %s")
        params.append(as_iso(now))

    if spec.net_from is not None:
        clauses.append("net >= %s")
        params.append(as_iso(spec.net_from))
    if spec.net_to is not None:
        clauses.append("net <= %s")
        params.append(as_iso(spec.net_to))

    if spec.provider:
        clauses.append(_contains("provider_name"))
        params.append(_pattern(spec.provider))
    if spec.location:
        clauses.append(_contains("location_name"))
        params.append(_pattern(spec.location))
    if spec.rocket:
        clauses.append(f"({_contains('rocket_name')} OR {_contains('rocket_family')})")
        params.extend([_pattern(spec.rocket)] * 2)

    if spec.country:
        clauses.append("location_country_code = %s")
        params.append(spec.country)
    if spec.status:
        clauses.append("status_abbrev = %s")
        params.append(spec.status)

    if spec.search:
        clauses.append("(" + " OR ".join(_contains(c) for c in SEARCH_COLUMNS) + ")")
        params.extend([_pattern(spec.search)] * len(SEARCH_COLUMNS))

    where_sql = " WHERE " + " AND ".join(clauses) if clauses else ""

    # NULLs last on both backends, id as the tie-breaker so pages never overlap.
    col = spec.sort.value
    order_sql = f" ORDER BY ({col} IS NULL), {col} {spec.direction.value.upper()}, id ASC"
    return CompiledQuery(where_sql=where_sql, params=params, order_sql=order_sql)


def _contains(column: str) -> str:
    return f"LOWER({column}) LIKE %s ESCAPE '\\'"


def _pattern(value: str) -> str:
    escaped = value.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return value is not None and str(value).strip().lower() in _TRUE


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _integer(name: str, value: Any, default: int) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise FilterError(f"{name} must be an integer, got {value!r}")


def _when(name: str, value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    text = _text(value)
    if text is None:
        return None
    try:
        return parse_iso(text)
    except ValueError:
        raise FilterError(f"{name} must be an ISO-8601 timestamp, got {value!r}")
