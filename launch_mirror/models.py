from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Optional


@dataclass
class Launch:
    """One launch mirrored from Launch Library 2, flattened to scalar columns.

    `last_updated` is the catalog's own version marker; `imported_at` and
    `updated_at` are local bookkeeping set by the store.
    """

    id: str
    name: str
    slug: Optional[str] = None

    status_id: Optional[int] = None
    status_name: Optional[str] = None
    status_abbrev: Optional[str] = None
    status_description: Optional[str] = None

    net: Optional[str] = None
    window_start: Optional[str] = None
    window_end: Optional[str] = None

    rocket_id: Optional[int] = None
    rocket_name: Optional[str] = None
    rocket_family: Optional[str] = None
    rocket_variant: Optional[str] = None
    rocket_full_name: Optional[str] = None

    provider_id: Optional[int] = None
    provider_name: Optional[str] = None
    provider_abbrev: Optional[str] = None
    provider_type: Optional[str] = None
    provider_country_code: Optional[str] = None

    pad_id: Optional[int] = None
    pad_name: Optional[str] = None
    pad_wiki_url: Optional[str] = None
    pad_map_url: Optional[str] = None
    pad_latitude: Optional[float] = None
    pad_longitude: Optional[float] = None

    location_id: Optional[int] = None
    location_name: Optional[str] = None
    location_country_code: Optional[str] = None
    location_map_image: Optional[str] = None
    location_timezone: Optional[str] = None

    mission_id: Optional[int] = None
    mission_name: Optional[str] = None
    mission_description: Optional[str] = None
    mission_type: Optional[str] = None
    mission_orbit_id: Optional[int] = None
    mission_orbit_name: Optional[str] = None
    mission_orbit_abbrev: Optional[str] = None

    spacecraft_stage_id: Optional[int] = None
    spacecraft_name: Optional[str] = None
    spacecraft_serial_number: Optional[str] = None
    spacecraft_status: Optional[str] = None
    spacecraft_description: Optional[str] = None
    spacecraft_destination: Optional[str] = None
    payload_count: Optional[int] = None
    payload_total_mass_kg: Optional[float] = None

    image_url: Optional[str] = None
    infographic_url: Optional[str] = None
    webcast_live: Optional[bool] = None
    slug_url: Optional[str] = None

    last_updated: Optional[str] = None

    imported_at: Optional[str] = None
    updated_at: Optional[str] = None

    def catalog_values(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in LAUNCH_COLUMNS}

    def to_dict(self) -> Dict[str, Any]:
        """Nested shape handed to API consumers."""
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "status": {
                "id": self.status_id,
                "name": self.status_name,
                "abbrev": self.status_abbrev,
                "description": self.status_description,
            },
            "net": self.net,
            "windowStart": self.window_start,
            "windowEnd": self.window_end,
            "rocket": {
                "id": self.rocket_id,
                "name": self.rocket_name,
                "family": self.rocket_family,
                "variant": self.rocket_variant,
                "fullName": self.rocket_full_name,
            },
            "provider": {
                "id": self.provider_id,
                "name": self.provider_name,
                "abbrev": self.provider_abbrev,
                "type": self.provider_type,
                "countryCode": self.provider_country_code,
            },
            "pad": {
                "id": self.pad_id,
                "name": self.pad_name,
                "wikiUrl": self.pad_wiki_url,
                "mapUrl": self.pad_map_url,
                "latitude": self.pad_latitude,
                "longitude": self.pad_longitude,
            },
            "location": {
                "id": self.location_id,
                "name": self.location_name,
                "countryCode": self.location_country_code,
                "mapImage": self.location_map_image,
                "timezone": self.location_timezone,
            },
            "mission": {
                "id": self.mission_id,
                "name": self.mission_name,
                "description": self.mission_description,
                "type": self.mission_type,
                "orbit": {
                    "id": self.mission_orbit_id,
                    "name": self.mission_orbit_name,
                    "abbrev": self.mission_orbit_abbrev,
                },
            },
            "spacecraft": {
                "stageId": self.spacecraft_stage_id,
                "name": self.spacecraft_name,
                "serialNumber": self.spacecraft_serial_number,
                "status": self.spacecraft_status,
                "description": self.spacecraft_description,
                "destination": self.spacecraft_destination,
                "payloadCount": self.payload_count,
                "payloadTotalMassKg": self.payload_total_mass_kg,
            },
            "imageUrl": self.image_url,
            "infographicUrl": self.infographic_url,
            "webcastLive": self.webcast_live,
            "slugUrl": self.slug_url,
            "lastUpdated": self.last_updated,
            "importedAt": self.imported_at,
            "updatedAt": self.updated_at,
        }


BOOKKEEPING_COLUMNS = ("imported_at", "updated_at")
LAUNCH_COLUMNS = tuple(f.name for f in fields(Launch) if f.name not in BOOKKEEPING_COLUMNS)


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class RunStats:
    fetched: int = 0
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    invalid: int = 0

    def merge(self, other: "RunStats") -> None:
        self.fetched += other.fetched
        self.added += other.added
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.invalid += other.invalid

    def balanced(self) -> bool:
        return self.fetched == self.added + self.updated + self.unchanged


@dataclass
class SyncRun:
    id: int
    sync_type: SyncType
    started_at: str
    status: SyncStatus = SyncStatus.RUNNING
    completed_at: Optional[str] = None
    stats: RunStats = field(default_factory=RunStats)
    api_calls_made: int = 0
    error_message: Optional[str] = None
    last_api_offset: Optional[int] = None
    page_size: int = 100
    changed_since: Optional[str] = None
    resumed_from_id: Optional[int] = None

    def next_offset(self) -> int:
        if self.last_api_offset is None:
            return 0
        return self.last_api_offset + self.page_size

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.sync_type.value,
            "status": self.status.value,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "fetched": self.stats.fetched,
            "added": self.stats.added,
            "updated": self.stats.updated,
            "unchanged": self.stats.unchanged,
            "invalid": self.stats.invalid,
            "apiCallsMade": self.api_calls_made,
            "errorMessage": self.error_message,
            "lastOffset": self.last_api_offset,
            "pageSize": self.page_size,
            "changedSince": self.changed_since,
            "resumedFrom": self.resumed_from_id,
        }
