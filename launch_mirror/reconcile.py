from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, TypedDict, Union

from .exceptions import RecordValidationError
from .logging_utils import get_logger, log_json
from .models import Launch, RunStats
from .storage import LaunchStore
from .utils import normalize_iso


# Launch Library 2 payload, as far as we read it. Everything is optional on
# the wire; map_launch decides what is required.

class NamedRef(TypedDict, total=False):
    id: int
    name: str


class StatusPayload(TypedDict, total=False):
    id: int
    name: str
    abbrev: str
    description: str


class RocketConfigurationPayload(TypedDict, total=False):
    id: int
    name: str
    family: str
    variant: str
    full_name: str


class SpacecraftConfigPayload(TypedDict, total=False):
    payload_capacity: float


class SpacecraftPayload(TypedDict, total=False):
    id: int
    name: str
    serial_number: str
    status: Union[str, NamedRef]
    description: str
    spacecraft_config: SpacecraftConfigPayload


class SpacecraftStagePayload(TypedDict, total=False):
    id: int
    destination: str
    spacecraft_count: int
    spacecraft: SpacecraftPayload


class RocketPayload(TypedDict, total=False):
    id: int
    configuration: RocketConfigurationPayload
    spacecraft_stage: SpacecraftStagePayload


class ProviderPayload(TypedDict, total=False):
    id: int
    name: str
    abbrev: str
    type: Union[str, NamedRef]
    country_code: str


class LocationPayload(TypedDict, total=False):
    id: int
    name: str
    country_code: str
    map_image: str
    timezone_name: str


class PadPayload(TypedDict, total=False):
    id: int
    name: str
    wiki_url: str
    map_url: str
    latitude: Union[str, float]
    longitude: Union[str, float]
    location: LocationPayload


class OrbitPayload(TypedDict, total=False):
    id: int
    name: str
    abbrev: str


class MissionPayload(TypedDict, total=False):
    id: int
    name: str
    description: str
    type: Union[str, NamedRef]
    orbit: OrbitPayload


class LaunchPayload(TypedDict, total=False):
    id: str
    url: str
    slug: str
    name: str
    status: StatusPayload
    last_updated: str
    net: str
    window_start: str
    window_end: str
    launch_service_provider: ProviderPayload
    rocket: RocketPayload
    mission: MissionPayload
    pad: PadPayload
    webcast_live: bool
    image: str
    infographic: str


def _where(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _section(data: Mapping[str, Any], key: str, path: str = "") -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise RecordValidationError(f"{_where(path, key)}: expected an object, got {type(value).__name__}")
    return value


def _opt_str(data: Mapping[str, Any], key: str, path: str = "") -> Optional[str]:
    value = data.get(key)
    if value is None or isinstance(value, str):
        return value
    raise RecordValidationError(f"{_where(path, key)}: expected a string, got {type(value).__name__}")


def _opt_label(data: Mapping[str, Any], key: str, path: str = "") -> Optional[str]:
    # Older API versions send a bare string, newer ones a {id, name} object.
    value = data.get(key)
    if isinstance(value, Mapping):
        return _opt_str(value, "name", _where(path, key))
    return _opt_str(data, key, path)


def _opt_int(data: Mapping[str, Any], key: str, path: str = "") -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise RecordValidationError(f"{_where(path, key)}: expected an integer, got {type(value).__name__}")


def _opt_float(data: Mapping[str, Any], key: str, path: str = "") -> Optional[float]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise RecordValidationError(f"{_where(path, key)}: expected a number, got bool")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        # Pad coordinates arrive as decimal strings.
        try:
            return float(value)
        except ValueError:
            raise RecordValidationError(f"{_where(path, key)}: {value!r} is not a number") from None
    raise RecordValidationError(f"{_where(path, key)}: expected a number, got {type(value).__name__}")


def _opt_bool(data: Mapping[str, Any], key: str, path: str = "") -> Optional[bool]:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        return value
    raise RecordValidationError(f"{_where(path, key)}: expected a boolean, got {type(value).__name__}")


def _opt_time(data: Mapping[str, Any], key: str, path: str = "") -> Optional[str]:
    value = _opt_str(data, key, path)
    if value is None:
        return None
    try:
        return normalize_iso(value)
    except ValueError:
        raise RecordValidationError(f"{_where(path, key)}: {value!r} is not an ISO-8601 timestamp") from None


def map_launch(payload: Any) -> Launch:
    """Flatten one LL2 launch into a Launch. Raises RecordValidationError."""
    if not isinstance(payload, Mapping):
        raise RecordValidationError(f"launch: expected an object, got {type(payload).__name__}")

    launch_id = _opt_str(payload, "id")
    if not launch_id:
        raise RecordValidationError("launch: missing id")
    name = _opt_str(payload, "name")
    if name is None:
        raise RecordValidationError(f"launch {launch_id}: missing name")

    status = _section(payload, "status")
    rocket = _section(payload, "rocket")
    config = _section(rocket, "configuration", "rocket")
    stage = _section(rocket, "spacecraft_stage", "rocket")
    craft = _section(stage, "spacecraft", "rocket.spacecraft_stage")
    craft_config = _section(craft, "spacecraft_config", "rocket.spacecraft_stage.spacecraft")
    provider = _section(payload, "launch_service_provider")
    pad = _section(payload, "pad")
    location = _section(pad, "location", "pad")
    mission = _section(payload, "mission")
    orbit = _section(mission, "orbit", "mission")

    return Launch(
        id=launch_id,
        name=name,
        slug=_opt_str(payload, "slug"),
        status_id=_opt_int(status, "id", "status"),
        status_name=_opt_str(status, "name", "status"),
        status_abbrev=_opt_str(status, "abbrev", "status"),
        status_description=_opt_str(status, "description", "status"),
        net=_opt_time(payload, "net"),
        window_start=_opt_time(payload, "window_start"),
        window_end=_opt_time(payload, "window_end"),
        rocket_id=_opt_int(config, "id", "rocket.configuration"),
        rocket_name=_opt_str(config, "name", "rocket.configuration"),
        rocket_family=_opt_str(config, "family", "rocket.configuration"),
        rocket_variant=_opt_str(config, "variant", "rocket.configuration"),
        rocket_full_name=_opt_str(config, "full_name", "rocket.configuration"),
        provider_id=_opt_int(provider, "id", "launch_service_provider"),
        provider_name=_opt_str(provider, "name", "launch_service_provider"),
        provider_abbrev=_opt_str(provider, "abbrev", "launch_service_provider"),
        provider_type=_opt_label(provider, "type", "launch_service_provider"),
        provider_country_code=_opt_str(provider, "country_code", "launch_service_provider"),
        pad_id=_opt_int(pad, "id", "pad"),
        pad_name=_opt_str(pad, "name", "pad"),
        pad_wiki_url=_opt_str(pad, "wiki_url", "pad"),
        pad_map_url=_opt_str(pad, "map_url", "pad"),
        pad_latitude=_opt_float(pad, "latitude", "pad"),
        pad_longitude=_opt_float(pad, "longitude", "pad"),
        location_id=_opt_int(location, "id", "pad.location"),
        location_name=_opt_str(location, "name", "pad.location"),
        location_country_code=_opt_str(location, "country_code", "pad.location"),
        location_map_image=_opt_str(location, "map_image", "pad.location"),
        location_timezone=_opt_str(location, "timezone_name", "pad.location"),
        mission_id=_opt_int(mission, "id", "mission"),
        mission_name=_opt_str(mission, "name", "mission"),
        mission_description=_opt_str(mission, "description", "mission"),
        mission_type=_opt_label(mission, "type", "mission"),
        mission_orbit_id=_opt_int(orbit, "id", "mission.orbit"),
        mission_orbit_name=_opt_str(orbit, "name", "mission.orbit"),
        mission_orbit_abbrev=_opt_str(orbit, "abbrev", "mission.orbit"),
        spacecraft_stage_id=_opt_int(stage, "id", "rocket.spacecraft_stage"),
        spacecraft_name=_opt_str(craft, "name", "rocket.spacecraft_stage.spacecraft"),
        spacecraft_serial_number=_opt_str(craft, "serial_number", "rocket.spacecraft_stage.spacecraft"),
        spacecraft_status=_opt_label(craft, "status", "rocket.spacecraft_stage.spacecraft"),
        spacecraft_description=_opt_str(craft, "description", "rocket.spacecraft_stage.spacecraft"),
        spacecraft_destination=_opt_str(stage, "destination", "rocket.spacecraft_stage"),
        payload_count=_opt_int(stage, "spacecraft_count", "rocket.spacecraft_stage"),
        payload_total_mass_kg=_opt_float(
            craft_config, "payload_capacity", "rocket.spacecraft_stage.spacecraft.spacecraft_config"
        ),
        image_url=_opt_str(payload, "image"),
        infographic_url=_opt_str(payload, "infographic"),
        webcast_live=_opt_bool(payload, "webcast_live"),
        slug_url=_opt_str(payload, "url"),
        last_updated=_opt_time(payload, "last_updated"),
    )


class Outcome(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def classify(mapped: Launch, existing: Optional[Launch]) -> Outcome:
    if existing is None:
        return Outcome.ADDED
    if existing.last_updated != mapped.last_updated:
        return Outcome.UPDATED
    return Outcome.UNCHANGED


@dataclass
class PageTally(RunStats):
    def count(self, outcome: Outcome) -> None:
        self.fetched += 1
        if outcome is Outcome.ADDED:
            self.added += 1
        elif outcome is Outcome.UPDATED:
            self.updated += 1
        else:
            self.unchanged += 1

    def skip(self) -> None:
        self.invalid += 1


class Reconciler:
    def __init__(self, store: LaunchStore):
        self.store = store
        self.logger = get_logger(__name__)

    def apply(self, payload: Any) -> Outcome:
        return self.apply_launch(map_launch(payload))

    def apply_launch(self, launch: Launch) -> Outcome:
        outcome = classify(launch, self.store.get_by_id(launch.id))
        if outcome is not Outcome.UNCHANGED:
            self.store.upsert(launch)
        return outcome

    def reconcile_page(self, payloads: Iterable[Any]) -> PageTally:
        """Apply every record of a page. Malformed records are skipped and
        counted; store failures propagate and abort the page."""
        tally = PageTally()
        for raw in payloads:
            try:
                outcome = self.apply(raw)
            except RecordValidationError as e:
                tally.skip()
                rid = raw.get("id") if isinstance(raw, Mapping) else None
                log_json(self.logger, logging.WARNING, "record_invalid", launch_id=rid, error=str(e))
                continue
            tally.count(outcome)
        return tally
