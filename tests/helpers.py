from __future__ import annotations

import copy
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from launch_mirror.connector_base import Page, PageParams
from launch_mirror.connectors.memory import InMemoryLaunchSource
from launch_mirror.db import Database
from launch_mirror.schema import init_schema
from launch_mirror.utils import parse_iso


def make_database(tmpdir: str) -> Database:
    database = Database(f"sqlite:///{Path(tmpdir) / 'mirror.db'}")
    init_schema(database)
    return database


def launch_payload(n: int, **overrides: Any) -> Dict[str, Any]:
    """A Launch Library 2 launch in the shape the /launch/ endpoint returns."""
    launch_id = f"launch-{n:04d}"
    payload = {
        "id": launch_id,
        "url": f"https://ll.thespacedevs.com/2.2.0/launch/{launch_id}/",
        "slug": f"falcon-9-block-5-starlink-group-{n}",
        "name": f"Falcon 9 Block 5 | Starlink Group {n}",
        "status": {
            "id": 1,
            "name": "Go for Launch",
            "abbrev": "Go",
            "description": "Current T-0 confirmed by official or reliable sources.",
        },
        "last_updated": "2026-01-01T00:00:00Z",
        "net": "2026-07-01T12:00:00Z",
        "window_start": "2026-07-01T12:00:00Z",
        "window_end": "2026-07-01T16:00:00Z",
        "launch_service_provider": {
            "id": 121,
            "name": "SpaceX",
            "abbrev": "SpX",
            "type": "Commercial",
            "country_code": "USA",
        },
        "rocket": {
            "id": 7000 + n,
            "configuration": {
                "id": 164,
                "name": "Falcon 9",
                "family": "Falcon",
                "variant": "Block 5",
                "full_name": "Falcon 9 Block 5",
            },
        },
        "mission": {
            "id": 6000 + n,
            "name": f"Starlink Group {n}",
            "description": "A batch of Starlink satellites for the broadband constellation.",
            "type": "Communications",
            "orbit": {"id": 8, "name": "Low Earth Orbit", "abbrev": "LEO"},
        },
        "pad": {
            "id": 80,
            "name": "Space Launch Complex 40",
            "wiki_url": "https://en.wikipedia.org/wiki/Cape_Canaveral_Space_Launch_Complex_40",
            "map_url": "https://www.google.com/maps?q=28.56194122,-80.57735736",
            "latitude": "28.56194122",
            "longitude": "-80.57735736",
            "location": {
                "id": 12,
                "name": "Cape Canaveral, FL, USA",
                "country_code": "USA",
                "map_image": "https://example.invalid/cape.jpg",
                "timezone_name": "America/New_York",
            },
        },
        "webcast_live": False,
        "image": "https://example.invalid/starlink.jpeg",
        "infographic": None,
    }
    payload.update(copy.deepcopy(overrides))
    return payload


class FakeClock:
    def __init__(self, start: str = "2026-06-01T00:00:00Z"):
        self.now = parse_iso(start)

    def __call__(self):
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Stands in for time.sleep / Event.wait. `on_sleep` gets the call count."""

    def __init__(self, on_sleep: Optional[Callable[[int], None]] = None):
        self.calls: list[float] = []
        self.on_sleep = on_sleep

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.on_sleep:
            self.on_sleep(len(self.calls))


class FlakySource(InMemoryLaunchSource):
    """In-memory source that raises a scripted exception on the Nth fetch_page call."""

    def __init__(self, launches, failures: Optional[Dict[int, BaseException]] = None):
        super().__init__(launches, name="flaky")
        self.failures = dict(failures or {})

    def fetch_page(self, params: PageParams) -> Page:
        n = len(self.calls) + 1
        if n in self.failures:
            self.calls.append(params)
            raise self.failures.pop(n)
        return super().fetch_page(params)
