import tempfile
import unittest

from launch_mirror.exceptions import RecordValidationError
from launch_mirror.reconcile import Outcome, Reconciler, classify, map_launch
from launch_mirror.storage import LaunchStore

from tests.helpers import FakeClock, launch_payload, make_database


class TestMapLaunch(unittest.TestCase):
    def test_maps_nested_sections(self):
        launch = map_launch(launch_payload(5))
        self.assertEqual(launch.id, "launch-0005")
        self.assertEqual(launch.status_abbrev, "Go")
        self.assertEqual(launch.rocket_family, "Falcon")
        self.assertEqual(launch.provider_country_code, "USA")
        self.assertEqual(launch.location_timezone, "America/New_York")
        self.assertEqual(launch.mission_orbit_abbrev, "LEO")
        self.assertAlmostEqual(launch.pad_latitude, 28.56194122)
        self.assertEqual(launch.slug_url, "https://ll.thespacedevs.com/2.2.0/launch/launch-0005/")

    def test_absent_sections_become_none(self):
        payload = {"id": "bare", "name": "Unknown Payload", "last_updated": "2026-01-01T00:00:00Z"}
        launch = map_launch(payload)
        self.assertIsNone(launch.rocket_name)
        self.assertIsNone(launch.pad_id)
        self.assertIsNone(launch.net)

    def test_timestamps_are_normalized_to_utc(self):
        launch = map_launch(launch_payload(1, net="2026-07-01T14:00:00+02:00", last_updated="2026-01-01T00:00:00.250Z"))
        self.assertEqual(launch.net, "2026-07-01T12:00:00Z")
        self.assertEqual(launch.last_updated, "2026-01-01T00:00:00Z")

    def test_falsy_values_are_preserved(self):
        payload = launch_payload(1, webcast_live=False, slug="")
        payload["rocket"]["spacecraft_stage"] = {"id": 3, "spacecraft_count": 0, "spacecraft": {"name": "Dragon", "status": {"id": 1, "name": "Active"}}}
        launch = map_launch(payload)
        self.assertIs(launch.webcast_live, False)
        self.assertEqual(launch.slug, "")
        self.assertEqual(launch.payload_count, 0)
        self.assertEqual(launch.spacecraft_status, "Active")

    def test_label_fields_accept_objects(self):
        payload = launch_payload(1)
        payload["launch_service_provider"]["type"] = {"id": 1, "name": "Government"}
        payload["mission"]["type"] = "Resupply"
        launch = map_launch(payload)
        self.assertEqual(launch.provider_type, "Government")
        self.assertEqual(launch.mission_type, "Resupply")

    def test_rejects_malformed_payloads(self):
        bad = [
            "not an object",
            {"name": "no id"},
            {"id": "x"},
            launch_payload(1, status="Go"),
            launch_payload(1, webcast_live="yes"),
            launch_payload(1, net="next tuesday"),
            launch_payload(1, name=42),
        ]
        bad_pad = launch_payload(1)
        bad_pad["pad"]["latitude"] = "north-ish"
        bad.append(bad_pad)
        bad_status = launch_payload(1)
        bad_status["status"]["id"] = True
        bad.append(bad_status)

        for payload in bad:
            with self.subTest(payload=str(payload)[:40]):
                with self.assertRaises(RecordValidationError):
                    map_launch(payload)


class TestReconciler(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.store = LaunchStore(make_database(self._td.name), now=FakeClock())
        self.reconciler = Reconciler(self.store)

    def tearDown(self):
        self._td.cleanup()

    def test_classification_follows_change_marker(self):
        payload = launch_payload(1)
        self.assertEqual(self.reconciler.apply(payload), Outcome.ADDED)
        self.assertEqual(self.reconciler.apply(payload), Outcome.UNCHANGED)

        # Same marker, different body: the catalog says nothing changed.
        self.assertEqual(self.reconciler.apply(launch_payload(1, name="Renamed")), Outcome.UNCHANGED)
        self.assertEqual(self.store.get_by_id("launch-0001").name, payload["name"])

        newer = launch_payload(1, name="Renamed", last_updated="2026-02-01T00:00:00Z")
        self.assertEqual(self.reconciler.apply(newer), Outcome.UPDATED)
        self.assertEqual(self.store.get_by_id("launch-0001").name, "Renamed")
        self.assertEqual(self.reconciler.apply(newer), Outcome.UNCHANGED)

    def test_classify_without_store(self):
        a = map_launch(launch_payload(1))
        b = map_launch(launch_payload(1, last_updated="2026-03-01T00:00:00Z"))
        self.assertEqual(classify(a, None), Outcome.ADDED)
        self.assertEqual(classify(b, a), Outcome.UPDATED)
        self.assertEqual(classify(a, map_launch(launch_payload(1))), Outcome.UNCHANGED)

    def test_page_tally_skips_invalid_records(self):
        page = [launch_payload(1), {"name": "missing id"}, launch_payload(2), launch_payload(1)]
        tally = self.reconciler.reconcile_page(page)
        self.assertEqual(tally.fetched, 3)
        self.assertEqual(tally.added, 2)
        self.assertEqual(tally.unchanged, 1)
        self.assertEqual(tally.invalid, 1)
        self.assertTrue(tally.balanced())
        self.assertEqual(self.store.count(), 2)


if __name__ == "__main__":
    unittest.main()
