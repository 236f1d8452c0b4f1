import tempfile
import threading
import unittest

from launch_mirror.checkpoints import ResumeMode
from launch_mirror.config import Settings
from launch_mirror.connectors.memory import InMemoryLaunchSource
from launch_mirror.exceptions import (
    SourceResponseError,
    StoreError,
    SyncInProgressError,
    ThrottledError,
    TransientSourceError,
)
from launch_mirror.filters import FilterSpec
from launch_mirror.lock import SyncLease
from launch_mirror.models import SyncStatus
from launch_mirror.query import QueryEngine
from launch_mirror.rate_limit import RetryPolicy
from launch_mirror.reconcile import Outcome
from launch_mirror.runs import SyncRunJournal
from launch_mirror.storage import LaunchStore
from launch_mirror.sync import SyncOrchestrator

from tests.helpers import FakeClock, FlakySource, RecordingSleep, launch_payload, make_database

SETTINGS = Settings(sync_page_size=100, sync_delay_sec=5.0, sync_throttle_cooldown_sec=300.0, sync_max_retries=3)


class BrokenStore(LaunchStore):
    """Fails every write after the first `ok_writes`."""

    def __init__(self, database, now, ok_writes):
        super().__init__(database, now=now)
        self.ok_writes = ok_writes

    def upsert(self, launch):
        if self.ok_writes <= 0:
            raise StoreError("disk I/O error")
        self.ok_writes -= 1
        return super().upsert(launch)


class EditingSource(InMemoryLaunchSource):
    """Replaces one launch upstream right after the Nth page request."""

    def __init__(self, launches, after_call, edit):
        super().__init__(launches, name="editing")
        self.after_call = after_call
        self.edit = edit

    def fetch_page(self, params):
        page = super().fetch_page(params)
        if len(self.calls) == self.after_call:
            self.put(self.edit)
        return page


class SyncTestCase(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.clock = FakeClock("2026-06-01T00:00:00Z")
        self.database = make_database(self._td.name)
        self.store = LaunchStore(self.database, now=self.clock)
        self.journal = SyncRunJournal(self.database)

    def tearDown(self):
        self._td.cleanup()

    def orchestrator(self, source, *, store=None, sleep=None, cancel=None, retry=None, settings=SETTINGS):
        lease = SyncLease(self.database, settings.sync_lock_ttl_sec, now=self.clock, owner="test-writer")
        return SyncOrchestrator(
            source,
            store or self.store,
            self.journal,
            lease,
            settings,
            sleep=sleep or RecordingSleep(),
            now=self.clock,
            cancel=cancel,
            retry=retry or RetryPolicy.from_settings(settings),
        )


class TestFullLoad(SyncTestCase):
    def test_250_records_over_three_pages(self):
        nets = ("2026-07-01T00:00:00Z", "2026-03-01T00:00:00Z")
        source = InMemoryLaunchSource([launch_payload(n, net=nets[n % 2]) for n in range(250)])
        sleep = RecordingSleep()
        outcome = self.orchestrator(source, sleep=sleep).run_full_load()

        run = outcome.run
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.mode, ResumeMode.FRESH)
        self.assertEqual((run.stats.fetched, run.stats.added, run.stats.updated, run.stats.unchanged), (250, 250, 0, 0))
        self.assertEqual(run.api_calls_made, 3)
        self.assertEqual(run.last_api_offset, 200)
        self.assertEqual(self.store.count(), 250)
        self.assertEqual([p.offset for p in source.calls], [0, 100, 200])
        self.assertEqual([p.ordering for p in source.calls], ["id", "id", "id"])
        # The delay only separates requests; none after the last page.
        self.assertEqual(sleep.calls, [5.0, 5.0])

        stored = self.journal.get(run.id)
        self.assertEqual(stored.status, SyncStatus.SUCCESS)
        self.assertEqual(stored.completed_at, "2026-06-01T00:00:00Z")
        self.assertTrue(stored.stats.balanced())

        upcoming = QueryEngine(self.store, now=self.clock).search(FilterSpec(upcoming=True, limit=100))
        self.assertEqual(upcoming.total, 125)
        self.assertTrue(all(l.net >= "2026-06-01T00:00:00Z" for l in upcoming.launches))

    def test_second_load_changes_nothing(self):
        source = InMemoryLaunchSource([launch_payload(n) for n in range(120)])
        self.orchestrator(source).run_full_load()
        snapshot = [self.store.get_by_id(f"launch-{n:04d}").to_dict() for n in range(120)]

        self.clock.advance(hours=1)
        outcome = self.orchestrator(source).run_full_load()

        self.assertEqual(outcome.mode, ResumeMode.FRESH)
        self.assertEqual((outcome.run.stats.fetched, outcome.run.stats.unchanged), (120, 120))
        self.assertEqual(outcome.run.stats.added + outcome.run.stats.updated, 0)
        self.assertEqual(snapshot, [self.store.get_by_id(f"launch-{n:04d}").to_dict() for n in range(120)])

    def test_throttle_on_second_page_waits_once(self):
        source = FlakySource([launch_payload(n) for n in range(250)], failures={2: ThrottledError("429")})
        sleep = RecordingSleep()
        outcome = self.orchestrator(source, sleep=sleep).run_full_load()

        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.run.api_calls_made, 4)
        self.assertEqual(outcome.run.stats.fetched, 250)
        self.assertEqual(sleep.calls, [5.0, 300.0, 5.0])
        self.assertEqual([p.offset for p in source.calls], [0, 100, 100, 200])

    def test_server_retry_after_wins_over_cooldown(self):
        source = FlakySource([launch_payload(n) for n in range(50)], failures={1: ThrottledError("429", retry_after=42.0)})
        sleep = RecordingSleep()
        outcome = self.orchestrator(source, sleep=sleep).run_full_load()
        self.assertTrue(outcome.ok)
        self.assertEqual(sleep.calls, [42.0])

    def test_transient_failures_back_off_then_give_up(self):
        failures = {n: TransientSourceError("HTTP 503") for n in range(1, 5)}
        source = FlakySource([launch_payload(n) for n in range(50)], failures=failures)
        sleep = RecordingSleep()
        retry = RetryPolicy(max_retries=3, backoff_base_sec=2.0, backoff_max_sec=60.0, jitter=False)
        outcome = self.orchestrator(source, sleep=sleep, retry=retry).run_full_load()

        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.exit_code, 1)
        self.assertEqual(sleep.calls, [2.0, 4.0, 8.0])
        stored = self.journal.get(outcome.run.id)
        self.assertEqual(stored.status, SyncStatus.FAILED)
        self.assertEqual(stored.api_calls_made, 4)
        self.assertIsNone(stored.last_api_offset)
        self.assertIn("RetriesExhaustedError", stored.error_message)

    def test_fatal_source_error_keeps_checkpoint_and_next_run_carries_forward(self):
        payloads = [launch_payload(n) for n in range(250)]
        source = FlakySource(payloads, failures={3: SourceResponseError("'results' is missing")})
        first = self.orchestrator(source).run_full_load()

        failed = self.journal.get(first.run.id)
        self.assertEqual(failed.status, SyncStatus.FAILED)
        self.assertEqual(failed.last_api_offset, 100)
        self.assertEqual(failed.stats.fetched, 200)
        self.assertIn("SourceResponseError", failed.error_message)

        source.calls.clear()
        second = self.orchestrator(source).run_full_load()
        self.assertTrue(second.ok)
        self.assertEqual(second.mode, ResumeMode.CARRIED_FORWARD)
        self.assertNotEqual(second.run.id, first.run.id)
        self.assertEqual(second.run.resumed_from_id, first.run.id)
        self.assertEqual([p.offset for p in source.calls], [200])
        self.assertEqual((second.run.stats.fetched, second.run.stats.added), (250, 250))
        self.assertEqual(second.run.api_calls_made, 4)
        self.assertEqual(self.store.count(), 250)
        # The failed run stays as it was.
        self.assertEqual(self.journal.get(first.run.id).status, SyncStatus.FAILED)

    def test_store_failure_fails_run_with_checkpoint_intact(self):
        source = InMemoryLaunchSource([launch_payload(n) for n in range(250)])
        store = BrokenStore(self.database, self.clock, ok_writes=130)
        outcome = self.orchestrator(source, store=store).run_full_load()

        stored = self.journal.get(outcome.run.id)
        self.assertEqual(stored.status, SyncStatus.FAILED)
        self.assertEqual(stored.last_api_offset, 0)
        self.assertEqual(stored.stats.fetched, 100)
        self.assertIn("disk I/O error", stored.error_message)

    def test_invalid_records_are_counted_not_fatal(self):
        payloads = [launch_payload(n) for n in range(10)]
        payloads[4]["net"] = "soon"
        payloads[7]["status"] = ["Go"]
        outcome = self.orchestrator(InMemoryLaunchSource(payloads)).run_full_load()

        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.run.stats.fetched, 8)
        self.assertEqual(outcome.run.stats.invalid, 2)
        self.assertTrue(outcome.run.stats.balanced())
        self.assertIsNone(self.store.get_by_id("launch-0004"))


class TestCancellation(SyncTestCase):
    def test_cancel_leaves_resumable_run(self):
        source = InMemoryLaunchSource([launch_payload(n) for n in range(250)])
        cancel = threading.Event()
        sleep = RecordingSleep(on_sleep=lambda n: cancel.set())
        first = self.orchestrator(source, sleep=sleep, cancel=cancel).run_full_load()

        self.assertTrue(first.cancelled)
        self.assertEqual(first.exit_code, 1)
        stored = self.journal.get(first.run.id)
        self.assertEqual(stored.status, SyncStatus.RUNNING)
        self.assertEqual(stored.last_api_offset, 0)
        self.assertEqual(stored.stats.fetched, 100)

        # Lease was released: a fresh orchestrator gets in and picks up the same run.
        source.calls.clear()
        second = self.orchestrator(source).run_full_load()
        self.assertTrue(second.ok)
        self.assertEqual(second.mode, ResumeMode.REENTERED)
        self.assertEqual(second.run.id, first.run.id)
        self.assertEqual([p.offset for p in source.calls], [100, 200])
        self.assertEqual((second.run.stats.fetched, second.run.stats.added), (250, 250))
        self.assertEqual(second.run.api_calls_made, 3)

    def test_cancel_during_backoff_skips_the_retry(self):
        source = FlakySource([launch_payload(n) for n in range(50)], failures={1: ThrottledError("429")})
        cancel = threading.Event()
        sleep = RecordingSleep(on_sleep=lambda n: cancel.set())
        outcome = self.orchestrator(source, sleep=sleep, cancel=cancel).run_full_load()

        self.assertTrue(outcome.cancelled)
        self.assertEqual(len(source.calls), 1)
        stored = self.journal.get(outcome.run.id)
        self.assertEqual(stored.status, SyncStatus.RUNNING)
        self.assertEqual(stored.api_calls_made, 1)
        self.assertIsNone(stored.last_api_offset)


class TestIncremental(SyncTestCase):
    def test_only_changes_inside_the_window_are_fetched(self):
        source = InMemoryLaunchSource([launch_payload(n) for n in range(5)])
        self.orchestrator(source).run_full_load()

        source.put(launch_payload(1, name="Scrubbed", last_updated="2026-05-31T12:00:00Z"))
        source.put(launch_payload(3, last_updated="2026-05-30T06:00:00Z"))
        source.put(launch_payload(9, last_updated="2026-05-31T23:00:00Z"))
        source.calls.clear()

        outcome = self.orchestrator(source).run_incremental()
        run = outcome.run
        self.assertTrue(outcome.ok)
        self.assertEqual(run.changed_since, "2026-05-30T00:00:00Z")
        self.assertEqual(source.calls[0].changed_since, "2026-05-30T00:00:00Z")
        self.assertEqual(source.calls[0].ordering, "-last_updated,id")
        self.assertEqual((run.stats.fetched, run.stats.added, run.stats.updated, run.stats.unchanged), (3, 1, 2, 0))
        self.assertEqual(self.store.get_by_id("launch-0001").name, "Scrubbed")

        again = self.orchestrator(source).run_incremental()
        self.assertEqual((again.run.stats.fetched, again.run.stats.unchanged), (3, 3))

    def test_launch_edited_between_pages_is_not_skipped(self):
        source = EditingSource(
            [launch_payload(n, last_updated="2026-05-31T00:00:00Z") for n in range(150)],
            after_call=1,
            edit=launch_payload(0, name="Delayed", last_updated="2026-05-31T18:00:00Z"),
        )
        outcome = self.orchestrator(source).run_incremental()

        self.assertTrue(outcome.ok)
        self.assertEqual([p.offset for p in source.calls], [0, 100])
        missing = [n for n in range(150) if self.store.get_by_id(f"launch-{n:04d}") is None]
        self.assertEqual(missing, [])
        self.assertEqual((outcome.run.stats.fetched, outcome.run.stats.added), (150, 150))

    def test_resumed_incremental_keeps_its_window(self):
        source = FlakySource(
            [launch_payload(n, last_updated="2026-05-31T00:00:00Z") for n in range(150)],
            failures={2: SourceResponseError("bad page")},
        )
        first = self.orchestrator(source).run_incremental()
        self.assertFalse(first.ok)

        self.clock.advance(hours=30)
        second = self.orchestrator(source).run_incremental()
        self.assertEqual(second.mode, ResumeMode.CARRIED_FORWARD)
        self.assertEqual(second.run.changed_since, "2026-05-30T00:00:00Z")
        self.assertEqual((second.run.stats.fetched, second.run.stats.added), (150, 150))


class TestSingleWriter(SyncTestCase):
    def test_second_writer_is_rejected(self):
        other = SyncLease(self.database, 3600, now=self.clock, owner="other-host:1:abcd")
        other.acquire()

        source = InMemoryLaunchSource([launch_payload(1)])
        with self.assertRaises(SyncInProgressError):
            self.orchestrator(source).run_full_load()
        with self.assertRaises(SyncInProgressError):
            self.orchestrator(source).run_incremental()
        self.assertEqual(self.journal.recent(), [])
        self.assertEqual(source.calls, [])

        other.release()
        self.assertTrue(self.orchestrator(source).run_full_load().ok)

    def test_writer_that_slept_past_its_lease_stops_before_writing(self):
        source = FlakySource(
            [launch_payload(n) for n in range(150)],
            failures={2: ThrottledError("429", retry_after=2000.0)},
        )
        successor = SyncLease(self.database, 3600, now=self.clock, owner="writer-b")

        def on_sleep(n):
            # The throttle wait (second sleep) outlives the lease.
            if n == 2:
                self.clock.advance(seconds=4100)
                successor.acquire()

        with self.assertRaises(SyncInProgressError):
            self.orchestrator(source, sleep=RecordingSleep(on_sleep)).run_full_load()

        self.assertEqual(len(source.calls), 2)
        self.assertEqual(self.store.count(), 100)
        run = self.journal.recent()[0]
        self.assertEqual(run.status, SyncStatus.RUNNING)
        self.assertEqual((run.last_api_offset, run.stats.fetched), (0, 100))
        successor.refresh()
        self.assertTrue(successor.held)


class TestRefresh(SyncTestCase):
    def test_refresh_single_launch(self):
        source = InMemoryLaunchSource([launch_payload(1)])
        orch = self.orchestrator(source)
        self.assertEqual(orch.refresh_launch("launch-0001"), Outcome.ADDED)
        self.assertEqual(orch.refresh_launch("launch-0001"), Outcome.UNCHANGED)
        source.put(launch_payload(1, last_updated="2026-05-31T00:00:00Z"))
        self.assertEqual(orch.refresh_launch("launch-0001"), Outcome.UPDATED)
        self.assertIsNone(orch.refresh_launch("launch-0404"))


if __name__ == "__main__":
    unittest.main()
