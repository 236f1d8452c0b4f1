from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from .checkpoints import ResumeMode, ResumePlan, plan_resume
from .config import Settings
from .connector_base import LaunchSource, Page, PageParams
from .exceptions import RetriesExhaustedError, SourceError, StoreError, SyncInProgressError, ThrottledError, TransientSourceError
from .lock import SyncLease
from .logging_utils import get_logger, log_json
from .models import SyncRun, SyncStatus, SyncType
from .rate_limit import RetryPolicy
from .reconcile import Outcome, Reconciler
from .runs import SyncRunJournal
from .storage import LaunchStore
from .utils import as_iso, now_utc

# Full loads walk a stable key so offsets stay meaningful across a resume.
# Incremental syncs walk newest changes first: a launch edited mid-run jumps
# to the front, so later offsets can only repeat a row, never skip one.
ORDERING = {
    SyncType.FULL: "id",
    SyncType.INCREMENTAL: "-last_updated,id",
}


@dataclass
class SyncOutcome:
    run: SyncRun
    mode: ResumeMode
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.run.status is SyncStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


class SyncOrchestrator:
    """Drives full loads and incremental syncs page by page.

    One page is fetched, reconciled and checkpointed before the next is
    requested. Transient source failures are retried in place; anything else
    ends the run as failed with its last checkpoint intact.
    """

    def __init__(
        self,
        source: LaunchSource,
        store: LaunchStore,
        journal: SyncRunJournal,
        lease: SyncLease,
        settings: Settings,
        *,
        sleep: Optional[Callable[[float], Any]] = None,
        now: Callable[[], datetime] = now_utc,
        cancel: Optional[threading.Event] = None,
        retry: Optional[RetryPolicy] = None,
    ) -> None:
        self.source = source
        self.store = store
        self.journal = journal
        self.lease = lease
        self.settings = settings
        self.cancel = cancel or threading.Event()
        self._sleep = sleep or self.cancel.wait
        self._now = now
        self.retry = retry or RetryPolicy.from_settings(settings)
        self.reconciler = Reconciler(store)
        self.logger = get_logger()

    def run_full_load(self) -> SyncOutcome:
        return self._run(SyncType.FULL)

    def run_incremental(self) -> SyncOutcome:
        return self._run(SyncType.INCREMENTAL)

    def refresh_launch(self, launch_id: str) -> Optional[Outcome]:
        """Re-fetch a single launch and reconcile it. None if the catalog no longer has it."""
        with self.lease:
            raw = self.source.fetch_by_id(launch_id)
            if raw is None:
                log_json(self.logger, logging.WARNING, "launch_not_found", launch_id=launch_id, source=self.source.name)
                return None
            outcome = self.reconciler.apply(raw)
        log_json(self.logger, logging.INFO, "launch_refreshed", launch_id=launch_id, outcome=outcome.value)
        return outcome

    def _run(self, sync_type: SyncType) -> SyncOutcome:
        self.lease.acquire()
        try:
            changed_since = None
            if sync_type is SyncType.INCREMENTAL:
                changed_since = as_iso(self._now() - timedelta(hours=self.settings.sync_lookback_hours))
            plan = plan_resume(
                self.journal,
                sync_type,
                started_at=as_iso(self._now()),
                page_size=self.settings.page_size,
                changed_since=changed_since,
            )
            log_json(
                self.logger,
                logging.INFO,
                "sync_started",
                run_id=plan.run.id,
                sync_type=sync_type.value,
                mode=plan.mode.value,
                start_offset=plan.start_offset,
                changed_since=plan.run.changed_since,
                source=self.source.name,
            )
            return self._drive(plan)
        finally:
            self.lease.release()

    def _drive(self, plan: ResumePlan) -> SyncOutcome:
        run = plan.run
        params = PageParams(
            limit=run.page_size,
            offset=plan.start_offset,
            ordering=ORDERING[run.sync_type],
            changed_since=run.changed_since,
        )

        try:
            while True:
                if self.cancel.is_set():
                    return self._cancelled(plan)

                page = self._fetch(run, params)
                if page is None:
                    return self._cancelled(plan)

                tally = self.reconciler.reconcile_page(page.results)
                run.stats.merge(tally)
                run.last_api_offset = params.offset
                self.journal.checkpoint(run)
                log_json(
                    self.logger,
                    logging.INFO,
                    "page_done",
                    run_id=run.id,
                    offset=params.offset,
                    results=len(page.results),
                    remote_count=page.count,
                    page=vars(tally),
                    api_calls=run.api_calls_made,
                )

                if not page.has_more or not page.results:
                    break
                params = page.next_params or params.next()
                self._sleep(self.settings.sync_delay_sec)

        except SyncInProgressError as e:
            # Another writer owns the run now; leave the journal to it.
            log_json(
                self.logger,
                logging.ERROR,
                "lease_lost",
                run_id=run.id,
                last_offset=run.last_api_offset,
                error=str(e),
            )
            raise
        except (SourceError, StoreError) as e:
            self._finish(run, SyncStatus.FAILED, f"{type(e).__name__}: {e}")
            return SyncOutcome(run=run, mode=plan.mode)
        except Exception as e:
            self._finish(run, SyncStatus.FAILED, f"{type(e).__name__}: {e}")
            raise

        self._finish(run, SyncStatus.SUCCESS)
        return SyncOutcome(run=run, mode=plan.mode)

    def _fetch(self, run: SyncRun, params: PageParams) -> Optional[Page]:
        """Fetch one page, retrying transient failures. None means cancelled while waiting.

        The lease is refreshed before every attempt, so a writer that slept
        past its TTL stops here before touching the store or the journal.
        """
        retries = 0
        while True:
            self.lease.refresh()
            run.api_calls_made += 1
            try:
                return self.source.fetch_page(params)
            except TransientSourceError as e:
                if retries >= self.retry.max_retries:
                    raise RetriesExhaustedError(
                        f"offset {params.offset}: gave up after {retries} retries: {e}"
                    ) from e
                retries += 1
                delay = self.retry.delay_for(retries, e)
                log_json(
                    self.logger,
                    logging.WARNING,
                    "fetch_retry",
                    run_id=run.id,
                    offset=params.offset,
                    attempt=retries,
                    delay_sec=round(delay, 3),
                    error=str(e),
                    throttled=isinstance(e, ThrottledError),
                )
                self._sleep(delay)
                if self.cancel.is_set():
                    return None

    def _cancelled(self, plan: ResumePlan) -> SyncOutcome:
        run = plan.run
        # Attempts made since the last page still count against the allowance.
        self.lease.refresh()
        self.journal.checkpoint(run)
        log_json(
            self.logger,
            logging.WARNING,
            "sync_cancelled",
            run_id=run.id,
            last_offset=run.last_api_offset,
            stats=vars(run.stats),
        )
        return SyncOutcome(run=run, mode=plan.mode, cancelled=True)

    def _finish(self, run: SyncRun, status: SyncStatus, error: Optional[str] = None) -> None:
        try:
            self.journal.finish(run, status, as_iso(self._now()), error)
        except StoreError as e:
            # The run stays `running` in the journal; the next invocation re-enters it.
            log_json(self.logger, logging.ERROR, "run_finalize_failed", run_id=run.id, status=status.value, error=str(e))
            run.error_message = error or str(e)
            return

        level = logging.INFO if status is SyncStatus.SUCCESS else logging.ERROR
        log_json(
            self.logger,
            level,
            "sync_finished" if status is SyncStatus.SUCCESS else "sync_failed",
            run_id=run.id,
            sync_type=run.sync_type.value,
            stats=vars(run.stats),
            api_calls=run.api_calls_made,
            last_offset=run.last_api_offset,
            error=error,
        )
