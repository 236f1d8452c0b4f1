from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from dotenv import load_dotenv

from .config import Settings, load_settings
from .connector_base import LaunchSource
from .connectors.launch_library import LaunchLibraryClient
from .connectors.memory import InMemoryLaunchSource
from .db import Database
from .exceptions import FilterError, SourceError, StoreError, SyncInProgressError
from .lock import SyncLease
from .logging_utils import configure_logging, get_logger, log_json
from .models import SyncType
from .query import QueryEngine
from .runs import RunStateError, SyncRunJournal
from .schema import init_schema
from .storage import LaunchStore
from .sync import SyncOrchestrator
from .utils import as_iso, now_utc

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
# sysexits EX_TEMPFAIL: another writer holds the lease, try again later.
EXIT_BUSY = 75


def build_source(settings: Settings, fixtures: Optional[str] = None) -> LaunchSource:
    if fixtures:
        return InMemoryLaunchSource.from_fixture(fixtures)
    if not settings.ll2_api_key:
        log_json(get_logger(__name__), logging.WARNING, "anonymous_api_access", limit="15 requests/hour")
    return LaunchLibraryClient.from_settings(settings)


def open_database(settings: Settings) -> Database:
    database = Database(settings.database_url)
    init_schema(database)
    return database


def build_orchestrator(
    settings: Settings,
    database: Database,
    source: LaunchSource,
    cancel: Optional[threading.Event] = None,
) -> SyncOrchestrator:
    return SyncOrchestrator(
        source,
        LaunchStore(database),
        SyncRunJournal(database),
        SyncLease(database, settings.sync_lock_ttl_sec),
        settings,
        cancel=cancel,
    )


@contextmanager
def cancel_on_signals(cancel: threading.Event) -> Iterator[threading.Event]:
    """SIGINT/SIGTERM stop the sync after the page in flight is checkpointed."""
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    def handler(signum, frame):
        log_json(get_logger(__name__), logging.WARNING, "cancel_requested", signal=signal.Signals(signum).name)
        cancel.set()

    previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield cancel
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def run_sync(settings: Settings, sync_type: SyncType, fixtures: Optional[str] = None,
             cancel: Optional[threading.Event] = None) -> int:
    logger = get_logger(__name__)
    database = open_database(settings)
    orchestrator = build_orchestrator(settings, database, build_source(settings, fixtures), cancel)
    try:
        if sync_type is SyncType.FULL:
            outcome = orchestrator.run_full_load()
        else:
            outcome = orchestrator.run_incremental()
    except SyncInProgressError as e:
        log_json(logger, logging.WARNING, "sync_rejected", sync_type=sync_type.value, error=str(e))
        return EXIT_BUSY

    print(json.dumps({**outcome.run.to_dict(), "mode": outcome.mode.value, "cancelled": outcome.cancelled}))
    return outcome.exit_code


def cmd_status(settings: Settings, limit: int, fixtures: Optional[str] = None) -> int:
    database = open_database(settings)
    journal = SyncRunJournal(database)
    for run in journal.recent(limit):
        s = run.stats
        print(
            f"#{run.id}  {run.sync_type.value:<11}  {run.status.value:<7}  started={run.started_at}  "
            f"completed={run.completed_at}  offset={run.last_api_offset}  fetched={s.fetched}  "
            f"added={s.added}  updated={s.updated}  unchanged={s.unchanged}  invalid={s.invalid}  "
            f"calls={run.api_calls_made}" + (f"  error={run.error_message}" if run.error_message else "")
        )
    print(json.dumps({"rateLimit": build_source(settings, fixtures).rate_limit_info()}))
    return EXIT_OK


def cmd_abandon(settings: Settings, run_id: int) -> int:
    journal = SyncRunJournal(open_database(settings))
    try:
        run = journal.abandon(run_id, as_iso(now_utc()))
    except KeyError:
        print(f"no sync run #{run_id}", file=sys.stderr)
        return EXIT_FAILED
    except RunStateError as e:
        print(str(e), file=sys.stderr)
        return EXIT_FAILED
    print(json.dumps(run.to_dict()))
    return EXIT_OK


def cmd_refresh(settings: Settings, launch_id: str, fixtures: Optional[str] = None) -> int:
    logger = get_logger(__name__)
    database = open_database(settings)
    orchestrator = build_orchestrator(settings, database, build_source(settings, fixtures))
    try:
        outcome = orchestrator.refresh_launch(launch_id)
    except SyncInProgressError as e:
        log_json(logger, logging.WARNING, "refresh_rejected", launch_id=launch_id, error=str(e))
        return EXIT_BUSY
    except (SourceError, StoreError, ValueError) as e:
        log_json(logger, logging.ERROR, "refresh_failed", launch_id=launch_id, error=str(e))
        return EXIT_FAILED
    if outcome is None:
        print(f"launch {launch_id} not found", file=sys.stderr)
        return EXIT_FAILED
    print(json.dumps({"id": launch_id, "outcome": outcome.value}))
    return EXIT_OK


def cmd_query(settings: Settings, params: Dict[str, Any]) -> int:
    engine = QueryEngine(LaunchStore(open_database(settings)))
    try:
        result = engine.search_params(params)
    except FilterError as e:
        print(f"invalid query: {e}", file=sys.stderr)
        return EXIT_USAGE
    print(json.dumps(result.to_dict(), indent=2))
    return EXIT_OK


def schedule_loop(settings: Settings, fixtures: Optional[str] = None) -> None:
    from apscheduler.schedulers.blocking import BlockingScheduler
    from apscheduler.triggers.interval import IntervalTrigger

    logger = get_logger(__name__)
    cancel = threading.Event()
    sched = BlockingScheduler(timezone="UTC")

    def job():
        try:
            code = run_sync(settings, SyncType.INCREMENTAL, fixtures, cancel)
        except Exception as e:
            log_json(logger, logging.ERROR, "scheduled_job_failed", sync_type="incremental", error=str(e))
            return
        log_json(logger, logging.INFO, "scheduled_job_done", sync_type="incremental", exit_code=code)

    sched.add_job(
        job,
        IntervalTrigger(minutes=settings.sched_incremental_minutes),
        id="incremental_sync",
        max_instances=1,
        coalesce=True,
    )

    def stop(signum, frame):
        log_json(logger, logging.WARNING, "scheduler_stopping", signal=signal.Signals(signum).name)
        cancel.set()
        sched.shutdown(wait=False)

    signal.signal(signal.SIGINT, stop)
    signal.signal(signal.SIGTERM, stop)

    log_json(
        logger,
        logging.INFO,
        "scheduler_started",
        schedules={"incremental_minutes": settings.sched_incremental_minutes},
        lookback_hours=settings.sync_lookback_hours,
    )
    sched.start()


def _query_params(args: argparse.Namespace) -> Dict[str, Any]:
    params = {
        "upcoming": args.upcoming,
        "past": args.past,
        "provider": args.provider,
        "country": args.country,
        "location": args.location,
        "rocket": args.rocket,
        "status": args.status,
        "search": args.search,
        "from": getattr(args, "from"),
        "to": args.to,
        "limit": args.limit,
        "offset": args.offset,
        "sort": args.sort,
        "order": args.order,
    }
    return {k: v for k, v in params.items() if v not in (None, False)}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="launch_mirror")
    sub = parser.add_subparsers(dest="cmd", required=True)

    source_opts = argparse.ArgumentParser(add_help=False)
    source_opts.add_argument("--fixtures", type=str, default=None, help="Read launches from a JSON file instead of LL2")

    ingest = sub.add_parser("ingest", help="Sync commands")
    ingest_sub = ingest.add_subparsers(dest="ingest_cmd", required=True)
    ingest_sub.add_parser("full", parents=[source_opts], help="Full load (resumes an interrupted one)")
    ingest_sub.add_parser("incremental", parents=[source_opts], help="Sync launches changed in the lookback window")

    statp = ingest_sub.add_parser("status", parents=[source_opts], help="Show recent sync runs")
    statp.add_argument("--limit", type=int, default=10)

    abandonp = ingest_sub.add_parser("abandon", help="Mark a stuck running sync as failed")
    abandonp.add_argument("run_id", type=int)

    refreshp = ingest_sub.add_parser("refresh", parents=[source_opts], help="Re-fetch one launch")
    refreshp.add_argument("launch_id", type=str)

    ingest_sub.add_parser("schedule", parents=[source_opts], help="Run APScheduler loop")

    sub.add_parser("init-db", help="Create tables and indexes")

    queryp = sub.add_parser("query", help="Search the local mirror")
    queryp.add_argument("--upcoming", action="store_true")
    queryp.add_argument("--past", action="store_true")
    queryp.add_argument("--provider")
    queryp.add_argument("--country")
    queryp.add_argument("--location")
    queryp.add_argument("--rocket")
    queryp.add_argument("--status")
    queryp.add_argument("--search")
    queryp.add_argument("--from", dest="from")
    queryp.add_argument("--to")
    queryp.add_argument("--limit")
    queryp.add_argument("--offset")
    queryp.add_argument("--sort")
    queryp.add_argument("--order")

    sub.add_parser("filters", help="Distinct filter values with counts")
    sub.add_parser("stats", help="Catalog summary")
    return parser


def main(argv=None) -> int:
    load_dotenv(override=False)
    settings = load_settings()
    configure_logging(settings.log_level)

    args = build_parser().parse_args(argv)

    if args.cmd == "init-db":
        database = open_database(settings)
        log_json(get_logger(__name__), logging.INFO, "schema_ready", dialect=database.dialect)
        return EXIT_OK

    if args.cmd == "query":
        return cmd_query(settings, _query_params(args))

    if args.cmd == "filters":
        print(json.dumps(QueryEngine(LaunchStore(open_database(settings))).filter_options(), indent=2))
        return EXIT_OK

    if args.cmd == "stats":
        print(json.dumps(QueryEngine(LaunchStore(open_database(settings))).stats(), indent=2))
        return EXIT_OK

    if args.ingest_cmd == "schedule":
        schedule_loop(settings, args.fixtures)
        return EXIT_OK

    if args.ingest_cmd in ("full", "incremental"):
        sync_type = SyncType.FULL if args.ingest_cmd == "full" else SyncType.INCREMENTAL
        with cancel_on_signals(threading.Event()) as cancel:
            return run_sync(settings, sync_type, args.fixtures, cancel)

    if args.ingest_cmd == "status":
        return cmd_status(settings, args.limit, args.fixtures)

    if args.ingest_cmd == "abandon":
        return cmd_abandon(settings, args.run_id)

    if args.ingest_cmd == "refresh":
        return cmd_refresh(settings, args.launch_id, args.fixtures)

    return EXIT_OK
