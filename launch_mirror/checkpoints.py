from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import SyncRun, SyncStatus, SyncType
from .runs import SyncRunJournal


class ResumeMode(str, Enum):
    FRESH = "fresh"
    REENTERED = "reentered"
    CARRIED_FORWARD = "carried_forward"


@dataclass
class ResumePlan:
    run: SyncRun
    mode: ResumeMode

    @property
    def start_offset(self) -> int:
        return self.run.next_offset()


def plan_resume(
    journal: SyncRunJournal,
    sync_type: SyncType,
    *,
    started_at: str,
    page_size: int,
    changed_since: str | None = None,
) -> ResumePlan:
    """Pick the run this invocation continues.

    A run left `running` (process died, or was cancelled) is re-entered as is.
    A `failed` run with a checkpoint is never reopened: a new run starts from
    its offset, counters and window, linked through `resumed_from_id`.
    Anything else starts from offset zero.
    """
    running = journal.find_running(sync_type)
    if running is not None:
        return ResumePlan(run=running, mode=ResumeMode.REENTERED)

    latest = journal.latest(sync_type)
    if latest is not None and latest.status is SyncStatus.FAILED and latest.last_api_offset is not None:
        run = journal.start(
            sync_type,
            started_at,
            latest.page_size,
            changed_since=latest.changed_since,
            stats=latest.stats,
            api_calls_made=latest.api_calls_made,
            last_api_offset=latest.last_api_offset,
            resumed_from_id=latest.id,
        )
        return ResumePlan(run=run, mode=ResumeMode.CARRIED_FORWARD)

    run = journal.start(sync_type, started_at, page_size, changed_since=changed_since)
    return ResumePlan(run=run, mode=ResumeMode.FRESH)
