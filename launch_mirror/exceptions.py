from __future__ import annotations


class SourceError(RuntimeError):
    """Base class for failures talking to the remote launch catalog."""


class TransientSourceError(SourceError):
    """Timeouts, connection resets and 5xx answers. Safe to retry."""


class ThrottledError(TransientSourceError):
    """The catalog answered 429. `retry_after` is the server's cool-down hint, if any."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class SourceRequestError(SourceError):
    """A 4xx the catalog will keep returning no matter how often we ask."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SourceResponseError(SourceError):
    """The catalog answered, but not with the page shape we expect."""


class RetriesExhaustedError(SourceError):
    """A transient failure outlived the retry ceiling."""


class RecordValidationError(ValueError):
    """A single launch payload could not be mapped."""


class StoreError(RuntimeError):
    """Write, constraint or disk failure in the local store."""


class SyncInProgressError(RuntimeError):
    """Another writer holds the sync lease."""


class FilterError(ValueError):
    """Query parameters that cannot be turned into a FilterSpec."""
