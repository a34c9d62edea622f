"""Error taxonomy.

Only ConfigError is fatal (raised during startup).  Everything else is
caught by the update engine, logged, and turned into a zero count for the
unit of work so the next scheduler tick retries naturally.
"""
from __future__ import annotations


class KlineFeedError(Exception):
    """Base class for all klinefeed errors."""


class ConfigError(KlineFeedError):
    """Invalid or incomplete configuration detected at startup."""


class ConnectivityError(KlineFeedError):
    """The upstream connectivity probe failed."""


class FetchError(KlineFeedError):
    """One upstream page request failed (transport, status, or body)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class MalformedRecordError(KlineFeedError):
    """An upstream kline row could not be decoded."""


class PersistenceError(KlineFeedError):
    """A database operation failed."""
