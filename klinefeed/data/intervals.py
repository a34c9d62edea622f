"""Supported bar intervals and their fixed metadata."""
from __future__ import annotations

from datetime import date

INTERVAL_SECONDS: dict[str, int] = {
    "5m":  5 * 60,
    "15m": 15 * 60,
    "30m": 30 * 60,
    "1h":  60 * 60,
    "4h":  4 * 60 * 60,
    "1d":  24 * 60 * 60,
}

SUPPORTED_INTERVALS = tuple(INTERVAL_SECONDS)

# Short intervals start later so a cold start does not backfill years of 5m bars.
_HISTORY_START: dict[str, date] = {
    "5m":  date(2025, 1, 1),
    "15m": date(2025, 1, 1),
    "30m": date(2022, 1, 1),
}
_DEFAULT_HISTORY_START = date(2020, 1, 1)

# Cadence used once an interval needed a paginated backfill.
WIDENED_FREQUENCY_SECS = 10 * 60


def interval_millis(interval: str) -> int:
    """Bar duration in milliseconds; raises KeyError for unknown intervals."""
    return INTERVAL_SECONDS[interval] * 1000


def history_start_date(interval: str) -> date:
    return _HISTORY_START.get(interval, _DEFAULT_HISTORY_START)


def default_update_frequencies() -> dict[str, int]:
    """Fresh, mutable copy of the initial per-interval update cadence."""
    return dict(INTERVAL_SECONDS)
