"""Kline value types.

RawKline     — one upstream bar decoded from the positional JSON array
KlineRecord  — one stored bar, keyed by its local-time bucket-open timestamp

Prices and volume stay as the upstream decimal strings end to end; they are
validated with Decimal but never converted to float.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from klinefeed.exceptions import MalformedRecordError

# [openTime, open, high, low, close, volume, closeTime, quoteVolume, trades, ...]
_MIN_FIELDS = 6

# Open times must stay convertible to a local datetime in any UTC offset:
# [1970-01-01, 9999-12-31) UTC.
_MIN_OPEN_TIME_MS = 0
_MAX_OPEN_TIME_MS = 253_402_214_400_000


def _decimal_string(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise MalformedRecordError(f"{field_name} must be a string, got {type(value).__name__}")
    try:
        parsed = Decimal(value)
    except InvalidOperation as exc:
        raise MalformedRecordError(f"{field_name} is not a decimal: {value!r}") from exc
    if not parsed.is_finite():
        raise MalformedRecordError(f"{field_name} is not finite: {value!r}")
    return value


@dataclass(frozen=True)
class RawKline:
    open_time_ms: int
    open:         str
    high:         str
    low:          str
    close:        str
    volume:       str

    @classmethod
    def from_row(cls, row: Any) -> RawKline:
        """Decode one upstream array; raises MalformedRecordError."""
        if not isinstance(row, (list, tuple)) or len(row) < _MIN_FIELDS:
            raise MalformedRecordError(f"expected at least {_MIN_FIELDS} fields, got {row!r}")

        open_time = row[0]
        if isinstance(open_time, bool) or not isinstance(open_time, (int, float)):
            raise MalformedRecordError(f"open time must be numeric, got {open_time!r}")
        if isinstance(open_time, float) and not open_time.is_integer():
            raise MalformedRecordError(f"open time must be integral, got {open_time!r}")
        if not _MIN_OPEN_TIME_MS <= open_time < _MAX_OPEN_TIME_MS:
            raise MalformedRecordError(f"open time out of range: {open_time!r}")

        return cls(
            open_time_ms = int(open_time),
            open         = _decimal_string(row[1], "open"),
            high         = _decimal_string(row[2], "high"),
            low          = _decimal_string(row[3], "low"),
            close        = _decimal_string(row[4], "close"),
            volume       = _decimal_string(row[5], "volume"),
        )


@dataclass(frozen=True)
class KlineRecord:
    timestamp: datetime        # aware, in the configured local zone
    open:      str
    high:      str
    low:       str
    close:     str
    volume:    str
    note:      str | None = None
