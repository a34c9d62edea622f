"""Conversion between upstream UTC milliseconds and local storage time.

Upstream timestamps are integer milliseconds since the Unix epoch (UTC).
Stored timestamps are wall-clock values in one configured zone.  Every value
crossing that boundary goes through a TimeNormalizer, once.

    to_local(ms)            -> aware datetime in the configured zone
    to_utc_millis(local)    -> int ms   (inverse of to_local)
    to_storage(local)       -> naive wall-clock datetime for the DATETIME column
    from_storage(naive)     -> aware datetime in the configured zone
"""
from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from klinefeed.data.intervals import history_start_date

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def resolve_zone(name: str, offset_hours: int) -> tzinfo:
    """Load an IANA zone, or fall back to a fixed UTC offset named *name*."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Time zone %r not found; using fixed offset UTC%+d", name, offset_hours,
        )
        offset = timedelta(hours=offset_hours)
        return timezone(offset, name) if name else timezone(offset)


class TimeNormalizer:
    """Pure conversions for one local zone, resolved once at construction."""

    def __init__(self, zone_name: str = "Asia/Shanghai", offset_hours: int = 8) -> None:
        self.zone = resolve_zone(zone_name, offset_hours)

    def to_local(self, utc_millis: int) -> datetime:
        # timedelta arithmetic keeps millisecond precision exact (no float division)
        return (_EPOCH + timedelta(milliseconds=utc_millis)).astimezone(self.zone)

    def to_utc_millis(self, local: datetime) -> int:
        if local.tzinfo is None:
            local = local.replace(tzinfo=self.zone)
        delta = local.astimezone(timezone.utc) - _EPOCH
        return delta // timedelta(milliseconds=1)

    def now_local(self) -> datetime:
        return datetime.now(self.zone)

    def default_history_start(self, interval: str) -> datetime:
        return datetime.combine(history_start_date(interval), time(0, 0), tzinfo=self.zone)

    def to_storage(self, local: datetime) -> datetime:
        """Render *local* as the naive wall-clock value stored in the DB."""
        if local.tzinfo is not None:
            local = local.astimezone(self.zone)
        return local.replace(tzinfo=None)

    def from_storage(self, stored: datetime) -> datetime:
        if stored.tzinfo is not None:
            return stored.astimezone(self.zone)
        return stored.replace(tzinfo=self.zone)
