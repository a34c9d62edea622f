"""Tests for UTC millisecond <-> local time conversion."""
from datetime import datetime, timedelta

from klinefeed.data.timezone import TimeNormalizer, resolve_zone


def test_to_local_shifts_by_zone_offset(normalizer):
    local = normalizer.to_local(1577808000000)  # 2019-12-31T16:00:00Z
    assert (local.year, local.month, local.day, local.hour, local.minute) == (2020, 1, 1, 0, 0)
    assert local.utcoffset() == timedelta(hours=8)


def test_round_trip_keeps_millisecond_precision(normalizer):
    for ms in (0, 1577808000000, 1577808000001, 1700000000123):
        assert normalizer.to_utc_millis(normalizer.to_local(ms)) == ms


def test_naive_value_is_read_as_local_wall_clock(normalizer):
    assert normalizer.to_utc_millis(datetime(2020, 1, 1, 0, 0)) == 1577808000000


def test_storage_round_trip(normalizer):
    local = normalizer.to_local(1577811600000)
    stored = normalizer.to_storage(local)
    assert stored.tzinfo is None
    assert stored == datetime(2020, 1, 1, 1, 0)
    assert normalizer.from_storage(stored) == local


def test_default_history_start_per_interval(normalizer):
    assert normalizer.default_history_start("5m").date().isoformat() == "2025-01-01"
    assert normalizer.default_history_start("15m").date().isoformat() == "2025-01-01"
    assert normalizer.default_history_start("30m").date().isoformat() == "2022-01-01"
    start = normalizer.default_history_start("1h")
    assert (start.year, start.month, start.day, start.hour) == (2020, 1, 1, 0)
    assert normalizer.to_utc_millis(start) == 1577808000000


def test_unknown_zone_falls_back_to_fixed_offset():
    zone = resolve_zone("Not/AZone", 3)
    assert datetime(2024, 6, 1, tzinfo=zone).utcoffset() == timedelta(hours=3)

    fallback = TimeNormalizer("Not/AZone", 3)
    assert fallback.to_local(0).hour == 3
