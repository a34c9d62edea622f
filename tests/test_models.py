"""Tests for decoding upstream kline arrays."""
import pytest

from klinefeed.data.models import RawKline
from klinefeed.exceptions import MalformedRecordError

from conftest import make_row


def test_decodes_full_row():
    bar = RawKline.from_row(make_row(1577808000000, price="7195.24000000", volume="2430.05"))
    assert bar.open_time_ms == 1577808000000
    assert bar.open == "7195.24000000"
    assert bar.close == "7195.24000000"
    assert bar.volume == "2430.05"


def test_extra_fields_are_ignored():
    row = make_row(1) + ["extra", 42]
    assert RawKline.from_row(row).open_time_ms == 1


def test_integral_float_open_time_is_accepted():
    row = make_row(0)
    row[0] = 1577808000000.0
    assert RawKline.from_row(row).open_time_ms == 1577808000000


@pytest.mark.parametrize(
    "row",
    [
        [1577808000000, "1", "2", "3"],                   # too short
        {"openTime": 1},                                  # not an array
        ["1577808000000", "1", "1", "1", "1", "1"],       # open time as string
        [True, "1", "1", "1", "1", "1"],                  # bool open time
        [1.5, "1", "1", "1", "1", "1"],                   # fractional open time
        [1, 1.0, "1", "1", "1", "1"],                     # numeric price
        [1, "abc", "1", "1", "1", "1"],                   # not a decimal
        [1, "1", "1", "1", "1", "NaN"],                   # not finite
        [10**20, "1", "1", "1", "1", "1"],                # open time beyond year 9999
        [-1, "1", "1", "1", "1", "1"],                    # open time before the epoch
        [float("inf"), "1", "1", "1", "1", "1"],          # infinite open time
    ],
)
def test_malformed_rows_are_rejected(row):
    with pytest.raises(MalformedRecordError):
        RawKline.from_row(row)
