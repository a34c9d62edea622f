"""Tests for the shared engine state."""
from datetime import datetime, timedelta, timezone

from klinefeed.data.intervals import WIDENED_FREQUENCY_SECS
from klinefeed.data.state import DEFAULT_FREQUENCY_SECS, EngineState

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_bookkeeping_is_keyed_by_upper_symbol():
    state = EngineState()
    state.mark_updated("btcusdt", "1h", T0)
    assert state.last_update("BTCUSDT", "1h") == T0
    assert state.snapshot_last_updates() == {"BTCUSDT": {"1h": T0}}


def test_frequencies_start_at_interval_length_and_widen():
    state = EngineState()
    assert state.frequency("5m") == 300
    assert state.frequency("1d") == 86400
    assert state.frequency("3m") == DEFAULT_FREQUENCY_SECS

    state.widen_frequency("5m")
    assert state.frequency("5m") == WIDENED_FREQUENCY_SECS
    assert state.frequency("15m") == 900


def test_state_instances_do_not_share_frequencies():
    a, b = EngineState(), EngineState()
    a.widen_frequency("4h")
    assert b.frequency("4h") == 4 * 3600


def test_conn_check_claim_is_throttled():
    state = EngineState()
    assert state.claim_conn_check(T0, 600) is True
    assert state.claim_conn_check(T0 + timedelta(seconds=600), 600) is False
    assert state.claim_conn_check(T0 + timedelta(seconds=601), 600) is True


def test_record_conn_check_sets_mode():
    state = EngineState(use_proxy=False)
    state.record_conn_check(use_proxy=True, when=T0)
    assert state.use_proxy is True
    assert state.last_conn_check == T0


def test_single_flight_claim():
    state = EngineState()
    assert state.try_begin("BTCUSDT", "1h") is True
    assert state.try_begin("btcusdt", "1h") is False
    assert state.try_begin("BTCUSDT", "4h") is True
    state.finish("BTCUSDT", "1h")
    assert state.try_begin("BTCUSDT", "1h") is True
    assert state.in_flight() == {("BTCUSDT", "1h"), ("BTCUSDT", "4h")}
