"""Tests for the periodic update scheduler."""
import asyncio

import pytest

from klinefeed.scheduler import UpdateScheduler

from conftest import json_response, make_row


@pytest.fixture
def scheduler(state, engine, client):
    return UpdateScheduler(
        state,
        engine,
        client,
        symbols=["BTCUSDT", "ETHUSDT"],
        intervals=["1h", "4h"],
        tick_seconds=3600,
    )


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent(scheduler):
    assert scheduler.running is False
    assert scheduler.start() is True
    assert scheduler.start() is True
    assert scheduler.running is True

    assert scheduler.stop() is False
    assert scheduler.stop() is False
    assert scheduler.running is False
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_first_tick_dispatches_everything_and_checks_connectivity(scheduler, fake_binance):
    dispatched = scheduler.tick()
    await scheduler.shutdown()

    assert dispatched == [("BTCUSDT", ["1h", "4h"]), ("ETHUSDT", ["1h", "4h"])]
    checks = [r for r in fake_binance.requests if r.url.path == "/api/v3/ticker/price"]
    assert len(checks) == 1
    assert len(fake_binance.kline_requests) == 4


@pytest.mark.asyncio
async def test_only_due_intervals_are_dispatched(scheduler, clock):
    scheduler.tick()
    await scheduler.shutdown()

    assert scheduler.tick() == []

    clock.advance(hours=1)
    assert scheduler.tick() == [("BTCUSDT", ["1h"]), ("ETHUSDT", ["1h"])]
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_connectivity_check_is_throttled(scheduler, fake_binance, clock):
    scheduler.tick()
    await scheduler.shutdown()
    clock.advance(minutes=5)
    scheduler.tick()
    await scheduler.shutdown()

    checks = [r for r in fake_binance.requests if r.url.path == "/api/v3/ticker/price"]
    assert len(checks) == 1


@pytest.mark.asyncio
async def test_trigger_runs_without_due_check(scheduler, fake_binance, store, state, clock):
    state.mark_updated("BTCUSDT", "1h", clock())
    fake_binance.handler = lambda request: json_response([make_row(1577808000000)])

    task = scheduler.trigger("BTCUSDT", ["1h"])
    assert isinstance(task, asyncio.Task)
    await task

    assert len(store.query("BTCUSDT", "1h")) == 1


@pytest.mark.asyncio
async def test_stop_does_not_cancel_in_flight_updates(scheduler, engine, store):
    release = asyncio.Event()
    real_fetch = engine.client.fetch_page

    async def slow_fetch(*args, **kwargs):
        await release.wait()
        return await real_fetch(*args, **kwargs)

    engine.client.fetch_page = slow_fetch
    scheduler.start()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    scheduler.stop()

    assert scheduler.status()["in_flight"] > 0
    release.set()
    await scheduler.shutdown()
    assert scheduler.status()["in_flight"] == 0


def test_status_shape(scheduler, state, clock):
    state.mark_updated("BTCUSDT", "1h", clock())
    status = scheduler.status()
    assert status["running"] is False
    assert status["symbols"] == ["BTCUSDT", "ETHUSDT"]
    assert status["frequencies"]["1h"] == 3600
    assert status["last_updates"] == {"BTCUSDT": {"1h": clock().isoformat()}}


@pytest.mark.asyncio
async def test_shutdown_abandons_work_past_the_grace_period(scheduler, engine):
    never = asyncio.Event()

    async def stuck_fetch(*args, **kwargs):
        await never.wait()

    engine.client.fetch_page = stuck_fetch
    task = scheduler.trigger("BTCUSDT", ["1h"])
    await asyncio.sleep(0)

    await asyncio.wait_for(scheduler.shutdown(timeout=0.05), timeout=5)

    assert task.cancelled()
    assert scheduler.status()["in_flight"] == 0
    assert engine.state.in_flight() == set()
