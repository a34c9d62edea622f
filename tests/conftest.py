"""Shared fixtures: in-memory storage, a fake Binance transport, a fixed clock."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx
import pytest

from klinefeed.config import Settings
from klinefeed.data.binance_client import BinanceClient
from klinefeed.data.database import create_db_engine
from klinefeed.data.kline_store import SqlKlineStore
from klinefeed.data.state import EngineState
from klinefeed.data.timezone import TimeNormalizer
from klinefeed.data.updater import UpdateEngine

SHANGHAI = timezone(timedelta(hours=8), "Asia/Shanghai")


def make_row(open_time_ms: int, price: str = "100.5", volume: str = "12.25") -> list:
    """One upstream kline array as Binance returns it."""
    return [
        open_time_ms, price, price, price, price, volume,
        open_time_ms + 59_999, "0", 10, "0", "0", "0",
    ]


class FakeBinance:
    """Records every request and answers through a pluggable handler."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.handler = handler or (lambda request: httpx.Response(200, json=[]))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def kline_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/api/v3/klines")]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def json_response(payload, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode())


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def normalizer() -> TimeNormalizer:
    return TimeNormalizer("Asia/Shanghai", 8)


@pytest.fixture
def db_engine():
    engine = create_db_engine("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine, normalizer) -> SqlKlineStore:
    return SqlKlineStore(db_engine, normalizer)


@pytest.fixture
def state() -> EngineState:
    return EngineState()


@pytest.fixture
def fake_binance() -> FakeBinance:
    return FakeBinance()


@pytest.fixture
def client(state, fake_binance) -> BinanceClient:
    return BinanceClient(
        state,
        base_url="https://api.binance.com",
        proxy_url="https://proxy.example/",
        transport=fake_binance.transport,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2020, 1, 1, 3, 0, tzinfo=SHANGHAI))


@pytest.fixture
def engine(state, client, store, normalizer, clock) -> UpdateEngine:
    return UpdateEngine(state, client, store, normalizer, clock=clock, page_delay=0)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        binance_symbols="BTCUSDT,ETHUSDT",
        binance_intervals="1h,4h",
        binance_proxy_url="https://proxy.example/",
        database_url="sqlite:///:memory:",
        api_key="",
        log_file="",
    )
