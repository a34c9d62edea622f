"""FastAPI application factory.

Builds the single EngineState and every component that shares it, stores
them on ``app.state.services``, and ties the scheduler to the app lifespan.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from klinefeed.api import health, kline, network, scheduler as scheduler_api
from klinefeed.config import Settings, settings as default_settings
from klinefeed.data.binance_client import BinanceClient
from klinefeed.data.database import create_db_engine, initialize_database
from klinefeed.data.kline_store import SqlKlineStore
from klinefeed.data.state import EngineState
from klinefeed.data.timezone import TimeNormalizer
from klinefeed.data.updater import UpdateEngine
from klinefeed.logging_setup import LogBufferHandler
from klinefeed.scheduler import UpdateScheduler

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings:   Settings
    state:      EngineState
    normalizer: TimeNormalizer
    store:      SqlKlineStore
    client:     BinanceClient
    engine:     UpdateEngine
    scheduler:  UpdateScheduler
    log_buffer: LogBufferHandler | None = None


def build_services(
    settings:   Settings,
    *,
    db_engine:  Engine | None = None,
    transport:  httpx.AsyncBaseTransport | None = None,
    log_buffer: LogBufferHandler | None = None,
) -> Services:
    settings.validate_runtime()

    state      = EngineState(use_proxy=settings.binance_use_proxy)
    normalizer = TimeNormalizer(settings.timezone, settings.timezone_offset)
    store      = SqlKlineStore(db_engine or create_db_engine(settings.sqlalchemy_url), normalizer)
    client     = BinanceClient(
        state,
        base_url=settings.binance_base_url,
        proxy_url=settings.binance_proxy_url,
        transport=transport,
    )
    engine     = UpdateEngine(state, client, store, normalizer)
    scheduler  = UpdateScheduler(
        state,
        engine,
        client,
        symbols=settings.symbols,
        intervals=settings.intervals,
        test_symbol=settings.binance_test_symbol,
        tick_seconds=settings.scheduler_tick_seconds,
    )
    return Services(
        settings=settings,
        state=state,
        normalizer=normalizer,
        store=store,
        client=client,
        engine=engine,
        scheduler=scheduler,
        log_buffer=log_buffer,
    )


def create_app(
    settings:        Settings | None = None,
    *,
    db_engine:       Engine | None = None,
    transport:       httpx.AsyncBaseTransport | None = None,
    log_buffer:      LogBufferHandler | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    settings = settings or default_settings
    services = build_services(
        settings, db_engine=db_engine, transport=transport, log_buffer=log_buffer,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        initialize_database(services.store.engine)
        services.store.ensure_tables(settings.symbols, settings.intervals)
        logger.info(
            "%s ready — %d symbols × %d intervals, proxy=%s",
            settings.app_name, len(settings.symbols), len(settings.intervals),
            services.state.use_proxy,
        )
        if start_scheduler:
            services.scheduler.start()
        try:
            yield
        finally:
            await services.scheduler.shutdown()
            services.store.engine.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(kline.router)
    app.include_router(network.router)
    app.include_router(scheduler_api.router)
    return app
