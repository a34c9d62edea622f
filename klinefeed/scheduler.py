"""Periodic update scheduler.

    stopped ──start()──▶ running ──stop()──▶ stopped

Each tick (default once a minute):
  1. If the last connectivity probe is older than 10 minutes, stamp the probe
     time and dispatch check_connectivity() as a background task.
  2. For every configured symbol, collect the intervals whose cadence has
     elapsed and dispatch update_symbol_data(symbol, due) as a background task.

The tick never awaits network I/O, and stop() only prevents new ticks:
updates already dispatched run to completion.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any, Sequence

from klinefeed.data.binance_client import BinanceClient
from klinefeed.data.state import EngineState
from klinefeed.data.updater import UpdateEngine

logger = logging.getLogger(__name__)

CONNECTIVITY_CHECK_SECS = 10 * 60

# How long process shutdown waits for dispatched updates before cancelling them.
SHUTDOWN_GRACE_SECS = 10.0


class UpdateScheduler:
    def __init__(
        self,
        state:        EngineState,
        engine:       UpdateEngine,
        client:       BinanceClient,
        symbols:      Sequence[str],
        intervals:    Sequence[str],
        test_symbol:  str = "BTCUSDT",
        tick_seconds: float = 60.0,
    ) -> None:
        self.state        = state
        self.engine       = engine
        self.client       = client
        self.symbols      = list(symbols)
        self.intervals    = list(intervals)
        self.test_symbol  = test_symbol
        self.tick_seconds = tick_seconds
        self._loop_task: asyncio.Task | None = None
        self._workers: set[asyncio.Task] = set()

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> bool:
        """Start ticking; a no-op if already running.  Needs a running event loop."""
        if self.running:
            return True
        self._loop_task = asyncio.get_running_loop().create_task(
            self._run(), name="kline-scheduler",
        )
        logger.info(
            "Scheduler started — %d symbols × %d intervals, tick every %.0fs",
            len(self.symbols), len(self.intervals), self.tick_seconds,
        )
        return True

    def stop(self) -> bool:
        """Stop ticking; a no-op if already stopped.  In-flight updates continue."""
        if not self.running:
            return False
        self._loop_task.cancel()
        self._loop_task = None
        logger.info("Scheduler stopped (%d updates still in flight)", len(self._workers))
        return False

    async def shutdown(self, timeout: float = SHUTDOWN_GRACE_SECS) -> None:
        """Stop ticking, wait up to *timeout* for dispatched work, cancel the rest.

        Process exit only.  Abandoned backfills resume from the newest stored
        bar on the next start.
        """
        self.stop()
        if not self._workers:
            return
        _done, pending = await asyncio.wait(set(self._workers), timeout=timeout)
        if not pending:
            return
        logger.warning(
            "Shutdown: abandoning %d unfinished task(s): %s",
            len(pending), sorted(task.get_name() for task in pending),
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            try:
                self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            await asyncio.sleep(self.tick_seconds)

    # ── Tick ──────────────────────────────────────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._workers.add(task)
        task.add_done_callback(self._workers.discard)
        return task

    def due_intervals(self, symbol: str) -> list[str]:
        now = self.engine.now()
        return [
            interval
            for interval in self.intervals
            if self.engine.should_update(interval, self.state.last_update(symbol, interval), now)
        ]

    def tick(self) -> list[tuple[str, list[str]]]:
        """Dispatch one round of work; returns the (symbol, intervals) dispatched."""
        if self.state.claim_conn_check(self.engine.now(), CONNECTIVITY_CHECK_SECS):
            logger.info("Periodic Binance connectivity check")
            self._spawn(self.client.check_connectivity(self.test_symbol), "connectivity-check")

        dispatched: list[tuple[str, list[str]]] = []
        for symbol in self.symbols:
            due = self.due_intervals(symbol)
            if not due:
                continue
            logger.info("Dispatching update for %s: %s", symbol, due)
            self._spawn(self._update(symbol, due), f"update-{symbol}")
            dispatched.append((symbol, due))
        return dispatched

    async def _update(self, symbol: str, intervals: list[str]) -> None:
        results = await self.engine.update_symbol_data(symbol, intervals)
        for interval, count in results.items():
            logger.info("Update %s/%s finished: %d records", symbol, interval, count)

    def trigger(self, symbol: str, intervals: Sequence[str]) -> asyncio.Task:
        """Fire-and-forget manual update, bypassing the due check."""
        logger.info("Manual update triggered for %s: %s", symbol, list(intervals))
        return self._spawn(self._update(symbol, list(intervals)), f"manual-{symbol}")

    # ── Introspection ─────────────────────────────────────────────────────────

    def status(self) -> dict[str, object]:
        last_updates = self.state.snapshot_last_updates()
        return {
            "running":      self.running,
            "tick_seconds": self.tick_seconds,
            "in_flight":    len(self._workers),
            "symbols":      self.symbols,
            "intervals":    self.intervals,
            "frequencies":  self.state.snapshot_frequencies(),
            "last_updates": {
                sym: {tf: ts.isoformat() for tf, ts in per_tf.items()}
                for sym, per_tf in last_updates.items()
            },
        }
