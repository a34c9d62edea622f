"""Incremental kline updater.

Algorithm overview
──────────────────

                   ┌──────────────────────────────────────────────┐
                   │  UpdateEngine.update_interval(symbol, tf)    │
                   └───────────────────┬──────────────────────────┘
                                       │
                    ┌──────────────────▼───────────────────────────┐
                    │  1. ensure_table(symbol, tf)                 │
                    │     failure → 0 records, interval aborted    │
                    └──────────────────┬───────────────────────────┘
                                       │
                    ┌──────────────────▼───────────────────────────┐
                    │  2. Anchor = newest stored bar (local time)  │
                    │     or the interval's default history start  │
                    │     needed = (now_ms - anchor_ms) // tf_ms   │
                    └──────────────────┬───────────────────────────┘
                                       │
                    ┌──────────────────▼───────────────────────────┐
                    │  3. needed ≤ 1000 → one page, open-ended     │
                    │     needed > 1000 → fixed-width pages until  │
                    │       now, 100 ms apart, then widen the      │
                    │       interval's cadence to 10 minutes       │
                    └──────────────────┬───────────────────────────┘
                                       │
                    ┌──────────────────▼───────────────────────────┐
                    │  4. Per page, in a worker thread: decode →   │
                    │     to_local → one batched upsert            │
                    │     malformed bars skipped with a warning    │
                    └──────────────────┬───────────────────────────┘
                                       │
                    ┌──────────────────▼───────────────────────────┐
                    │  5. Any page succeeded → mark_updated(now)   │
                    └──────────────────────────────────────────────┘

Idempotency
───────────
• The anchor bar itself is re-requested on every pass, so the newest
  (possibly still-open) bucket is refreshed; upsert on the timestamp key
  overwrites it instead of duplicating it.
• Paginated backfills persist each page immediately, so a failure halfway
  keeps every page already written; the next pass resumes from the newest
  stored bar.
• A per-(symbol, interval) single-flight claim in EngineState coalesces a
  manual trigger that arrives while the scheduler is already updating the
  same pair (and vice versa).

Failure model
─────────────
Nothing in here raises out of update_symbol_data().  Fetch, decode and
storage failures are logged and reduce the count for that unit of work.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Iterator, Sequence

from klinefeed.data.binance_client import MAX_PAGE_LIMIT, BinanceClient
from klinefeed.data.intervals import INTERVAL_SECONDS, interval_millis
from klinefeed.data.kline_store import KlineGateway
from klinefeed.data.models import KlineRecord, RawKline
from klinefeed.data.state import EngineState
from klinefeed.data.timezone import TimeNormalizer
from klinefeed.exceptions import FetchError, MalformedRecordError, PersistenceError

logger = logging.getLogger(__name__)

# Delay between consecutive pages of one backfill (upstream throttling).
_INTER_PAGE_SLEEP = 0.1


@dataclass
class IntervalUpdate:
    symbol:        str
    interval:      str
    status:        str           # "updated" | "error" | "skipped"
    written:       int   = 0
    pages_ok:      int   = 0
    pages_failed:  int   = 0
    paginated:     bool  = False
    duration_secs: float = 0.0
    error:         str | None = None


def page_windows(
    start_ms:    int,
    now_ms:      int,
    duration_ms: int,
    limit:       int = MAX_PAGE_LIMIT,
) -> Iterator[tuple[int, int]]:
    """Yield inclusive [start, end] request windows of *limit* bars up to now.

    For a 2500-bar gap at limit 1000:
        [t0,         t0+1000d-1]
        [t0+1000d,   t0+2000d-1]
        [t0+2000d,   now]
    """
    span = limit * duration_ms
    cursor = start_ms
    while cursor < now_ms:
        yield cursor, min(cursor + span - 1, now_ms)
        cursor += span


class UpdateEngine:
    def __init__(
        self,
        state:      EngineState,
        client:     BinanceClient,
        store:      KlineGateway,
        normalizer: TimeNormalizer,
        *,
        clock:      Callable[[], datetime] | None = None,
        page_delay: float = _INTER_PAGE_SLEEP,
    ) -> None:
        self.state      = state
        self.client     = client
        self.store      = store
        self.normalizer = normalizer
        self._clock     = clock or (lambda: datetime.now(UTC))
        self.page_delay = page_delay

    def now(self) -> datetime:
        return self._clock()

    # ── Due check ─────────────────────────────────────────────────────────────

    def should_update(
        self,
        interval:    str,
        last_update: datetime | None,
        now:         datetime | None = None,
    ) -> bool:
        """True when no update is recorded or the interval's cadence has elapsed."""
        if last_update is None:
            return True
        now = now or self.now()
        elapsed = (now - last_update).total_seconds()
        return elapsed >= self.state.frequency(interval)

    # ── Persistence of one page ───────────────────────────────────────────────

    def _persist_page(self, symbol: str, interval: str, raw: Sequence[Any]) -> int:
        """Decode and write one page; blocking, run via asyncio.to_thread."""
        records: list[KlineRecord] = []
        for row in raw:
            try:
                bar = RawKline.from_row(row)
            except MalformedRecordError as exc:
                logger.warning("[Update] %s/%s skipping malformed kline: %s", symbol, interval, exc)
                continue

            records.append(KlineRecord(
                timestamp = self.normalizer.to_local(bar.open_time_ms),
                open      = bar.open,
                high      = bar.high,
                low       = bar.low,
                close     = bar.close,
                volume    = bar.volume,
            ))

        if not records:
            return 0

        try:
            return self.store.upsert_many(symbol, interval, records)
        except PersistenceError as exc:
            logger.warning(
                "[Update] %s/%s batch write failed, retrying row by row: %s", symbol, interval, exc,
            )

        written = 0
        for record in records:
            try:
                self.store.upsert(symbol, interval, record)
            except PersistenceError as exc:
                logger.error("[Update] %s/%s %s", symbol, interval, exc)
                continue
            written += 1
        return written

    # ── One (symbol, interval) pass ───────────────────────────────────────────

    async def update_interval(self, symbol: str, interval: str) -> IntervalUpdate:
        started = time.monotonic()
        result  = IntervalUpdate(symbol=symbol, interval=interval, status="updated")

        if interval not in INTERVAL_SECONDS:
            result.status = "error"
            result.error  = f"Unsupported interval '{interval}'"
            logger.error("[Update] %s/%s: %s", symbol, interval, result.error)
            return result

        # 1. Table + anchor
        try:
            self.store.ensure_table(symbol, interval)
            newest = self.store.query(symbol, interval, limit=1)
        except PersistenceError as exc:
            result.status = "error"
            result.error  = str(exc)
            logger.error("[Update] %s/%s aborted: %s", symbol, interval, exc)
            return result

        anchor_local = newest[0].timestamp if newest else self.normalizer.default_history_start(interval)
        anchor_ms    = self.normalizer.to_utc_millis(anchor_local)
        now_ms       = self.normalizer.to_utc_millis(self.now())
        duration_ms  = interval_millis(interval)
        needed       = max(0, (now_ms - anchor_ms) // duration_ms)

        # 2. Fetch strategy
        if needed > MAX_PAGE_LIMIT:
            result.paginated = True
            windows = list(page_windows(anchor_ms, now_ms, duration_ms))
            logger.info(
                "[Update] %s/%s backfilling %d bars from %s in %d pages",
                symbol, interval, needed, anchor_local.isoformat(), len(windows),
            )
        else:
            windows = [(anchor_ms, 0)]
            logger.info(
                "[Update] %s/%s fetching ~%d bars from %s",
                symbol, interval, needed, anchor_local.isoformat(),
            )

        # 3. Fetch + persist page by page
        for idx, (start_ms, end_ms) in enumerate(windows):
            if idx and self.page_delay > 0:
                await asyncio.sleep(self.page_delay)
            try:
                raw = await self.client.fetch_page(symbol, interval, start_ms, end_ms, MAX_PAGE_LIMIT)
            except FetchError as exc:
                result.pages_failed += 1
                result.error = str(exc)
                logger.error(
                    "[Update] %s/%s page %d/%d failed: %s",
                    symbol, interval, idx + 1, len(windows), exc,
                )
                continue

            result.pages_ok += 1
            if raw:
                result.written += await asyncio.to_thread(self._persist_page, symbol, interval, raw)

        if result.paginated:
            self.state.widen_frequency(interval)
            logger.info(
                "[Update] %s/%s had a large backlog — update cadence widened to %ds",
                symbol, interval, self.state.frequency(interval),
            )

        # 4. Bookkeeping
        if result.pages_ok:
            self.state.mark_updated(symbol, interval, self.now())
        else:
            result.status = "error"

        result.duration_secs = time.monotonic() - started
        logger.info(
            "[Update] %s/%s %s: %d records written (%d pages ok, %d failed) in %.2fs",
            symbol, interval, result.status, result.written,
            result.pages_ok, result.pages_failed, result.duration_secs,
        )
        return result

    # ── Orchestrator ──────────────────────────────────────────────────────────

    async def update_symbol_data(self, symbol: str, intervals: Sequence[str]) -> dict[str, int]:
        """Update *intervals* of *symbol* sequentially; returns records written per interval.

        Failures never abort the remaining intervals: the failed interval
        reports 0.  An interval already being updated for this symbol is
        coalesced and also reports 0.
        """
        results: dict[str, int] = {}

        for interval in intervals:
            if not self.state.try_begin(symbol, interval):
                logger.info(
                    "[Update] %s/%s already in flight — coalescing this trigger", symbol, interval,
                )
                results[interval] = 0
                continue

            try:
                outcome = await self.update_interval(symbol, interval)
                results[interval] = outcome.written
            except Exception:
                logger.exception("[Update] Unexpected error for %s/%s", symbol, interval)
                results[interval] = 0
            finally:
                self.state.finish(symbol, interval)

        return results
