"""Process-wide mutable state shared by the engine, client and scheduler.

One EngineState is built by the app factory and passed to every component.
A single lock guards all of it:

    last_updates      symbol -> interval -> last successful update (aware UTC)
    frequencies       interval -> current update cadence in seconds
    use_proxy         routing mode read before every upstream request
    last_conn_check   time of the last connectivity probe
    in_flight         (symbol, interval) pairs currently being updated

The lock is only ever held around dictionary/attribute access, never across
an ``await``, so unrelated fetches never serialize on it.
"""
from __future__ import annotations

import threading
from datetime import datetime

from klinefeed.data.intervals import WIDENED_FREQUENCY_SECS, default_update_frequencies

# Cadence for intervals missing from the frequency table.
DEFAULT_FREQUENCY_SECS = 10 * 60


class EngineState:
    def __init__(self, use_proxy: bool = False) -> None:
        self.lock = threading.Lock()
        self._last_updates: dict[str, dict[str, datetime]] = {}
        self._frequencies: dict[str, int] = default_update_frequencies()
        self._use_proxy = use_proxy
        self._last_conn_check: datetime | None = None
        self._in_flight: set[tuple[str, str]] = set()

    # ── Bookkeeping ───────────────────────────────────────────────────────────

    def last_update(self, symbol: str, interval: str) -> datetime | None:
        with self.lock:
            return self._last_updates.get(symbol.upper(), {}).get(interval)

    def mark_updated(self, symbol: str, interval: str, when: datetime) -> None:
        with self.lock:
            self._last_updates.setdefault(symbol.upper(), {})[interval] = when

    def snapshot_last_updates(self) -> dict[str, dict[str, datetime]]:
        with self.lock:
            return {sym: dict(per_tf) for sym, per_tf in self._last_updates.items()}

    # ── Update frequencies ────────────────────────────────────────────────────

    def frequency(self, interval: str) -> int:
        with self.lock:
            return self._frequencies.get(interval, DEFAULT_FREQUENCY_SECS)

    def widen_frequency(self, interval: str) -> None:
        with self.lock:
            self._frequencies[interval] = WIDENED_FREQUENCY_SECS

    def snapshot_frequencies(self) -> dict[str, int]:
        with self.lock:
            return dict(self._frequencies)

    # ── Connectivity ──────────────────────────────────────────────────────────

    @property
    def use_proxy(self) -> bool:
        with self.lock:
            return self._use_proxy

    def set_use_proxy(self, value: bool) -> None:
        with self.lock:
            self._use_proxy = value

    @property
    def last_conn_check(self) -> datetime | None:
        with self.lock:
            return self._last_conn_check

    def record_conn_check(self, use_proxy: bool, when: datetime) -> None:
        with self.lock:
            self._use_proxy = use_proxy
            self._last_conn_check = when

    def claim_conn_check(self, now: datetime, max_age_secs: float) -> bool:
        """Stamp the probe time and return True if the last probe is stale."""
        with self.lock:
            last = self._last_conn_check
            if last is not None and (now - last).total_seconds() <= max_age_secs:
                return False
            self._last_conn_check = now
            return True

    # ── Single-flight guard ───────────────────────────────────────────────────

    def try_begin(self, symbol: str, interval: str) -> bool:
        """Claim (symbol, interval); False if another update already holds it."""
        key = (symbol.upper(), interval)
        with self.lock:
            if key in self._in_flight:
                return False
            self._in_flight.add(key)
            return True

    def finish(self, symbol: str, interval: str) -> None:
        with self.lock:
            self._in_flight.discard((symbol.upper(), interval))

    def in_flight(self) -> set[tuple[str, str]]:
        with self.lock:
            return set(self._in_flight)
