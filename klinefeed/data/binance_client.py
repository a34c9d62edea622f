"""Binance public REST client: kline pages and the connectivity probe.

Routing
───────
Every request reads EngineState.use_proxy once.  In proxy mode the full
upstream URL is prefixed with the configured proxy URL:

    direct:  https://api.binance.com/api/v3/klines?symbol=BTCUSDT&...
    proxy:   https://my-proxy/https://api.binance.com/api/v3/klines?symbol=...

The flag may flip while a request is in flight; routing is advisory.

Failure model
─────────────
fetch_page() raises FetchError on any transport error, non-2xx status, or a
body that is not a JSON array.  It never retries: the update engine logs the
failure and the next scheduler tick retries naturally.

check_connectivity() never raises.  It flips use_proxy as a side effect:
failure → proxy on, success → proxy off.
"""
from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from klinefeed.data.state import EngineState
from klinefeed.exceptions import ConnectivityError, FetchError

logger = logging.getLogger(__name__)

_BINANCE_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json",
}

MAX_PAGE_LIMIT  = 1000    # Binance hard cap per klines request
PAGE_TIMEOUT    = 10.0
PROBE_TIMEOUT   = 5.0


class BinanceClient:
    """Stateless apart from the shared EngineState it routes through."""

    def __init__(
        self,
        state:     EngineState,
        base_url:  str = "https://api.binance.com",
        proxy_url: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.state     = state
        self.base_url  = base_url.rstrip("/")
        self.proxy_url = proxy_url
        self._transport = transport

    def _url(self, path: str) -> str:
        url = f"{self.base_url}{path}"
        if self.state.use_proxy and self.proxy_url:
            return f"{self.proxy_url}{url}"
        return url

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=_BINANCE_HEADERS,
            follow_redirects=True,
            timeout=timeout,
            transport=self._transport,
        )

    async def fetch_page(
        self,
        symbol:   str,
        interval: str,
        start_ms: int = 0,
        end_ms:   int = 0,
        limit:    int = MAX_PAGE_LIMIT,
    ) -> list[list[Any]]:
        """Fetch one page of raw klines.  Zero start/end means unbounded.

        Example HTTP request:
            GET https://api.binance.com/api/v3/klines
                ?symbol=BTCUSDT&interval=1h&startTime=1577808000000&limit=1000
        """
        params: dict[str, object] = {"symbol": symbol, "interval": interval}
        if start_ms > 0:
            params["startTime"] = start_ms
        if end_ms > 0:
            params["endTime"] = end_ms
        if limit > 0:
            params["limit"] = min(limit, MAX_PAGE_LIMIT)

        url = self._url("/api/v3/klines")
        logger.info("[Binance] GET %s %s", url, params)

        try:
            async with self._client(PAGE_TIMEOUT) as client:
                resp = await client.get(url, params=params)
        except httpx.RequestError as exc:
            raise FetchError(f"Request to Binance failed for {symbol}/{interval}: {exc}") from exc

        if not resp.is_success:
            raise FetchError(
                f"Binance HTTP {resp.status_code} for {symbol}/{interval}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise FetchError(f"Binance returned invalid JSON for {symbol}/{interval}") from exc

        if not isinstance(payload, list):
            raise FetchError(
                f"Binance returned {type(payload).__name__} instead of a kline array "
                f"for {symbol}/{interval}"
            )

        logger.info("[Binance] %s/%s: %d klines received", symbol, interval, len(payload))
        return payload

    async def _probe(self, test_symbol: str) -> None:
        url = f"{self.base_url}/api/v3/ticker/price"
        try:
            async with self._client(PROBE_TIMEOUT) as client:
                resp = await client.get(url, params={"symbol": test_symbol})
        except httpx.RequestError as exc:
            raise ConnectivityError(f"Binance unreachable: {exc}") from exc
        if not resp.is_success:
            raise ConnectivityError(f"Binance probe returned HTTP {resp.status_code}")

    async def check_connectivity(self, test_symbol: str) -> bool:
        """Probe the price ticker directly; flip proxy mode based on the outcome.

        The probe always targets the base URL, not the proxy, since it decides
        whether direct access works.
        """
        now = datetime.now(UTC)
        try:
            await self._probe(test_symbol)
        except ConnectivityError as exc:
            logger.warning("[Binance] Connectivity check failed (%s) — switching to proxy", exc)
            self.state.record_conn_check(use_proxy=True, when=now)
            return False

        logger.info("[Binance] Connectivity OK — using direct connection")
        self.state.record_conn_check(use_proxy=False, when=now)
        return True
