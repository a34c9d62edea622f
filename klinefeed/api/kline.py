"""Kline query and manual update endpoints.

GET  /api/v1/kline   — stored klines for one symbol/interval, newest first
POST /api/v1/update  — trigger an immediate update for a symbol
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ValidationError, field_validator

from klinefeed.api.auth import require_api_key
from klinefeed.api.deps import get_services
from klinefeed.data.kline_store import MAX_QUERY_LIMIT, table_name
from klinefeed.exceptions import PersistenceError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1",
    tags=["kline"],
    dependencies=[Depends(require_api_key)],
)


class UpdateRequest(BaseModel):
    symbol:    str
    intervals: list[str]

    @field_validator("symbol")
    @classmethod
    def _symbol_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("symbol must not be empty")
        return value

    @field_validator("intervals")
    @classmethod
    def _intervals_not_empty(cls, value: list[str]) -> list[str]:
        value = [tf.strip() for tf in value if tf.strip()]
        if not value:
            raise ValueError("intervals must not be empty")
        return value


def _parse_int(name: str, raw: str | None) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {raw!r}")


@router.get("/kline")
def get_kline(
    symbol:     str | None = Query(default=None, description="Trading pair, e.g. BTCUSDT"),
    interval:   str | None = Query(default=None, description="Candle interval, e.g. 1h"),
    limit:      str | None = Query(default=None, description="Max rows (1–1000, default 1000)"),
    start_time: str | None = Query(default=None, description="Inclusive lower bound, UTC ms"),
    end_time:   str | None = Query(default=None, description="Inclusive upper bound, UTC ms"),
    services=Depends(get_services),
) -> dict:
    """Return stored klines newest first.

    Timestamps in the response are UTC milliseconds; ``datetime`` is the
    same instant in the configured local zone.
    """
    if not symbol or not interval:
        raise HTTPException(status_code=400, detail="symbol and interval are required")

    row_limit = _parse_int("limit", limit)
    start_ms  = _parse_int("start_time", start_time)
    end_ms    = _parse_int("end_time", end_time)

    if row_limit is None or row_limit <= 0 or row_limit > MAX_QUERY_LIMIT:
        row_limit = MAX_QUERY_LIMIT

    try:
        table_name(symbol, interval)
    except PersistenceError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    normalizer = services.normalizer
    try:
        start = normalizer.to_local(start_ms) if start_ms is not None else None
        end   = normalizer.to_local(end_ms) if end_ms is not None else None
    except (OverflowError, ValueError):
        raise HTTPException(status_code=400, detail="start_time/end_time out of range")

    try:
        records = services.store.query(symbol, interval, start=start, end=end, limit=row_limit)
    except PersistenceError as exc:
        logger.error("[API] Kline query %s/%s failed: %s", symbol, interval, exc)
        raise HTTPException(status_code=500, detail="Failed to query klines")

    data = [
        {
            "timestamp":   normalizer.to_utc_millis(rec.timestamp),
            "datetime":    rec.timestamp.strftime("%Y-%m-%d %H:%M"),
            "open_price":  rec.open,
            "close_price": rec.close,
            "high_price":  rec.high,
            "low_price":   rec.low,
            "volume":      rec.volume,
            "note":        rec.note,
        }
        for rec in records
    ]
    return {"symbol": symbol, "interval": interval, "count": len(data), "data": data}


@router.post("/update")
async def trigger_update(request: Request, services=Depends(get_services)) -> dict:
    """Dispatch an update for the given intervals and return immediately."""
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")

    try:
        payload = UpdateRequest.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors(include_url=False, include_context=False))

    services.scheduler.trigger(payload.symbol, payload.intervals)
    return {
        "message":   "Update triggered",
        "symbol":    payload.symbol,
        "intervals": payload.intervals,
    }
