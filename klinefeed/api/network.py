"""Upstream connectivity endpoints.

GET  /api/v1/network       — current proxy mode and last connectivity check
POST /api/v1/network       — switch proxy mode manually
POST /api/v1/network/test  — run a connectivity probe now
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from klinefeed.api.auth import require_api_key
from klinefeed.api.deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/network",
    tags=["network"],
    dependencies=[Depends(require_api_key)],
)


class NetworkModeRequest(BaseModel):
    use_proxy: bool


def _mode(use_proxy: bool) -> str:
    return "proxy" if use_proxy else "direct"


@router.get("")
def network_status(services=Depends(get_services)) -> dict:
    state    = services.state
    settings = services.settings
    last     = state.last_conn_check
    return {
        "use_proxy":   state.use_proxy,
        "mode":        _mode(state.use_proxy),
        "base_url":    settings.binance_base_url,
        "proxy_url":   settings.binance_proxy_url,
        "test_symbol": settings.binance_test_symbol,
        "last_check":  last.isoformat() if last else None,
    }


@router.post("")
def set_network_mode(body: NetworkModeRequest, services=Depends(get_services)) -> dict:
    services.state.set_use_proxy(body.use_proxy)
    logger.info("[API] Network mode set to %s", _mode(body.use_proxy))
    return {"use_proxy": body.use_proxy, "mode": _mode(body.use_proxy)}


@router.post("/test")
async def test_network(services=Depends(get_services)) -> dict:
    """Probe the upstream directly; the proxy flag follows the result."""
    connected = await services.client.check_connectivity(services.settings.binance_test_symbol)
    use_proxy = services.state.use_proxy
    return {"connected": connected, "use_proxy": use_proxy, "mode": _mode(use_proxy)}
