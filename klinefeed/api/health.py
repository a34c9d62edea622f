from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from klinefeed.api.auth import require_api_key
from klinefeed.api.deps import get_services

router = APIRouter(tags=["health"])


@router.get("/health")
def health(services=Depends(get_services)) -> dict[str, str]:
    """Return process-level service health."""
    return {
        "status": "ok",
        "service": services.settings.app_name,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/logs", dependencies=[Depends(require_api_key)])
def recent_logs(services=Depends(get_services)) -> dict[str, object]:
    """Return the most recent log lines kept in memory."""
    lines = services.log_buffer.lines() if services.log_buffer else []
    return {"count": len(lines), "logs": lines}
