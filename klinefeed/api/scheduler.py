"""Scheduler control endpoints.

GET  /api/v1/scheduler        — running flag, frequencies, last updates
POST /api/v1/scheduler/start  — start the periodic loop
POST /api/v1/scheduler/stop   — stop the loop; in-flight updates finish
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from klinefeed.api.auth import require_api_key
from klinefeed.api.deps import get_services

router = APIRouter(
    prefix="/api/v1/scheduler",
    tags=["scheduler"],
    dependencies=[Depends(require_api_key)],
)


@router.get("")
def scheduler_status(services=Depends(get_services)) -> dict:
    return services.scheduler.status()


@router.post("/start")
async def start_scheduler(services=Depends(get_services)) -> dict:
    running = services.scheduler.start()
    return {"running": running, "message": "Scheduler running"}


@router.post("/stop")
async def stop_scheduler(services=Depends(get_services)) -> dict:
    running = services.scheduler.stop()
    return {"running": running, "message": "Scheduler stopped"}
