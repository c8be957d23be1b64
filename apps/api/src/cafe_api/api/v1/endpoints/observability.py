"""Observability endpoints for ledger and scheduler telemetry."""

from __future__ import annotations

from fastapi import APIRouter, Request

from cafe_api.observability.ledger import get_ledger_store
from cafe_api.observability.scheduler import get_scheduler_store
from cafe_api.services.notifications import get_connection_registry


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get("/ledger", summary="Points ledger and notification delivery counters")
async def get_ledger_snapshot() -> dict[str, object]:
    payload = get_ledger_store().snapshot().as_dict()
    payload["realtime_connections"] = get_connection_registry().connection_count()
    return payload


@router.get("/scheduler", summary="Scheduled job health")
async def get_scheduler_snapshot(request: Request) -> dict[str, object]:
    scheduler = getattr(request.app.state, "job_scheduler", None)
    if scheduler is not None:
        return scheduler.health()
    return {"running": False, **get_scheduler_store().snapshot().as_dict()}
