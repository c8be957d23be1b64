"""HTTP triggers for scheduled maintenance jobs."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cafe_api.api.dependencies.security import require_cron_key
from cafe_api.db.session import get_session_factory
from cafe_api.jobs.loyalty.expiry import run_points_expiry_sweep


router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.post(
    "/expire-points",
    dependencies=[Depends(require_cron_key)],
    summary="Run the loyalty points expiry sweep",
)
async def expire_points(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Dict[str, Any]:
    """Run the sweep now; safe to call repeatedly."""

    summary = await run_points_expiry_sweep(session_factory=session_factory)
    return {"status": "completed", "summary": summary}
