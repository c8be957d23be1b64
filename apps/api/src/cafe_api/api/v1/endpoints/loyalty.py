"""API endpoints for the loyalty points balance and redemptions."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_api.api.dependencies.session import require_actor
from cafe_api.api.errors import ledger_http_exception
from cafe_api.db.session import get_session
from cafe_api.models.loyalty import PointsHistory
from cafe_api.services.errors import LedgerError
from cafe_api.services.loyalty import PointsAccountant
from cafe_api.services.orders.state_machine import Actor


router = APIRouter(prefix="/loyalty", tags=["loyalty"])


class PointsHistoryEntryResponse(BaseModel):
    id: str
    action: str
    points: int
    order_id: Optional[str]
    source_entry_id: Optional[str]
    expires_at: Optional[str]
    created_at: str


class PointsBalanceResponse(BaseModel):
    points: int = Field(..., description="Current loyalty points balance")
    history: List[PointsHistoryEntryResponse] = Field(default_factory=list)


class RedeemRequest(BaseModel):
    points: int = Field(..., gt=0, description="Points to spend")


class RedeemResponse(BaseModel):
    points: int = Field(..., description="Balance after the redemption")
    redeemed: int


def _serialize_entry(entry: PointsHistory) -> PointsHistoryEntryResponse:
    return PointsHistoryEntryResponse(
        id=str(entry.id),
        action=entry.action.value,
        points=entry.points,
        order_id=str(entry.order_id) if entry.order_id else None,
        source_entry_id=str(entry.source_entry_id) if entry.source_entry_id else None,
        expires_at=entry.expires_at.isoformat() if entry.expires_at else None,
        created_at=entry.created_at.isoformat(),
    )


@router.get("/points", response_model=PointsBalanceResponse)
async def get_points(
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> PointsBalanceResponse:
    """Return the caller's balance, opening the account at zero on first access."""

    try:
        snapshot = await PointsAccountant(db).snapshot(actor.user_id, limit=limit)
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return PointsBalanceResponse(
        points=snapshot.points,
        history=[_serialize_entry(entry) for entry in snapshot.history],
    )


@router.post("/points/redeem", response_model=RedeemResponse, status_code=status.HTTP_200_OK)
async def redeem_points(
    payload: RedeemRequest,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> RedeemResponse:
    try:
        balance = await PointsAccountant(db).redeem(actor.user_id, payload.points)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return RedeemResponse(points=balance, redeemed=payload.points)
