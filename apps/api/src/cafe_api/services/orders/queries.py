"""Read-side order lookups scoped to the requesting actor."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cafe_api.models.order import Order, OrderStatusEnum
from cafe_api.services.errors import NotAuthorized, OrderNotFound

from .state_machine import Actor


class OrderQueryService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_for_actor(self, order_id: UUID, actor: Actor) -> Order:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items), selectinload(Order.status_history))
        )
        result = await self._session.execute(stmt)
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        if not actor.is_admin and order.user_id != actor.user_id:
            raise NotAuthorized(f"Order {order_id} does not belong to the requesting user")
        return order

    async def list_for_actor(
        self,
        actor: Actor,
        *,
        status: OrderStatusEnum | None = None,
        include_all: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        """Newest first; ``include_all`` widens the scope to every user for administrators."""

        stmt = (
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.status_history))
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(max(1, min(limit, 200)))
            .offset(max(0, offset))
        )
        if not (include_all and actor.is_admin):
            stmt = stmt.where(Order.user_id == actor.user_id)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


__all__ = ["OrderQueryService"]
