"""Owner-facing notification inbox operations."""

from __future__ import annotations

from typing import Literal, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_api.models.notification import Notification


BatchAction = Literal["mark_read", "delete"]


class NotificationInbox:
    """Read-flag updates and deletes, scoped to the owning user."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def list_for_user(
        self,
        user_id: UUID,
        *,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        bounded_limit = max(1, min(limit, 200))
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(bounded_limit)
        )
        if unread_only:
            stmt = stmt.where(Notification.read.is_(False))
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def unread_count(self, user_id: UUID) -> int:
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.read.is_(False),
        )
        result = await self._db.execute(stmt)
        return int(result.scalar_one() or 0)

    async def mark_read(self, user_id: UUID, notification_id: UUID) -> Notification | None:
        stmt = select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
        result = await self._db.execute(stmt)
        notification = result.scalar_one_or_none()
        if notification is None:
            return None
        if not notification.read:
            notification.read = True
            await self._db.commit()
        return notification

    async def apply_batch(self, user_id: UUID, action: BatchAction, notification_ids: Sequence[UUID]) -> int:
        """Apply ``action`` to the caller's notifications among ``notification_ids``."""

        if not notification_ids:
            return 0
        scope = (
            Notification.user_id == user_id,
            Notification.id.in_(list(notification_ids)),
        )
        if action == "mark_read":
            stmt = update(Notification).where(*scope).values(read=True)
        elif action == "delete":
            stmt = delete(Notification).where(*scope)
        else:
            raise ValueError(f"Unsupported notification batch action: {action}")

        result = await self._db.execute(stmt)
        await self._db.commit()
        affected = int(result.rowcount or 0)
        logger.info("Notification batch applied", user_id=str(user_id), action=action, affected=affected)
        return affected

    async def delete_all(self, user_id: UUID) -> int:
        result = await self._db.execute(delete(Notification).where(Notification.user_id == user_id))
        await self._db.commit()
        affected = int(result.rowcount or 0)
        logger.info("Notifications cleared", user_id=str(user_id), affected=affected)
        return affected


__all__ = ["BatchAction", "NotificationInbox"]
