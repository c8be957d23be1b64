"""Persist-then-push notification dispatcher."""

from __future__ import annotations

from typing import Iterable, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_api.core.clock import Clock, utcnow
from cafe_api.core.settings import settings
from cafe_api.models.notification import Notification, NotificationTypeEnum
from cafe_api.models.user import ADMIN_ROLES, User
from cafe_api.observability.ledger import get_ledger_store

from .realtime import RealtimeChannel, get_connection_registry
from .templates import RenderedTemplate


class NotificationDispatcher:
    """Writes Notification rows inside the caller's unit of work and pushes them after commit.

    ``notify`` only adds and flushes the row; the enclosing service owns the
    commit. Once it has committed it calls ``deliver_pending`` to push the
    rows to connected clients, or ``discard_pending`` after a rollback so that
    nothing that was never persisted gets pushed.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        channel: Optional[RealtimeChannel] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db_session
        self._channel = channel if channel is not None else self._build_default_channel()
        self._clock = clock
        self._pending: list[Notification] = []
        self._observability = get_ledger_store()

    @staticmethod
    def _build_default_channel() -> RealtimeChannel | None:
        if not settings.realtime_enabled:
            return None
        return get_connection_registry()

    @property
    def pending(self) -> list[Notification]:
        return list(self._pending)

    async def notify(
        self,
        user_id: UUID,
        type: NotificationTypeEnum,
        title: str,
        message: str,
        link: str | None = None,
        *,
        dedupe_key: str | None = None,
    ) -> Notification:
        """Stage a notification row; raises if the row cannot be written."""

        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            link=link,
            read=False,
            dedupe_key=dedupe_key,
            created_at=self._clock(),
        )
        self._db.add(notification)
        await self._db.flush()
        self._pending.append(notification)
        logger.debug(
            "Notification staged",
            user_id=str(user_id),
            notification_type=type.value,
            notification_id=str(notification.id),
        )
        return notification

    async def notify_template(
        self,
        user_id: UUID,
        template: RenderedTemplate,
        *,
        dedupe_key: str | None = None,
    ) -> Notification:
        return await self.notify(
            user_id,
            template.type,
            template.title,
            template.message,
            template.link,
            dedupe_key=dedupe_key,
        )

    async def notify_admins(
        self,
        template: RenderedTemplate,
        *,
        exclude: Iterable[UUID] = (),
    ) -> list[Notification]:
        """Stage one notification per administrator, skipping ``exclude``."""

        excluded = {str(user_id) for user_id in exclude}
        stmt = select(User.id).where(User.role.in_(sorted(ADMIN_ROLES)))
        result = await self._db.execute(stmt)
        notifications: list[Notification] = []
        for admin_id in result.scalars().all():
            if str(admin_id) in excluded:
                continue
            notifications.append(await self.notify_template(admin_id, template))
        return notifications

    async def deliver_pending(self) -> int:
        """Best-effort push of staged notifications; never raises."""

        pending, self._pending = self._pending, []
        if not pending:
            return 0
        if self._channel is None:
            self._observability.record_push("skipped")
            logger.info("Realtime channel disabled; notifications await next fetch", count=len(pending))
            return 0

        delivered = 0
        for notification in pending:
            try:
                sent = await self._channel.push_to_user(notification.user_id, notification.as_payload())
            except Exception as exc:  # noqa: BLE001 - push is best effort
                self._observability.record_push("failed")
                logger.warning(
                    "Realtime notification push failed",
                    user_id=str(notification.user_id),
                    notification_id=str(notification.id),
                    error=str(exc),
                )
                continue

            if sent:
                delivered += 1
                self._observability.record_push("delivered")
            else:
                self._observability.record_push("no_session")
                logger.debug(
                    "No live session for notification; delivered on next fetch",
                    user_id=str(notification.user_id),
                    notification_id=str(notification.id),
                )
        return delivered

    def discard_pending(self) -> None:
        self._pending.clear()


__all__ = ["NotificationDispatcher"]
