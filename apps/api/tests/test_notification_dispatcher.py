from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy import func, select

from cafe_api.models.notification import Notification, NotificationTypeEnum
from cafe_api.models.order import OrderStatusEnum
from cafe_api.observability.ledger import get_ledger_store
from cafe_api.services.notifications import (
    ConnectionRegistry,
    InMemoryRealtimeChannel,
    NotificationDispatcher,
    NotificationInbox,
)
from cafe_api.services.notifications.templates import render_new_order, render_order_status, short_order_id


class _RecordingSocket:
    def __init__(self, *, fail: bool = False) -> None:
        self.sent: list[Any] = []
        self.fail = fail

    async def send_json(self, data: Any, mode: str = "text") -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


class _BrokenChannel:
    async def push_to_user(self, user_id, payload) -> int:
        raise ConnectionError("push backend unavailable")


@pytest.mark.asyncio
async def test_notifications_are_pushed_only_after_commit(session_factory, customer):
    channel = InMemoryRealtimeChannel()

    async with session_factory() as session:
        dispatcher = NotificationDispatcher(session, channel=channel)
        notification = await dispatcher.notify(
            customer.id,
            NotificationTypeEnum.SYSTEM,
            "Store Closing Early",
            "We close at 6 PM today.",
        )
        assert channel.pushed == []
        assert len(dispatcher.pending) == 1

        await session.commit()
        delivered = await dispatcher.deliver_pending()

    assert delivered == 1
    assert channel.pushed == [(str(customer.id), notification.as_payload())]
    assert dispatcher.pending == []
    assert get_ledger_store().snapshot().pushes == {"delivered": 1}


@pytest.mark.asyncio
async def test_discarded_notifications_are_never_pushed(session_factory, customer):
    channel = InMemoryRealtimeChannel()

    async with session_factory() as session:
        dispatcher = NotificationDispatcher(session, channel=channel)
        await dispatcher.notify_template(customer.id, render_order_status(customer.id, OrderStatusEnum.PREPARING))
        await session.rollback()
        dispatcher.discard_pending()
        assert await dispatcher.deliver_pending() == 0

    assert channel.pushed == []
    async with session_factory() as session:
        assert await session.scalar(select(func.count(Notification.id))) == 0


@pytest.mark.asyncio
async def test_push_failure_keeps_persisted_row(session_factory, customer):
    async with session_factory() as session:
        dispatcher = NotificationDispatcher(session, channel=_BrokenChannel())
        await dispatcher.notify(customer.id, NotificationTypeEnum.SYSTEM, "Hello", "Welcome back!")
        await session.commit()
        assert await dispatcher.deliver_pending() == 0

    async with session_factory() as session:
        assert await NotificationInbox(session).unread_count(customer.id) == 1
    assert get_ledger_store().snapshot().pushes == {"failed": 1}


@pytest.mark.asyncio
async def test_notify_admins_skips_excluded(session_factory, customer, admin, super_admin):
    async with session_factory() as session:
        dispatcher = NotificationDispatcher(session, channel=InMemoryRealtimeChannel())
        created = await dispatcher.notify_admins(render_new_order(customer.id, "Ana"), exclude=[admin.id])
        await session.commit()

    assert [item.user_id for item in created] == [super_admin.id]
    assert created[0].message == f"New order #{short_order_id(customer.id)} received from Ana."


@pytest.mark.asyncio
async def test_registry_pushes_to_every_live_connection():
    registry = ConnectionRegistry()
    user_id = "6b0d2f7e-1a7c-4a44-9a1e-0d5c2a7f9b11"
    first, second, broken = _RecordingSocket(), _RecordingSocket(), _RecordingSocket(fail=True)
    for socket in (first, second, broken):
        await registry.register(user_id, socket)

    delivered = await registry.push_to_user(user_id, {"title": "Order Completed"})

    assert delivered == 2
    assert first.sent == [{"event": "notification", "data": {"title": "Order Completed"}}]
    assert registry.connection_count(user_id) == 2

    await registry.deregister(user_id, first)
    await registry.deregister(user_id, second)
    assert registry.connection_count() == 0
    assert await registry.push_to_user(user_id, {"title": "Nobody home"}) == 0


@pytest.mark.asyncio
async def test_inbox_batch_is_scoped_to_owner(session_factory, customer, admin):
    async with session_factory() as session:
        dispatcher = NotificationDispatcher(session, channel=InMemoryRealtimeChannel())
        mine = await dispatcher.notify(customer.id, NotificationTypeEnum.SYSTEM, "Mine", "For Ana")
        theirs = await dispatcher.notify(admin.id, NotificationTypeEnum.SYSTEM, "Theirs", "For the barista")
        await session.commit()

    async with session_factory() as session:
        inbox = NotificationInbox(session)
        affected = await inbox.apply_batch(customer.id, "mark_read", [mine.id, theirs.id])
        assert affected == 1
        assert await inbox.unread_count(customer.id) == 0
        assert await inbox.unread_count(admin.id) == 1

        assert await inbox.mark_read(customer.id, theirs.id) is None
        assert await inbox.delete_all(customer.id) == 1
        assert await inbox.list_for_user(admin.id) != []
