from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest
from sqlalchemy import select

from cafe_api.core.clock import ensure_aware
from cafe_api.jobs.loyalty import expiry as expiry_job
from cafe_api.jobs.loyalty.expiry import expiry_warning_key, run_points_expiry_sweep
from cafe_api.models.loyalty import LoyaltyPoints, PointsActionEnum, PointsHistory
from cafe_api.models.notification import Notification, NotificationTypeEnum
from cafe_api.models.order import Order, OrderStatusEnum, PaymentMethodEnum
from cafe_api.services.loyalty import PointsAccountant
from cafe_api.services.notifications import InMemoryRealtimeChannel
from cafe_api.services.orders.payments import PaymentVerificationService
from cafe_api.services.orders.state_machine import Actor, OrderStateMachine

UTC = dt.timezone.utc
SWEEP_AT = dt.datetime(2026, 1, 15, 0, 15, tzinfo=UTC)


async def _award_at(session_factory, clock, user, order, points, when) -> PointsHistory:
    clock.now = when
    async with session_factory() as session:
        entry = await PointsAccountant(session, clock=clock).award(user.id, points, order.id)
        await session.commit()
        return entry


async def _balance(session_factory, user_id) -> int:
    async with session_factory() as session:
        return await PointsAccountant(session).get_balance(user_id)


@pytest.mark.asyncio
async def test_sweep_expires_due_entries_once(session_factory, customer, make_order, clock):
    due_order = await make_order(customer)
    fresh_order = await make_order(customer)
    due = await _award_at(session_factory, clock, customer, due_order, 7, dt.datetime(2025, 1, 10, tzinfo=UTC))
    await _award_at(session_factory, clock, customer, fresh_order, 3, dt.datetime(2025, 6, 1, tzinfo=UTC))
    assert await _balance(session_factory, customer.id) == 10

    channel = InMemoryRealtimeChannel()
    summary = await run_points_expiry_sweep(session_factory=session_factory, clock=lambda: SWEEP_AT, channel=channel)

    assert summary["expired_entries"] == 1
    assert summary["expired_points"] == 7
    assert summary["errors"] == []
    assert await _balance(session_factory, customer.id) == 3
    assert [payload["title"] for _, payload in channel.pushed] == ["Points Expired"]

    async with session_factory() as session:
        expired = (
            await session.execute(select(PointsHistory).where(PointsHistory.action == PointsActionEnum.EXPIRED))
        ).scalar_one()
    assert expired.source_entry_id == due.id
    assert expired.points == 7

    rerun = await run_points_expiry_sweep(session_factory=session_factory, clock=lambda: SWEEP_AT)
    assert rerun["expired_entries"] == 0
    assert rerun["expired_points"] == 0
    assert await _balance(session_factory, customer.id) == 3


@pytest.mark.asyncio
async def test_expiry_clamps_balance_already_spent(session_factory, customer, make_order, clock):
    order = await make_order(customer)
    await _award_at(session_factory, clock, customer, order, 9, dt.datetime(2024, 12, 1, tzinfo=UTC))

    async with session_factory() as session:
        await PointsAccountant(session).redeem(customer.id, 6)

    summary = await run_points_expiry_sweep(session_factory=session_factory, clock=lambda: SWEEP_AT)

    assert summary["expired_points"] == 9
    assert await _balance(session_factory, customer.id) == 0


@pytest.mark.asyncio
async def test_sweep_backfills_missing_expiry_dates(session_factory, customer, make_order):
    order = await make_order(customer)
    async with session_factory() as session:
        legacy = PointsHistory(
            user_id=customer.id,
            action=PointsActionEnum.EARNED,
            points=5,
            order_id=order.id,
            created_at=dt.datetime(2025, 1, 1, 8, 0, tzinfo=UTC),
        )
        session.add(legacy)
        account = (
            await session.execute(select(LoyaltyPoints).where(LoyaltyPoints.user_id == customer.id))
        ).scalar_one()
        account.points = 5
        await session.commit()
        legacy_id = legacy.id

    first = await run_points_expiry_sweep(session_factory=session_factory, clock=lambda: SWEEP_AT)

    assert first["backfilled"] == 1
    assert first["expired_entries"] == 0
    async with session_factory() as session:
        stored = await session.get(PointsHistory, legacy_id)
    assert ensure_aware(stored.expires_at) == dt.datetime(2026, 1, 1, 8, 0, tzinfo=UTC)

    second = await run_points_expiry_sweep(session_factory=session_factory, clock=lambda: SWEEP_AT)

    assert second["backfilled"] == 0
    assert second["expired_entries"] == 1
    assert await _balance(session_factory, customer.id) == 0


@pytest.mark.asyncio
async def test_sweep_warns_about_upcoming_expiry_once(session_factory, customer, make_order, clock):
    order = await make_order(customer)
    entry = await _award_at(session_factory, clock, customer, order, 4, dt.datetime(2025, 2, 1, tzinfo=UTC))

    first = await run_points_expiry_sweep(session_factory=session_factory, clock=lambda: SWEEP_AT)
    second = await run_points_expiry_sweep(session_factory=session_factory, clock=lambda: SWEEP_AT)

    assert first["warnings_created"] == 1
    assert second["warnings_created"] == 0
    assert first["expired_entries"] == 0

    async with session_factory() as session:
        warnings = (
            await session.execute(
                select(Notification).where(Notification.type == NotificationTypeEnum.POINTS_EXPIRING)
            )
        ).scalars().all()
    assert len(warnings) == 1
    assert warnings[0].user_id == customer.id
    assert warnings[0].dedupe_key == expiry_warning_key(entry.id)
    assert await _balance(session_factory, customer.id) == 4


@pytest.mark.asyncio
async def test_sweep_with_nothing_to_do(session_factory, customer):
    summary = await run_points_expiry_sweep(session_factory=session_factory, clock=lambda: SWEEP_AT)

    assert summary == {
        "expired_entries": 0,
        "expired_points": 0,
        "already_settled": 0,
        "backfilled": 0,
        "warnings_created": 0,
        "errors": [],
    }


def _actor(user) -> Actor:
    return Actor(user_id=user.id, role=user.role, name=user.name)


async def _complete_ewallet_order(session_factory, clock, user, admin, make_order) -> Order:
    order = await make_order(user, unit_price=Decimal("500.00"), payment_method=PaymentMethodEnum.E_WALLET)
    for target in (OrderStatusEnum.PREPARING, OrderStatusEnum.READY_FOR_PICKUP, OrderStatusEnum.COMPLETED):
        clock.advance(minutes=1)
        async with session_factory() as session:
            await OrderStateMachine(session, clock=clock).transition(order.id, target, _actor(admin))
    return order


async def _actions(session_factory, user_id) -> list[PointsActionEnum]:
    async with session_factory() as session:
        result = await session.execute(
            select(PointsHistory.action).where(PointsHistory.user_id == user_id).order_by(PointsHistory.created_at)
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_sweep_leaves_points_reversed_by_payment_rejection(
    session_factory, make_user, admin, make_order, clock
):
    user = await make_user(email="wallet@example.com", points=100)
    order = await _complete_ewallet_order(session_factory, clock, user, admin, make_order)
    assert await _balance(session_factory, user.id) == 105

    clock.advance(minutes=1)
    async with session_factory() as session:
        await PaymentVerificationService(session, clock=clock).reject(order.id, _actor(admin))
    assert await _balance(session_factory, user.id) == 100

    warning_run = await run_points_expiry_sweep(
        session_factory=session_factory,
        clock=lambda: dt.datetime(2026, 12, 20, tzinfo=UTC),
    )
    clock.advance(days=400)
    expiry_run = await run_points_expiry_sweep(session_factory=session_factory, clock=clock)

    assert warning_run["warnings_created"] == 0
    assert expiry_run["expired_entries"] == 0
    assert expiry_run["errors"] == []
    assert await _balance(session_factory, user.id) == 100
    assert PointsActionEnum.EXPIRED not in await _actions(session_factory, user.id)


@pytest.mark.asyncio
async def test_payment_rejection_after_expiry_does_not_debit_again(
    session_factory, make_user, admin, make_order, clock
):
    user = await make_user(email="late-reject@example.com", points=100)
    order = await _complete_ewallet_order(session_factory, clock, user, admin, make_order)

    clock.advance(days=400)
    summary = await run_points_expiry_sweep(session_factory=session_factory, clock=clock)
    assert summary["expired_entries"] == 1
    assert await _balance(session_factory, user.id) == 100

    clock.advance(minutes=1)
    async with session_factory() as session:
        rejected = await PaymentVerificationService(session, clock=clock).reject(order.id, _actor(admin))

    assert rejected.status == OrderStatusEnum.CANCELLED
    assert await _balance(session_factory, user.id) == 100
    assert await _actions(session_factory, user.id) == [PointsActionEnum.EARNED, PointsActionEnum.EXPIRED]


@pytest.mark.asyncio
async def test_failed_step_does_not_abort_the_others(session_factory, customer, make_order, clock, monkeypatch):
    due_order = await make_order(customer)
    upcoming_order = await make_order(customer)
    await _award_at(session_factory, clock, customer, due_order, 7, dt.datetime(2025, 1, 10, tzinfo=UTC))
    upcoming = await _award_at(
        session_factory, clock, customer, upcoming_order, 4, dt.datetime(2025, 2, 1, tzinfo=UTC)
    )

    async def broken_backfill(session, summary) -> None:
        raise RuntimeError("backfill unavailable")

    monkeypatch.setattr(expiry_job, "_backfill_expiry_dates", broken_backfill)

    summary = await run_points_expiry_sweep(session_factory=session_factory, clock=lambda: SWEEP_AT)

    assert summary["errors"] == [{"step": "backfill", "error": "backfill unavailable"}]
    assert summary["expired_entries"] == 1
    assert summary["warnings_created"] == 1
    assert await _balance(session_factory, customer.id) == 4

    async with session_factory() as session:
        warning = (
            await session.execute(
                select(Notification).where(Notification.dedupe_key == expiry_warning_key(upcoming.id))
            )
        ).scalar_one()
    assert warning.type == NotificationTypeEnum.POINTS_EXPIRING


@pytest.mark.asyncio
async def test_failed_entry_does_not_stop_remaining_expiries(
    session_factory, customer, make_order, clock, monkeypatch
):
    first_order = await make_order(customer)
    second_order = await make_order(customer)
    broken = await _award_at(session_factory, clock, customer, first_order, 5, dt.datetime(2024, 11, 1, tzinfo=UTC))
    await _award_at(session_factory, clock, customer, second_order, 3, dt.datetime(2024, 12, 1, tzinfo=UTC))

    original_expire = PointsAccountant.expire_entry

    async def flaky_expire(self, earned):
        if earned.id == broken.id:
            raise RuntimeError("ledger write timed out")
        return await original_expire(self, earned)

    monkeypatch.setattr(PointsAccountant, "expire_entry", flaky_expire)

    summary = await run_points_expiry_sweep(session_factory=session_factory, clock=lambda: SWEEP_AT)

    assert summary["expired_entries"] == 1
    assert summary["expired_points"] == 3
    assert summary["errors"] == [
        {"step": "expire", "entry_id": str(broken.id), "error": "ledger write timed out"}
    ]
    assert await _balance(session_factory, customer.id) == 5

    monkeypatch.setattr(PointsAccountant, "expire_entry", original_expire)
    retry = await run_points_expiry_sweep(session_factory=session_factory, clock=lambda: SWEEP_AT)

    assert retry["expired_entries"] == 1
    assert retry["expired_points"] == 5
    assert await _balance(session_factory, customer.id) == 0
