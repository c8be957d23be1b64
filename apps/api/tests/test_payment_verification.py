from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select

from cafe_api.models.notification import Notification, NotificationTypeEnum
from cafe_api.models.order import OrderStatusEnum, PaymentMethodEnum, PaymentStatusEnum
from cafe_api.services.errors import NotEWalletOrder, PaymentAlreadyProcessed
from cafe_api.services.loyalty import PointsAccountant
from cafe_api.services.orders.payments import PaymentVerificationService
from cafe_api.services.orders.state_machine import Actor, OrderStateMachine


def _actor(user) -> Actor:
    return Actor(user_id=user.id, role=user.role, name=user.name)


async def _owner_notifications(session_factory, user_id) -> list[Notification]:
    async with session_factory() as session:
        result = await session.execute(select(Notification).where(Notification.user_id == user_id))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_verify_moves_received_order_to_preparing(session_factory, customer, admin, make_order, clock):
    order = await make_order(customer, payment_method=PaymentMethodEnum.E_WALLET)
    assert order.payment_status == PaymentStatusEnum.PENDING

    clock.advance(minutes=2)
    async with session_factory() as session:
        verified = await PaymentVerificationService(session, clock=clock).verify(order.id, _actor(admin))

    assert verified.payment_status == PaymentStatusEnum.VERIFIED
    assert verified.status == OrderStatusEnum.PREPARING
    assert [entry.status for entry in verified.status_history] == [
        OrderStatusEnum.RECEIVED,
        OrderStatusEnum.PREPARING,
    ]

    titles = sorted(item.title for item in await _owner_notifications(session_factory, customer.id))
    assert titles == ["Order Being Prepared", "Order Received", "Payment Verified"]


@pytest.mark.asyncio
async def test_verify_after_manual_advance_only_marks_payment(session_factory, customer, admin, make_order, clock):
    order = await make_order(customer, payment_method=PaymentMethodEnum.E_WALLET)

    clock.advance(minutes=1)
    async with session_factory() as session:
        await OrderStateMachine(session, clock=clock).transition(order.id, OrderStatusEnum.PREPARING, _actor(admin))

    clock.advance(minutes=1)
    async with session_factory() as session:
        verified = await PaymentVerificationService(session, clock=clock).verify(order.id, _actor(admin))

    assert verified.payment_status == PaymentStatusEnum.VERIFIED
    assert verified.status == OrderStatusEnum.PREPARING
    assert len(verified.status_history) == 2


@pytest.mark.asyncio
async def test_reject_cancels_order_and_refunds_points(session_factory, make_user, admin, make_order, clock):
    user = await make_user(email="wallet@example.com", points=80)
    order = await make_order(user, payment_method=PaymentMethodEnum.E_WALLET, points_to_redeem=80)

    clock.advance(minutes=3)
    async with session_factory() as session:
        rejected = await PaymentVerificationService(session, clock=clock).reject(
            order.id,
            _actor(admin),
            reason="Reference number does not match.",
        )

    assert rejected.payment_status == PaymentStatusEnum.REJECTED
    assert rejected.status == OrderStatusEnum.CANCELLED
    assert rejected.cancelled_at is not None

    async with session_factory() as session:
        assert await PointsAccountant(session).get_balance(user.id) == 80

    payment_messages = [
        item.message
        for item in await _owner_notifications(session_factory, user.id)
        if item.type == NotificationTypeEnum.PAYMENT_VERIFICATION
    ]
    assert len(payment_messages) == 1
    assert payment_messages[0].endswith("Reference number does not match.")


@pytest.mark.asyncio
async def test_reject_after_completion_reverses_earned_points(session_factory, customer, admin, make_order, clock):
    order = await make_order(customer, unit_price=Decimal("500.00"), payment_method=PaymentMethodEnum.E_WALLET)
    for target in (OrderStatusEnum.PREPARING, OrderStatusEnum.READY_FOR_PICKUP, OrderStatusEnum.COMPLETED):
        clock.advance(minutes=1)
        async with session_factory() as session:
            await OrderStateMachine(session, clock=clock).transition(order.id, target, _actor(admin))

    async with session_factory() as session:
        assert await PointsAccountant(session).get_balance(customer.id) == 5

    clock.advance(minutes=1)
    async with session_factory() as session:
        rejected = await PaymentVerificationService(session, clock=clock).reject(order.id, _actor(admin))

    assert rejected.status == OrderStatusEnum.CANCELLED
    async with session_factory() as session:
        assert await PointsAccountant(session).get_balance(customer.id) == 0


@pytest.mark.asyncio
async def test_verify_rejects_non_ewallet_orders(session_factory, customer, admin, make_order):
    order = await make_order(customer, payment_method=PaymentMethodEnum.CASH_ON_DELIVERY)

    async with session_factory() as session:
        with pytest.raises(NotEWalletOrder):
            await PaymentVerificationService(session).verify(order.id, _actor(admin))


@pytest.mark.asyncio
async def test_payment_is_settled_only_once(session_factory, customer, admin, make_order, clock):
    order = await make_order(customer, payment_method=PaymentMethodEnum.E_WALLET)

    async with session_factory() as session:
        await PaymentVerificationService(session, clock=clock).verify(order.id, _actor(admin))

    async with session_factory() as session:
        service = PaymentVerificationService(session, clock=clock)
        with pytest.raises(PaymentAlreadyProcessed):
            await service.verify(order.id, _actor(admin))
        with pytest.raises(PaymentAlreadyProcessed):
            await service.reject(order.id, _actor(admin))

    async with session_factory() as session:
        stored = await OrderStateMachine(session).get_order(order.id)
    assert stored.status == OrderStatusEnum.PREPARING
    assert stored.payment_status == PaymentStatusEnum.VERIFIED
