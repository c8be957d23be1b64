from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select, update

from cafe_api.models.loyalty import PointsActionEnum, PointsHistory
from cafe_api.models.notification import Notification
from cafe_api.models.order import DeliveryMethodEnum, Order, OrderStatusEnum
from cafe_api.models.order_status_history import OrderActorTypeEnum
from cafe_api.services.errors import (
    AlreadyProcessed,
    InvalidTransition,
    NotAuthorized,
    TransitionFailed,
)
from cafe_api.services.loyalty import PointsAccountant
from cafe_api.services.orders.state_machine import Actor, OrderStateMachine, allowed_transitions


def _actor(user) -> Actor:
    return Actor(user_id=user.id, role=user.role, name=user.name)


async def _walk(session_factory, order_id, statuses, actor, clock) -> Order:
    order = None
    for target in statuses:
        clock.advance(minutes=1)
        async with session_factory() as session:
            order = await OrderStateMachine(session, clock=clock).transition(order_id, target, actor)
    return order


async def _balance(session_factory, user_id) -> int:
    async with session_factory() as session:
        return await PointsAccountant(session).get_balance(user_id)


async def _notification_titles(session_factory, user_id) -> list[str]:
    async with session_factory() as session:
        result = await session.execute(
            select(Notification.title).where(Notification.user_id == user_id).order_by(Notification.created_at)
        )
        return list(result.scalars().all())


def test_transition_graph_depends_on_delivery_method():
    assert allowed_transitions(DeliveryMethodEnum.DELIVERY, OrderStatusEnum.PREPARING) == {
        OrderStatusEnum.OUT_FOR_DELIVERY
    }
    assert allowed_transitions(DeliveryMethodEnum.PICKUP, OrderStatusEnum.PREPARING) == {
        OrderStatusEnum.READY_FOR_PICKUP
    }
    assert allowed_transitions(DeliveryMethodEnum.PICKUP, OrderStatusEnum.RECEIVED) == {
        OrderStatusEnum.PREPARING,
        OrderStatusEnum.CANCELLED,
    }
    assert allowed_transitions(DeliveryMethodEnum.DELIVERY, OrderStatusEnum.COMPLETED) == frozenset()
    assert allowed_transitions(DeliveryMethodEnum.PICKUP, OrderStatusEnum.OUT_FOR_DELIVERY) == frozenset()


@pytest.mark.asyncio
async def test_delivery_order_completes_and_awards_points_once(session_factory, customer, admin, make_order, clock):
    order = await make_order(
        customer,
        unit_price=Decimal("345.00"),
        delivery_method=DeliveryMethodEnum.DELIVERY,
        delivery_fee=Decimal("50.00"),
    )
    assert order.points_earned == 3

    completed = await _walk(
        session_factory,
        order.id,
        [OrderStatusEnum.PREPARING, OrderStatusEnum.OUT_FOR_DELIVERY, OrderStatusEnum.COMPLETED],
        _actor(admin),
        clock,
    )

    assert completed.status == OrderStatusEnum.COMPLETED
    assert completed.completed_at is not None
    assert [entry.status for entry in completed.status_history] == [
        OrderStatusEnum.RECEIVED,
        OrderStatusEnum.PREPARING,
        OrderStatusEnum.OUT_FOR_DELIVERY,
        OrderStatusEnum.COMPLETED,
    ]
    assert completed.status_history[-1].actor_type == OrderActorTypeEnum.ADMIN
    assert completed.status_history[-1].actor_id == str(admin.id)
    assert await _balance(session_factory, customer.id) == 3

    async with session_factory() as session:
        with pytest.raises(AlreadyProcessed) as excinfo:
            await OrderStateMachine(session, clock=clock).transition(order.id, OrderStatusEnum.COMPLETED, _actor(admin))
    assert excinfo.value.result.status == OrderStatusEnum.COMPLETED
    assert await _balance(session_factory, customer.id) == 3

    titles = await _notification_titles(session_factory, customer.id)
    assert sorted(titles) == sorted([
        "Order Received",
        "Order Being Prepared",
        "Order Out for Delivery",
        "Order Completed",
        "Points Earned",
    ])


@pytest.mark.asyncio
async def test_pickup_order_cannot_go_out_for_delivery(session_factory, customer, admin, make_order, clock):
    order = await make_order(customer)
    await _walk(session_factory, order.id, [OrderStatusEnum.PREPARING], _actor(admin), clock)

    async with session_factory() as session:
        with pytest.raises(InvalidTransition):
            await OrderStateMachine(session, clock=clock).transition(
                order.id, OrderStatusEnum.OUT_FOR_DELIVERY, _actor(admin)
            )

    async with session_factory() as session:
        stored = await OrderStateMachine(session).get_order(order.id)
    assert stored.status == OrderStatusEnum.PREPARING
    assert len(stored.status_history) == 2


@pytest.mark.asyncio
async def test_cancel_only_allowed_while_received(session_factory, customer, admin, make_order, clock):
    order = await make_order(customer)
    await _walk(session_factory, order.id, [OrderStatusEnum.PREPARING], _actor(admin), clock)

    async with session_factory() as session:
        with pytest.raises(InvalidTransition):
            await OrderStateMachine(session, clock=clock).transition(order.id, OrderStatusEnum.CANCELLED, _actor(admin))


@pytest.mark.asyncio
async def test_customer_cancel_refunds_redeemed_points(session_factory, make_user, make_order, clock):
    user = await make_user(email="loyal@example.com", points=100)
    order = await make_order(user, points_to_redeem=40)
    assert await _balance(session_factory, user.id) == 60

    cancelled = await _walk(session_factory, order.id, [OrderStatusEnum.CANCELLED], _actor(user), clock)

    assert cancelled.status == OrderStatusEnum.CANCELLED
    assert cancelled.cancelled_at is not None
    assert cancelled.status_history[-1].actor_type == OrderActorTypeEnum.CUSTOMER
    assert await _balance(session_factory, user.id) == 100

    async with session_factory() as session:
        actions = (
            await session.execute(
                select(PointsHistory.action, PointsHistory.points)
                .where(PointsHistory.user_id == user.id)
                .order_by(PointsHistory.created_at)
            )
        ).all()
    assert sorted(tuple(row) for row in actions) == sorted([(PointsActionEnum.REDEEMED, 40), (PointsActionEnum.REFUNDED, 40)])

    titles = await _notification_titles(session_factory, user.id)
    assert titles.count("Order Cancelled") == 1


@pytest.mark.asyncio
async def test_repeated_cancel_does_not_refund_twice(session_factory, make_user, make_order, clock):
    user = await make_user(email="twice@example.com", points=50)
    order = await make_order(user, points_to_redeem=50)
    await _walk(session_factory, order.id, [OrderStatusEnum.CANCELLED], _actor(user), clock)

    async with session_factory() as session:
        with pytest.raises(AlreadyProcessed):
            await OrderStateMachine(session, clock=clock).transition(order.id, OrderStatusEnum.CANCELLED, _actor(user))

    assert await _balance(session_factory, user.id) == 50


@pytest.mark.asyncio
async def test_customer_cannot_advance_or_touch_other_orders(session_factory, customer, make_user, make_order, clock):
    stranger = await make_user(email="stranger@example.com")
    order = await make_order(customer)

    async with session_factory() as session:
        machine = OrderStateMachine(session, clock=clock)
        with pytest.raises(NotAuthorized):
            await machine.transition(order.id, OrderStatusEnum.PREPARING, _actor(customer))
        with pytest.raises(NotAuthorized):
            await machine.transition(order.id, OrderStatusEnum.CANCELLED, _actor(stranger))


@pytest.mark.asyncio
async def test_admin_cancellation_notifies_other_admins(
    session_factory, customer, admin, super_admin, make_order, clock
):
    order = await make_order(customer)
    await _walk(session_factory, order.id, [OrderStatusEnum.CANCELLED], _actor(admin), clock)

    assert "Order Cancelled by Admin" in await _notification_titles(session_factory, super_admin.id)
    assert "Order Cancelled by Admin" not in await _notification_titles(session_factory, admin.id)


@pytest.mark.asyncio
async def test_stale_order_fails_conditional_update(session_factory, customer, admin, make_order, clock):
    order = await make_order(customer)

    async with session_factory() as session:
        machine = OrderStateMachine(session, clock=clock)
        stale = await machine.get_order(order.id)
        await session.execute(
            update(Order)
            .where(Order.id == order.id)
            .values(status=OrderStatusEnum.PREPARING)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        assert stale.status == OrderStatusEnum.RECEIVED

        with pytest.raises(TransitionFailed):
            await machine.apply_transition(stale, OrderStatusEnum.PREPARING, _actor(admin))
        await session.rollback()

    async with session_factory() as session:
        stored = await OrderStateMachine(session).get_order(order.id)
    assert stored.status == OrderStatusEnum.PREPARING
    assert len(stored.status_history) == 1


@pytest.mark.asyncio
async def test_award_guard_conflict_replays_without_points(session_factory, customer, admin, make_order, clock):
    order = await make_order(customer)
    await _walk(
        session_factory,
        order.id,
        [OrderStatusEnum.PREPARING, OrderStatusEnum.READY_FOR_PICKUP],
        _actor(admin),
        clock,
    )

    # Another worker already credited this order.
    async with session_factory() as session:
        await PointsAccountant(session, clock=clock).award(customer.id, order.points_earned, order.id)
        await session.commit()

    completed = await _walk(session_factory, order.id, [OrderStatusEnum.COMPLETED], _actor(customer), clock)

    assert completed.status == OrderStatusEnum.COMPLETED
    assert await _balance(session_factory, customer.id) == order.points_earned
    async with session_factory() as session:
        earned = (
            await session.execute(
                select(PointsHistory).where(
                    PointsHistory.order_id == order.id,
                    PointsHistory.action == PointsActionEnum.EARNED,
                )
            )
        ).scalars().all()
    assert len(earned) == 1
