"""Order state machine orchestration, points side effects and audit logging."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cafe_api.core.clock import Clock, utcnow
from cafe_api.core.logging import ledger_context
from cafe_api.models.order import (
    TERMINAL_ORDER_STATUSES,
    DeliveryMethodEnum,
    Order,
    OrderStatusEnum,
)
from cafe_api.models.order_status_history import OrderActorTypeEnum, OrderStatusHistory
from cafe_api.models.user import ADMIN_ROLES, UserRoleEnum
from cafe_api.observability.ledger import get_ledger_store
from cafe_api.services.errors import (
    AlreadyProcessed,
    InvalidTransition,
    LedgerError,
    NotAuthorized,
    OrderNotFound,
    TransitionFailed,
)
from cafe_api.services.loyalty import PointsAccountant
from cafe_api.services.notifications import NotificationDispatcher
from cafe_api.services.notifications.templates import render_admin_cancellation, render_order_status

SYSTEM_ROLE = "system"

# Statuses a customer may request on their own order.
CUSTOMER_REQUESTABLE = frozenset({OrderStatusEnum.CANCELLED, OrderStatusEnum.COMPLETED})


@dataclass(slots=True)
class Actor:
    """Identity and role of whoever requested a change, as supplied by the session layer."""

    user_id: UUID | None
    role: str = UserRoleEnum.CUSTOMER.value
    name: str | None = None

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=None, role=SYSTEM_ROLE, name="system")

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def actor_type(self) -> OrderActorTypeEnum:
        if self.role == SYSTEM_ROLE:
            return OrderActorTypeEnum.SYSTEM
        if self.is_admin:
            return OrderActorTypeEnum.ADMIN
        return OrderActorTypeEnum.CUSTOMER


def _flow(fulfilment_step: OrderStatusEnum) -> dict[OrderStatusEnum, frozenset[OrderStatusEnum]]:
    return {
        OrderStatusEnum.RECEIVED: frozenset({OrderStatusEnum.PREPARING, OrderStatusEnum.CANCELLED}),
        OrderStatusEnum.PREPARING: frozenset({fulfilment_step}),
        fulfilment_step: frozenset({OrderStatusEnum.COMPLETED}),
        OrderStatusEnum.COMPLETED: frozenset(),
        OrderStatusEnum.CANCELLED: frozenset(),
    }


_ALLOWED_TRANSITIONS: dict[DeliveryMethodEnum, dict[OrderStatusEnum, frozenset[OrderStatusEnum]]] = {
    DeliveryMethodEnum.DELIVERY: _flow(OrderStatusEnum.OUT_FOR_DELIVERY),
    DeliveryMethodEnum.PICKUP: _flow(OrderStatusEnum.READY_FOR_PICKUP),
}


def allowed_transitions(delivery_method: DeliveryMethodEnum, status: OrderStatusEnum) -> frozenset[OrderStatusEnum]:
    return _ALLOWED_TRANSITIONS[delivery_method].get(status, frozenset())


def check_transition(order: Order, target: OrderStatusEnum, *, forced: bool = False) -> None:
    """Raise unless ``target`` is a legal successor of the order's current status.

    A repeated request for the terminal status an order already holds raises
    :class:`AlreadyProcessed` carrying the order, so retries look like success.
    ``forced`` cancellations (payment rejection) skip the ``RECEIVED``-only rule
    but still never leave ``CANCELLED``.
    """

    current = order.status
    if current == target and current in TERMINAL_ORDER_STATUSES:
        raise AlreadyProcessed(f"Order {order.id} is already {current.value}", result=order)
    if forced and target == OrderStatusEnum.CANCELLED and current != OrderStatusEnum.CANCELLED:
        return
    if current in TERMINAL_ORDER_STATUSES:
        raise InvalidTransition(current, target, reason="order is in a terminal status")
    if target not in allowed_transitions(order.delivery_method, current):
        raise InvalidTransition(current, target)


PrepareHook = Callable[[Order], Awaitable[None]]


class OrderStateMachine:
    """Applies order status transitions and their side effects as one atomic unit."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        notifications: NotificationDispatcher | None = None,
        accountant: PointsAccountant | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session = session
        self._clock = clock
        self._notifications = notifications or NotificationDispatcher(session, clock=clock)
        self._accountant = accountant or PointsAccountant(session, notifications=self._notifications, clock=clock)
        self._observability = get_ledger_store()

    @property
    def notifications(self) -> NotificationDispatcher:
        return self._notifications

    async def get_order(self, order_id: UUID) -> Order:
        """Load an order with items and history, refreshing any cached copy."""

        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items), selectinload(Order.status_history))
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    async def transition(self, order_id: UUID, target_status: OrderStatusEnum, actor: Actor) -> Order:
        """Request a status change on behalf of ``actor``."""

        order = await self.get_order(order_id)
        if not actor.is_admin:
            if order.user_id != actor.user_id:
                raise NotAuthorized(f"Order {order_id} does not belong to the requesting user")
            if target_status not in CUSTOMER_REQUESTABLE:
                raise NotAuthorized(f"Customers may not move orders to {target_status.value}")
        return await self.run(order_id, target_status, actor)

    async def run(
        self,
        order_id: UUID,
        target_status: OrderStatusEnum,
        actor: Actor,
        *,
        forced: bool = False,
        prepare: PrepareHook | None = None,
    ) -> Order:
        """Validate and apply a transition, committing it with all side effects.

        ``prepare`` runs inside the same unit before the status change (payment
        flows use it to flip the payment status). If the earned-points guard
        trips, the unit is rolled back and replayed once without the award.
        """

        order = await self.get_order(order_id)
        with ledger_context(order_id=order_id, user_id=order.user_id):
            return await self._run_unit(order_id, target_status, actor, order.user_id, forced=forced, prepare=prepare)

    async def _run_unit(
        self,
        order_id: UUID,
        target_status: OrderStatusEnum,
        actor: Actor,
        user_id: UUID,
        *,
        forced: bool,
        prepare: PrepareHook | None,
    ) -> Order:
        await self._accountant.ensure_account(user_id)

        for award_points in (True, False):
            order = await self.get_order(order_id)
            check_transition(order, target_status, forced=forced)
            previous = order.status
            try:
                if prepare is not None:
                    await prepare(order)
                await self.apply_transition(order, target_status, actor, award_points=award_points)
                await self._session.commit()
            except AlreadyProcessed:
                await self._abort()
                if not award_points:
                    raise TransitionFailed(f"Could not settle points for order {order_id}")
                continue
            except LedgerError as exc:
                await self._abort()
                self._observability.record_transition_failure(type(exc).__name__)
                raise
            except Exception as exc:
                await self._abort()
                self._observability.record_transition_failure("store_error")
                logger.exception("Order transition failed", order_id=str(order_id), to_status=target_status.value)
                raise TransitionFailed(f"Could not transition order {order_id}") from exc
            break

        await self._notifications.deliver_pending()
        self._observability.record_transition(previous.value, target_status.value)
        return await self.get_order(order_id)

    async def apply_transition(
        self,
        order: Order,
        target_status: OrderStatusEnum,
        actor: Actor,
        *,
        award_points: bool = True,
    ) -> OrderStatusHistory:
        """Write the status change and its side effects; the caller commits."""

        previous = order.status
        now = self._clock()
        values: dict[str, object] = {"status": target_status, "updated_at": now}
        if target_status == OrderStatusEnum.COMPLETED:
            values["completed_at"] = now
        elif target_status == OrderStatusEnum.CANCELLED:
            values["cancelled_at"] = now

        stmt = (
            update(Order)
            .where(Order.id == order.id, Order.status == previous)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount != 1:
            logger.warning(
                "Concurrent order update detected",
                order_id=str(order.id),
                from_status=previous.value,
                to_status=target_status.value,
            )
            raise TransitionFailed(f"Order {order.id} changed while transitioning to {target_status.value}")

        history = OrderStatusHistory(
            order_id=order.id,
            status=target_status,
            actor_type=actor.actor_type,
            actor_id=str(actor.user_id) if actor.user_id else None,
            created_at=now,
        )
        self._session.add(history)
        await self._session.flush()

        await self._notifications.notify_template(order.user_id, render_order_status(order.id, target_status))

        if target_status == OrderStatusEnum.CANCELLED:
            await self._apply_cancellation(order, actor)
        elif target_status == OrderStatusEnum.COMPLETED and award_points and order.points_earned > 0:
            await self._accountant.award(order.user_id, int(order.points_earned), order.id)

        logger.info(
            "Order status transitioned",
            order_id=str(order.id),
            from_status=previous.value,
            to_status=target_status.value,
            actor_type=actor.actor_type.value,
        )
        return history

    async def _apply_cancellation(self, order: Order, actor: Actor) -> None:
        if order.points_used > 0:
            await self._accountant.refund_redemption(order.user_id, int(order.points_used), order.id)
        await self._accountant.reverse_award(order.user_id, order.id)

        if actor.is_admin and actor.user_id != order.user_id:
            await self._notifications.notify_admins(
                render_admin_cancellation(order.id, actor.name),
                exclude=[actor.user_id] if actor.user_id else (),
            )

    async def _abort(self) -> None:
        await self._session.rollback()
        self._notifications.discard_pending()


__all__ = [
    "Actor",
    "CUSTOMER_REQUESTABLE",
    "OrderStateMachine",
    "allowed_transitions",
    "check_transition",
]
