"""E-wallet payment verification coupled to the order state machine."""

from __future__ import annotations

from uuid import UUID

from loguru import logger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_api.core.clock import Clock, utcnow
from cafe_api.models.order import Order, OrderStatusEnum, PaymentMethodEnum, PaymentStatusEnum
from cafe_api.services.errors import (
    InvalidTransition,
    LedgerError,
    NotEWalletOrder,
    PaymentAlreadyProcessed,
    TransitionFailed,
)
from cafe_api.services.notifications.templates import render_payment_result

from .state_machine import Actor, OrderStateMachine, PrepareHook


class PaymentVerificationService:
    """Verify or reject pending e-wallet payments.

    Verification auto-advances a ``RECEIVED`` order to ``PREPARING``; a later
    verification only marks the payment. Rejection always cancels the order
    with the full cancellation side effects, whatever status it has reached.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        state_machine: OrderStateMachine | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session = session
        self._clock = clock
        self._state_machine = state_machine or OrderStateMachine(session, clock=clock)
        self._notifications = self._state_machine.notifications

    async def verify(self, order_id: UUID, actor: Actor) -> Order:
        order = await self._load_pending(order_id)
        prepare = self._settle(PaymentStatusEnum.VERIFIED)

        if order.status == OrderStatusEnum.RECEIVED:
            try:
                order = await self._state_machine.run(order_id, OrderStatusEnum.PREPARING, actor, prepare=prepare)
            except InvalidTransition:
                # Moved on concurrently; only the payment still needs settling.
                order = await self._commit_alone(order_id, prepare)
        else:
            order = await self._commit_alone(order_id, prepare)

        logger.info("E-wallet payment verified", order_id=str(order_id), status=order.status.value)
        return order

    async def reject(self, order_id: UUID, actor: Actor, *, reason: str | None = None) -> Order:
        order = await self._load_pending(order_id)
        prepare = self._settle(PaymentStatusEnum.REJECTED, reason=reason)

        if order.status == OrderStatusEnum.CANCELLED:
            order = await self._commit_alone(order_id, prepare)
        else:
            order = await self._state_machine.run(
                order_id,
                OrderStatusEnum.CANCELLED,
                actor,
                forced=True,
                prepare=prepare,
            )

        logger.warning("E-wallet payment rejected", order_id=str(order_id), reason=reason)
        return order

    async def _load_pending(self, order_id: UUID) -> Order:
        order = await self._state_machine.get_order(order_id)
        if order.payment_method != PaymentMethodEnum.E_WALLET:
            raise NotEWalletOrder(f"Order {order_id} was not paid by e-wallet")
        if order.payment_status != PaymentStatusEnum.PENDING:
            status = order.payment_status.value if order.payment_status else None
            raise PaymentAlreadyProcessed(f"Payment for order {order_id} is already {status}")
        return order

    def _settle(self, outcome: PaymentStatusEnum, *, reason: str | None = None) -> PrepareHook:
        async def settle(order: Order) -> None:
            stmt = (
                update(Order)
                .where(Order.id == order.id, Order.payment_status == PaymentStatusEnum.PENDING)
                .values(payment_status=outcome, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            result = await self._session.execute(stmt)
            if result.rowcount != 1:
                raise PaymentAlreadyProcessed(f"Payment for order {order.id} is no longer pending")
            await self._notifications.notify_template(
                order.user_id,
                render_payment_result(
                    order.id,
                    verified=outcome == PaymentStatusEnum.VERIFIED,
                    rejection_reason=reason,
                ),
            )

        return settle

    async def _commit_alone(self, order_id: UUID, prepare: PrepareHook) -> Order:
        order = await self._state_machine.get_order(order_id)
        try:
            await prepare(order)
            await self._session.commit()
        except LedgerError:
            await self._abort()
            raise
        except Exception as exc:
            await self._abort()
            logger.exception("Payment settlement failed", order_id=str(order_id))
            raise TransitionFailed(f"Could not settle payment for order {order_id}") from exc

        await self._notifications.deliver_pending()
        return await self._state_machine.get_order(order_id)

    async def _abort(self) -> None:
        await self._session.rollback()
        self._notifications.discard_pending()


__all__ = ["PaymentVerificationService"]
