"""Order placement: pricing snapshot, points redemption and initial history."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence
from uuid import UUID, uuid4

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_api.core.clock import Clock, utcnow
from cafe_api.core.settings import settings
from cafe_api.models.order import (
    DeliveryMethodEnum,
    Order,
    OrderItem,
    OrderStatusEnum,
    PaymentMethodEnum,
    PaymentStatusEnum,
    SizeEnum,
    TemperatureEnum,
)
from cafe_api.models.order_status_history import OrderActorTypeEnum, OrderStatusHistory
from cafe_api.models.user import User
from cafe_api.services.errors import LedgerError, TransitionFailed, UserNotFound
from cafe_api.services.loyalty import PointsAccountant
from cafe_api.services.notifications import NotificationDispatcher
from cafe_api.services.notifications.templates import (
    render_new_order,
    render_order_status,
    render_payment_review_request,
)

from .state_machine import OrderStateMachine

_CENTS = Decimal("0.01")


def _money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)


@dataclass
class AddOnSelection:
    id: str
    name: str
    price: Decimal


@dataclass
class LineItem:
    """One cart line with the prices captured at checkout."""

    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int = 1
    size: SizeEnum | None = None
    temperature: TemperatureEnum | None = None
    addons: list[AddOnSelection] = field(default_factory=list)

    @property
    def line_total(self) -> Decimal:
        addon_total = sum((_money(addon.price) for addon in self.addons), Decimal("0"))
        return _money((_money(self.unit_price) + addon_total) * self.quantity)


def points_for_total(total: Decimal) -> int:
    """Whole points earned for ``total``: one point per ``points_earn_unit``."""

    if total <= 0:
        return 0
    return int(total // Decimal(settings.points_earn_unit))


class CheckoutService:
    """Creates orders and redeems points for them in a single unit of work."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        notifications: NotificationDispatcher | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session = session
        self._clock = clock
        self._notifications = notifications or NotificationDispatcher(session, clock=clock)
        self._accountant = PointsAccountant(session, notifications=self._notifications, clock=clock)
        self._state_machine = OrderStateMachine(
            session,
            notifications=self._notifications,
            accountant=self._accountant,
            clock=clock,
        )

    async def place_order(
        self,
        user_id: UUID,
        items: Sequence[LineItem],
        *,
        delivery_method: DeliveryMethodEnum,
        payment_method: PaymentMethodEnum,
        points_to_redeem: int = 0,
        delivery_fee: Decimal | int = 0,
        delivery_address: str | None = None,
        contact_number: str | None = None,
        payment_proof_url: str | None = None,
    ) -> Order:
        if not items:
            raise ValueError("An order needs at least one item")
        if any(item.quantity < 1 for item in items):
            raise ValueError("Item quantities must be positive")
        if points_to_redeem < 0:
            raise ValueError("Points to redeem cannot be negative")
        if delivery_method == DeliveryMethodEnum.DELIVERY and not delivery_address:
            raise ValueError("Delivery orders need a delivery address")

        user = await self._session.get(User, user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        customer_name = user.name
        await self._accountant.ensure_account(user_id)

        subtotal = _money(sum((item.line_total for item in items), Decimal("0")))
        fee = _money(delivery_fee) if delivery_method == DeliveryMethodEnum.DELIVERY else _money(0)
        total = subtotal + fee
        now = self._clock()
        order_id = uuid4()

        try:
            order = Order(
                id=order_id,
                user_id=user_id,
                status=OrderStatusEnum.RECEIVED,
                delivery_method=delivery_method,
                payment_method=payment_method,
                payment_status=PaymentStatusEnum.PENDING if payment_method == PaymentMethodEnum.E_WALLET else None,
                subtotal=subtotal,
                delivery_fee=fee,
                total=total,
                points_used=points_to_redeem,
                points_earned=points_for_total(total),
                delivery_address=delivery_address,
                contact_number=contact_number,
                payment_proof_url=payment_proof_url,
                created_at=now,
                updated_at=now,
            )
            order.items = [
                OrderItem(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    unit_price=_money(item.unit_price),
                    size=item.size,
                    temperature=item.temperature,
                    addons=[
                        {"id": addon.id, "name": addon.name, "price": str(_money(addon.price))}
                        for addon in item.addons
                    ],
                    created_at=now,
                )
                for item in items
            ]
            self._session.add(order)
            self._session.add(
                OrderStatusHistory(
                    order_id=order_id,
                    status=OrderStatusEnum.RECEIVED,
                    actor_type=OrderActorTypeEnum.CUSTOMER,
                    actor_id=str(user_id),
                    created_at=now,
                )
            )
            await self._session.flush()

            if points_to_redeem > 0:
                await self._accountant.apply_redemption(user_id, points_to_redeem, order_id=order_id)

            await self._notifications.notify_template(user_id, render_order_status(order_id, OrderStatusEnum.RECEIVED))
            await self._notifications.notify_admins(render_new_order(order_id, customer_name), exclude=[user_id])
            if payment_method == PaymentMethodEnum.E_WALLET:
                await self._notifications.notify_admins(
                    render_payment_review_request(order_id, customer_name),
                    exclude=[user_id],
                )
            await self._session.commit()
        except LedgerError:
            await self._abort()
            raise
        except Exception as exc:
            await self._abort()
            logger.exception("Order placement failed", user_id=str(user_id))
            raise TransitionFailed(f"Could not place order for user {user_id}") from exc

        await self._notifications.deliver_pending()
        logger.info(
            "Order placed",
            order_id=str(order_id),
            user_id=str(user_id),
            total=str(total),
            points_used=points_to_redeem,
            points_earned=points_for_total(total),
        )
        return await self._state_machine.get_order(order_id)

    async def _abort(self) -> None:
        await self._session.rollback()
        self._notifications.discard_pending()


__all__ = ["AddOnSelection", "CheckoutService", "LineItem", "points_for_total"]
