"""Notification templates for order, payment and loyalty events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal
from uuid import UUID

from cafe_api.models.notification import NotificationTypeEnum
from cafe_api.models.order import OrderStatusEnum


LoyaltyAction = Literal["earned", "redeemed", "expired"]


@dataclass
class RenderedTemplate:
    type: NotificationTypeEnum
    title: str
    message: str
    link: str | None


_STATUS_COPY: dict[OrderStatusEnum, tuple[str, str]] = {
    OrderStatusEnum.RECEIVED: (
        "Order Received",
        "Your order #{short} has been successfully received. We'll begin preparing it shortly.",
    ),
    OrderStatusEnum.PREPARING: ("Order Being Prepared", "Your order #{short} is now being prepared."),
    OrderStatusEnum.OUT_FOR_DELIVERY: ("Order Out for Delivery", "Your order #{short} is on its way to you!"),
    OrderStatusEnum.READY_FOR_PICKUP: ("Order Ready for Pickup", "Your order #{short} is ready for pickup."),
    OrderStatusEnum.COMPLETED: (
        "Order Completed",
        "Your order #{short} has been completed. We hope you enjoyed it!",
    ),
    OrderStatusEnum.CANCELLED: ("Order Cancelled", "Your order #{short} has been cancelled."),
}


def short_order_id(order_id: UUID | str) -> str:
    return str(order_id).replace("-", "")[:8]


def customer_order_link(order_id: UUID | str) -> str:
    return f"/orders/{order_id}"


def admin_order_link(order_id: UUID | str) -> str:
    return f"/admin/orders/{order_id}"


def render_order_status(order_id: UUID, status: OrderStatusEnum) -> RenderedTemplate:
    title, message = _STATUS_COPY.get(status, ("Order Update", "Your order #{short} has been updated."))
    return RenderedTemplate(
        type=NotificationTypeEnum.ORDER_STATUS,
        title=title,
        message=message.format(short=short_order_id(order_id)),
        link=customer_order_link(order_id),
    )


def render_admin_cancellation(order_id: UUID, actor_name: str | None) -> RenderedTemplate:
    return RenderedTemplate(
        type=NotificationTypeEnum.ORDER_STATUS,
        title="Order Cancelled by Admin",
        message=f"Order #{short_order_id(order_id)} has been cancelled by {actor_name or 'an admin'}.",
        link=admin_order_link(order_id),
    )


def render_new_order(order_id: UUID, customer_name: str | None) -> RenderedTemplate:
    return RenderedTemplate(
        type=NotificationTypeEnum.NEW_ORDER,
        title="New Order Received",
        message=f"New order #{short_order_id(order_id)} received from {customer_name or 'a customer'}.",
        link=admin_order_link(order_id),
    )


def render_payment_review_request(order_id: UUID, customer_name: str | None) -> RenderedTemplate:
    return RenderedTemplate(
        type=NotificationTypeEnum.PAYMENT_VERIFICATION,
        title="E-Wallet Payment Verification Needed",
        message=(
            f"New e-wallet payment from {customer_name or 'a customer'} for order "
            f"#{short_order_id(order_id)} needs verification."
        ),
        link=admin_order_link(order_id),
    )


def render_payment_result(
    order_id: UUID,
    *,
    verified: bool,
    rejection_reason: str | None = None,
) -> RenderedTemplate:
    short = short_order_id(order_id)
    if verified:
        title = "Payment Verified"
        message = f"Your e-wallet payment for order #{short} has been verified. Your order is now being processed."
    else:
        title = "Payment Rejected"
        reason = rejection_reason or "Please check your payment details and try again."
        message = f"Your e-wallet payment for order #{short} has been rejected. {reason}"
    return RenderedTemplate(
        type=NotificationTypeEnum.PAYMENT_VERIFICATION,
        title=title,
        message=message,
        link=customer_order_link(order_id),
    )


def render_loyalty_points(points: int, action: LoyaltyAction, order_id: UUID | None = None) -> RenderedTemplate:
    link = customer_order_link(order_id) if order_id else "/profile"
    if action == "earned":
        title = "Points Earned"
        message = f"You earned {points} loyalty points{' from your order' if order_id else ''}."
    elif action == "redeemed":
        title = "Points Redeemed"
        message = f"You redeemed {points} loyalty points{' for your order' if order_id else ''}."
    else:
        title = "Points Expired"
        message = f"{points} of your loyalty points have expired."
        link = "/profile"
    return RenderedTemplate(
        type=NotificationTypeEnum.LOYALTY_POINTS,
        title=title,
        message=message,
        link=link,
    )


def render_points_expiring(points: int) -> RenderedTemplate:
    return RenderedTemplate(
        type=NotificationTypeEnum.POINTS_EXPIRING,
        title="Points Expiring Soon",
        message=f"{points} loyalty points will expire soon. Use them before they're gone!",
        link="/profile",
    )


__all__ = [
    "LoyaltyAction",
    "RenderedTemplate",
    "admin_order_link",
    "customer_order_link",
    "render_admin_cancellation",
    "render_loyalty_points",
    "render_new_order",
    "render_order_status",
    "render_payment_result",
    "render_payment_review_request",
    "render_points_expiring",
    "short_order_id",
]
