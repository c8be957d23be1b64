"""Order placement, lookup and lifecycle API endpoints."""

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_api.api.dependencies.session import require_actor, require_admin
from cafe_api.api.errors import ledger_http_exception
from cafe_api.db.session import get_session
from cafe_api.models.order import (
    DeliveryMethodEnum,
    Order,
    OrderStatusEnum,
    PaymentMethodEnum,
    SizeEnum,
    TemperatureEnum,
)
from cafe_api.services.errors import AlreadyProcessed, LedgerError
from cafe_api.services.orders.checkout import AddOnSelection, CheckoutService, LineItem
from cafe_api.services.orders.payments import PaymentVerificationService
from cafe_api.services.orders.queries import OrderQueryService
from cafe_api.services.orders.state_machine import Actor, OrderStateMachine


router = APIRouter(prefix="/orders", tags=["orders"])


class AddOnCreate(BaseModel):
    id: str = Field(..., description="Add-on identifier")
    name: str = Field(..., description="Add-on name snapshot")
    price: Decimal = Field(..., ge=0, description="Add-on price snapshot")


class OrderItemCreate(BaseModel):
    """Request model for creating order items."""
    product_id: str = Field(..., description="Product ID")
    product_name: str = Field(..., description="Product name snapshot")
    quantity: int = Field(1, ge=1, description="Item quantity")
    unit_price: Decimal = Field(..., ge=0, description="Unit price snapshot")
    size: Optional[SizeEnum] = None
    temperature: Optional[TemperatureEnum] = None
    addons: List[AddOnCreate] = Field(default_factory=list)


class OrderCreate(BaseModel):
    """Request model for placing an order."""
    items: List[OrderItemCreate] = Field(..., min_length=1, description="Order items")
    delivery_method: DeliveryMethodEnum
    payment_method: PaymentMethodEnum
    points_to_redeem: int = Field(0, ge=0, description="Loyalty points spent on this order")
    delivery_fee: Decimal = Field(Decimal("0"), ge=0)
    delivery_address: Optional[str] = None
    contact_number: Optional[str] = None
    payment_proof_url: Optional[str] = None


class OrderItemResponse(BaseModel):
    id: str
    product_id: str
    product_name: str
    quantity: int
    unit_price: float
    size: Optional[str]
    temperature: Optional[str]
    addons: List[dict]


class OrderStatusHistoryResponse(BaseModel):
    status: str
    actor_type: Optional[str]
    actor_id: Optional[str]
    created_at: str


class OrderResponse(BaseModel):
    """Response model for orders."""
    id: str
    user_id: str
    status: str
    delivery_method: str
    payment_method: str
    payment_status: Optional[str]
    subtotal: float
    delivery_fee: float
    total: float
    points_used: int
    points_earned: int
    delivery_address: Optional[str]
    contact_number: Optional[str]
    created_at: str
    completed_at: Optional[str]
    cancelled_at: Optional[str]
    items: List[OrderItemResponse]
    status_history: List[OrderStatusHistoryResponse]


class OrderStatusUpdate(BaseModel):
    """Request model for updating order status."""
    status: OrderStatusEnum = Field(..., description="Requested order status")


class PaymentRejection(BaseModel):
    reason: Optional[str] = Field(None, max_length=500, description="Shown to the customer")


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _serialize_order(order: Order) -> OrderResponse:
    return OrderResponse(
        id=str(order.id),
        user_id=str(order.user_id),
        status=order.status.value,
        delivery_method=order.delivery_method.value,
        payment_method=order.payment_method.value,
        payment_status=order.payment_status.value if order.payment_status else None,
        subtotal=float(order.subtotal),
        delivery_fee=float(order.delivery_fee),
        total=float(order.total),
        points_used=order.points_used,
        points_earned=order.points_earned,
        delivery_address=order.delivery_address,
        contact_number=order.contact_number,
        created_at=order.created_at.isoformat(),
        completed_at=_iso(order.completed_at),
        cancelled_at=_iso(order.cancelled_at),
        items=[
            OrderItemResponse(
                id=str(item.id),
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=float(item.unit_price),
                size=item.size.value if item.size else None,
                temperature=item.temperature.value if item.temperature else None,
                addons=list(item.addons or []),
            )
            for item in order.items
        ],
        status_history=[
            OrderStatusHistoryResponse(
                status=entry.status.value,
                actor_type=entry.actor_type.value if entry.actor_type else None,
                actor_id=entry.actor_id,
                created_at=entry.created_at.isoformat(),
            )
            for entry in order.status_history
        ],
    )


@router.post("/", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: OrderCreate,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    """Place an order for the session user, redeeming points in the same transaction."""
    service = CheckoutService(db)
    items = [
        LineItem(
            product_id=item.product_id,
            product_name=item.product_name,
            unit_price=item.unit_price,
            quantity=item.quantity,
            size=item.size,
            temperature=item.temperature,
            addons=[AddOnSelection(id=addon.id, name=addon.name, price=addon.price) for addon in item.addons],
        )
        for item in payload.items
    ]
    try:
        order = await service.place_order(
            actor.user_id,
            items,
            delivery_method=payload.delivery_method,
            payment_method=payload.payment_method,
            points_to_redeem=payload.points_to_redeem,
            delivery_fee=payload.delivery_fee,
            delivery_address=payload.delivery_address,
            contact_number=payload.contact_number,
            payment_proof_url=payload.payment_proof_url,
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return _serialize_order(order)


@router.get("/", response_model=List[OrderResponse])
async def list_orders(
    status_filter: Optional[OrderStatusEnum] = Query(None, alias="status"),
    include_all: bool = Query(False, alias="all", description="Administrators only: every user's orders"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> List[OrderResponse]:
    orders = await OrderQueryService(db).list_for_actor(
        actor,
        status=status_filter,
        include_all=include_all,
        limit=limit,
        offset=offset,
    )
    return [_serialize_order(order) for order in orders]


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: UUID,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    try:
        order = await OrderQueryService(db).get_for_actor(order_id, actor)
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return _serialize_order(order)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: UUID,
    payload: OrderStatusUpdate,
    actor: Actor = Depends(require_actor),
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    """Move an order along its lifecycle; repeated terminal requests succeed idempotently."""
    state_machine = OrderStateMachine(db)
    try:
        order = await state_machine.transition(order_id, payload.status, actor)
    except AlreadyProcessed as exc:
        order = exc.result if isinstance(exc.result, Order) else await state_machine.get_order(order_id)
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return _serialize_order(order)


@router.post("/{order_id}/payment/verify", response_model=OrderResponse)
async def verify_payment(
    order_id: UUID,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    try:
        order = await PaymentVerificationService(db).verify(order_id, actor)
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return _serialize_order(order)


@router.post("/{order_id}/payment/reject", response_model=OrderResponse)
async def reject_payment(
    order_id: UUID,
    payload: PaymentRejection | None = None,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> OrderResponse:
    try:
        order = await PaymentVerificationService(db).reject(
            order_id,
            actor,
            reason=payload.reason if payload else None,
        )
    except LedgerError as exc:
        raise ledger_http_exception(exc) from exc
    return _serialize_order(order)
