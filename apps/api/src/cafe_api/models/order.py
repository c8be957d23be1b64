from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from cafe_api.db.base import Base


class OrderStatusEnum(str, Enum):
    RECEIVED = "received"
    PREPARING = "preparing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    READY_FOR_PICKUP = "ready_for_pickup"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatusEnum.COMPLETED, OrderStatusEnum.CANCELLED})


class DeliveryMethodEnum(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


class PaymentMethodEnum(str, Enum):
    CASH_ON_DELIVERY = "cash_on_delivery"
    IN_STORE = "in_store"
    E_WALLET = "e_wallet"


class PaymentStatusEnum(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class SizeEnum(str, Enum):
    SIXTEEN_OZ = "sixteen_oz"
    TWENTY_TWO_OZ = "twenty_two_oz"


class TemperatureEnum(str, Enum):
    HOT = "hot"
    ICED = "iced"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("points_used >= 0", name="ck_orders_points_used_non_negative"),
        CheckConstraint("points_earned >= 0", name="ck_orders_points_earned_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(
        SqlEnum(OrderStatusEnum, name="order_status_enum"),
        nullable=False,
        default=OrderStatusEnum.RECEIVED,
        server_default=OrderStatusEnum.RECEIVED.name,
    )
    delivery_method = Column(SqlEnum(DeliveryMethodEnum, name="delivery_method_enum"), nullable=False)
    payment_method = Column(SqlEnum(PaymentMethodEnum, name="payment_method_enum"), nullable=False)
    payment_status = Column(SqlEnum(PaymentStatusEnum, name="payment_status_enum"), nullable=True)
    subtotal = Column(Numeric(12, 2), nullable=False, server_default="0")
    delivery_fee = Column(Numeric(12, 2), nullable=False, server_default="0")
    total = Column(Numeric(12, 2), nullable=False, server_default="0")
    points_used = Column(Integer, nullable=False, default=0, server_default="0")
    points_earned = Column(Integer, nullable=False, default=0, server_default="0")
    delivery_address = Column(Text, nullable=True)
    contact_number = Column(String(32), nullable=True)
    payment_proof_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.created_at",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(String, nullable=False)
    product_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, server_default="1")
    unit_price = Column(Numeric(12, 2), nullable=False)
    size = Column(SqlEnum(SizeEnum, name="size_enum"), nullable=True)
    temperature = Column(SqlEnum(TemperatureEnum, name="temperature_enum"), nullable=True)
    # [{"id": ..., "name": ..., "price": "10.00"}] priced at checkout time
    addons = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="items")
