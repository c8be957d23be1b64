"""Append-only order status audit log."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from cafe_api.db.base import Base
from .order import OrderStatusEnum


class OrderActorTypeEnum(str, Enum):
    """Identity of the actor behind a status change."""

    CUSTOMER = "customer"
    ADMIN = "admin"
    SYSTEM = "system"


class OrderStatusHistory(Base):
    """One row per status an order passed through; never updated or deleted."""

    __tablename__ = "order_status_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(SqlEnum(OrderStatusEnum, name="order_status_enum", create_type=False), nullable=False)
    actor_type = Column(SqlEnum(OrderActorTypeEnum, name="order_actor_type_enum"), nullable=True)
    actor_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="status_history")
