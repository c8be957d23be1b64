"""Loyalty balance and points ledger models."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from cafe_api.db.base import Base


class PointsActionEnum(str, Enum):
    """Ledger actions recorded in the points history."""

    EARNED = "earned"
    REDEEMED = "redeemed"
    REFUNDED = "refunded"
    EXPIRED = "expired"


class LoyaltyPoints(Base):
    """Per-user points balance; only ever mutated with relative updates."""

    __tablename__ = "loyalty_points"
    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_loyalty_points_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    points = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class PointsHistory(Base):
    """Immutable points ledger entry."""

    __tablename__ = "points_history"
    __table_args__ = (
        CheckConstraint("points > 0", name="ck_points_history_positive"),
        # At most one credit per order.
        Index(
            "uq_points_history_earned_order",
            "order_id",
            unique=True,
            sqlite_where=text("action = 'EARNED'"),
            postgresql_where=text("action = 'EARNED'"),
        ),
        # A credited entry is settled once: either it expires or it is reversed.
        Index(
            "uq_points_history_settled_source",
            "source_entry_id",
            unique=True,
            sqlite_where=text("source_entry_id IS NOT NULL"),
            postgresql_where=text("source_entry_id IS NOT NULL"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(SqlEnum(PointsActionEnum, name="points_action_enum"), nullable=False)
    points = Column(Integer, nullable=False)
    order_id = Column(UUID(as_uuid=True), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    source_entry_id = Column(
        UUID(as_uuid=True),
        ForeignKey("points_history.id", ondelete="SET NULL"),
        nullable=True,
    )
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    source_entry = relationship("PointsHistory", remote_side=[id])
