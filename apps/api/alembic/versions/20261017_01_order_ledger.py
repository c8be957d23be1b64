"""Users, orders, points ledger and notifications.

Revision ID: 20261017_01
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261017_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)

order_status_enum = sa.Enum(
    "RECEIVED",
    "PREPARING",
    "OUT_FOR_DELIVERY",
    "READY_FOR_PICKUP",
    "COMPLETED",
    "CANCELLED",
    name="order_status_enum",
)
# Second reference to the same type; created with the orders table.
order_status_enum_ref = postgresql.ENUM(*order_status_enum.enums, name="order_status_enum", create_type=False)
delivery_method_enum = sa.Enum("DELIVERY", "PICKUP", name="delivery_method_enum")
payment_method_enum = sa.Enum("CASH_ON_DELIVERY", "IN_STORE", "E_WALLET", name="payment_method_enum")
payment_status_enum = sa.Enum("PENDING", "VERIFIED", "REJECTED", name="payment_status_enum")
size_enum = sa.Enum("SIXTEEN_OZ", "TWENTY_TWO_OZ", name="size_enum")
temperature_enum = sa.Enum("HOT", "ICED", name="temperature_enum")
order_actor_type_enum = sa.Enum("CUSTOMER", "ADMIN", "SYSTEM", name="order_actor_type_enum")
points_action_enum = sa.Enum("EARNED", "REDEEMED", "REFUNDED", "EXPIRED", name="points_action_enum")
notification_type_enum = sa.Enum(
    "ORDER_STATUS",
    "NEW_ORDER",
    "PAYMENT_VERIFICATION",
    "LOYALTY_POINTS",
    "POINTS_EXPIRING",
    "SYSTEM",
    name="notification_type_enum",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="customer"),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "orders",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", order_status_enum, nullable=False, server_default="RECEIVED"),
        sa.Column("delivery_method", delivery_method_enum, nullable=False),
        sa.Column("payment_method", payment_method_enum, nullable=False),
        sa.Column("payment_status", payment_status_enum, nullable=True),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("delivery_fee", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("points_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delivery_address", sa.Text(), nullable=True),
        sa.Column("contact_number", sa.String(length=32), nullable=True),
        sa.Column("payment_proof_url", sa.String(), nullable=True),
        *_timestamps(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("points_used >= 0", name="ck_orders_points_used_non_negative"),
        sa.CheckConstraint("points_earned >= 0", name="ck_orders_points_earned_non_negative"),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])

    op.create_table(
        "order_items",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("order_id", UUID, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.String(), nullable=False),
        sa.Column("product_name", sa.String(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("size", size_enum, nullable=True),
        sa.Column("temperature", temperature_enum, nullable=True),
        sa.Column("addons", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "order_status_history",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("order_id", UUID, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", order_status_enum_ref, nullable=False),
        sa.Column("actor_type", order_actor_type_enum, nullable=True),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_order_status_history_order_id", "order_status_history", ["order_id"])

    op.create_table(
        "loyalty_points",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("points >= 0", name="ck_loyalty_points_non_negative"),
    )

    op.create_table(
        "points_history",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("action", points_action_enum, nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("order_id", UUID, sa.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True),
        sa.Column("source_entry_id", UUID, sa.ForeignKey("points_history.id", ondelete="SET NULL"), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("points > 0", name="ck_points_history_positive"),
    )
    op.create_index("ix_points_history_user_id", "points_history", ["user_id"])
    op.create_index(
        "uq_points_history_earned_order",
        "points_history",
        ["order_id"],
        unique=True,
        sqlite_where=sa.text("action = 'EARNED'"),
        postgresql_where=sa.text("action = 'EARNED'"),
    )
    op.create_index(
        "uq_points_history_expired_source",
        "points_history",
        ["source_entry_id"],
        unique=True,
        sqlite_where=sa.text("action = 'EXPIRED'"),
        postgresql_where=sa.text("action = 'EXPIRED'"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", notification_type_enum, nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("link", sa.String(), nullable=True),
        sa.Column("dedupe_key", sa.String(length=128), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("uq_points_history_expired_source", table_name="points_history")
    op.drop_index("uq_points_history_earned_order", table_name="points_history")
    op.drop_index("ix_points_history_user_id", table_name="points_history")
    op.drop_table("points_history")
    op.drop_table("loyalty_points")
    op.drop_index("ix_order_status_history_order_id", table_name="order_status_history")
    op.drop_table("order_status_history")
    op.drop_table("order_items")
    op.drop_index("ix_orders_user_id", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (
        notification_type_enum,
        points_action_enum,
        order_actor_type_enum,
        temperature_enum,
        size_enum,
        payment_status_enum,
        payment_method_enum,
        delivery_method_enum,
        order_status_enum,
    ):
        enum.drop(bind, checkfirst=True)
