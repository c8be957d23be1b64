"""One settlement (expiry or reversal) per earned points entry.

Revision ID: 20261018_02
Revises: 20261017_01
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261018_02"
down_revision: Union[str, None] = "20261017_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.drop_index("uq_points_history_expired_source", table_name="points_history")
    op.create_index(
        "uq_points_history_settled_source",
        "points_history",
        ["source_entry_id"],
        unique=True,
        sqlite_where=sa.text("source_entry_id IS NOT NULL"),
        postgresql_where=sa.text("source_entry_id IS NOT NULL"),
    )


def downgrade() -> None:
    op.drop_index("uq_points_history_settled_source", table_name="points_history")
    op.create_index(
        "uq_points_history_expired_source",
        "points_history",
        ["source_entry_id"],
        unique=True,
        sqlite_where=sa.text("action = 'EXPIRED'"),
        postgresql_where=sa.text("action = 'EXPIRED'"),
    )
