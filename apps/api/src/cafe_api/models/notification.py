from enum import Enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Enum as SqlEnum, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from cafe_api.db.base import Base


class NotificationTypeEnum(str, Enum):
    ORDER_STATUS = "order_status"
    NEW_ORDER = "new_order"
    PAYMENT_VERIFICATION = "payment_verification"
    LOYALTY_POINTS = "loyalty_points"
    POINTS_EXPIRING = "points_expiring"
    SYSTEM = "system"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(SqlEnum(NotificationTypeEnum, name="notification_type_enum"), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False, server_default="false")
    link = Column(String, nullable=True)
    # Stable key for notifications that must be raised at most once (e.g. expiry warnings).
    dedupe_key = Column(String(128), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def as_payload(self) -> dict[str, object]:
        return {
            "id": str(self.id),
            "userId": str(self.user_id),
            "type": self.type.value if self.type else None,
            "title": self.title,
            "message": self.message,
            "read": bool(self.read),
            "link": self.link,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
