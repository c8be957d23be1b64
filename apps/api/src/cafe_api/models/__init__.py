"""SQLAlchemy models package."""

from .user import ADMIN_ROLES, User, UserRoleEnum  # noqa: F401
from .order import (  # noqa: F401
    TERMINAL_ORDER_STATUSES,
    DeliveryMethodEnum,
    Order,
    OrderItem,
    OrderStatusEnum,
    PaymentMethodEnum,
    PaymentStatusEnum,
    SizeEnum,
    TemperatureEnum,
)
from .order_status_history import OrderActorTypeEnum, OrderStatusHistory  # noqa: F401
from .loyalty import LoyaltyPoints, PointsActionEnum, PointsHistory  # noqa: F401
from .notification import Notification, NotificationTypeEnum  # noqa: F401
