"""Notification service package."""

from .dispatcher import NotificationDispatcher
from .inbox import BatchAction, NotificationInbox
from .realtime import (
    ConnectionRegistry,
    InMemoryRealtimeChannel,
    RealtimeChannel,
    get_connection_registry,
)
from .templates import RenderedTemplate

__all__ = [
    "BatchAction",
    "ConnectionRegistry",
    "InMemoryRealtimeChannel",
    "NotificationDispatcher",
    "NotificationInbox",
    "RealtimeChannel",
    "RenderedTemplate",
    "get_connection_registry",
]
