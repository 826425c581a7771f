"""ORM models; importing this package registers every table on ``Base.metadata``."""

from order_service.database.models.event_type import DEFAULT_EVENT_TYPES, EventType
from order_service.database.models.order import (
    IntervalListType,
    Order,
    OrderHistory,
    OrderItem,
    OrderItemHistory,
)

__all__ = [
    "DEFAULT_EVENT_TYPES",
    "EventType",
    "IntervalListType",
    "Order",
    "OrderHistory",
    "OrderItem",
    "OrderItemHistory",
]
