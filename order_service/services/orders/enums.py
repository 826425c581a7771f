"""Order status, payment terms and item change enums.

Declaration order of ``OrderStatus`` is the lifecycle order and is used as
the sort key when listing orders by status.
"""

from enum import Enum


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Rental-style lifecycle: an order is drafted, confirmed, delivered, used
    at the event, picked up and returned. CANCELLED may be reached from any
    non-terminal state.
    """

    DRAFT = "draft"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    READY_FOR_DELIVERY = "ready_for_delivery"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    IN_USE = "in_use"
    PENDING_PICKUP = "pending_pickup"
    PICKUP_IN_PROGRESS = "pickup_in_progress"
    RETURNED = "returned"
    COMPLETE = "complete"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Args:
            value: String representation of status

        Returns:
            OrderStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    @property
    def ordinal(self) -> int:
        """Position of the status in the lifecycle."""
        return list(OrderStatus).index(self)

    def is_terminal(self) -> bool:
        """Check if status is a terminal state."""
        return self in {OrderStatus.COMPLETE, OrderStatus.CANCELLED}

    @property
    def display_name(self) -> str:
        """Get human-readable display name for status."""
        return self.value.replace("_", " ").title()


class PaymentTerms(str, Enum):
    """When the balance of an order falls due."""

    DUE_ON_RECEIPT = "due_on_receipt"
    NET_15 = "net_15"
    NET_30 = "net_30"
    NET_60 = "net_60"

    @property
    def days(self) -> int:
        """Number of days after invoicing the balance is due."""
        if self is PaymentTerms.DUE_ON_RECEIPT:
            return 0
        return int(self.value.split("_")[1])

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class OrderItemChangeType(str, Enum):
    """Kind of change requested against an order's item set."""

    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
