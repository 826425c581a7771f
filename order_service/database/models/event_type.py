"""Event type reference table."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from order_service.database.base import Base, UUIDMixin

# Seeded into an empty table
DEFAULT_EVENT_TYPES = (
    "Birthday",
    "Graduation",
    "Retirement",
    "Wedding",
    "Award Ceremony",
    "Corporate Event",
)


class EventType(Base, UUIDMixin):
    """Kind of event an order is booked for."""

    __tablename__ = "event_types"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="Display name of the event type",
    )

    __table_args__ = {"comment": "Event types referenced by orders"}
