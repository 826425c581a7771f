"""
Order, order item and audit history models.

Orders own their items (deleted with the order). History rows carry the
order id without a foreign key: they are append-only facts and stay
readable after the order itself is deleted.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from order_service.database.base import Base, UUIDMixin
from order_service.schemas.orders import Interval
from order_service.services.orders.enums import (
    OrderItemChangeType,
    OrderStatus,
    PaymentTerms,
)


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class IntervalListType(TypeDecorator):
    """
    Interval list stored as a JSONB array of ``{"start", "end"}`` objects.

    Instants are written as ISO-8601 strings; loading yields a tuple of
    ``Interval`` so values compare by instant, not by stored text.
    """

    impl = JSONB
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> Optional[list[dict[str, str]]]:
        if value is None:
            return []
        serialized = []
        for interval in value:
            if isinstance(interval, Interval):
                start, end = interval.start, interval.end
            elif isinstance(interval, dict):
                start, end = interval["start"], interval["end"]
            else:
                start, end = interval
            serialized.append(
                {
                    "start": start if isinstance(start, str) else start.isoformat(),
                    "end": end if isinstance(end, str) else end.isoformat(),
                }
            )
        return serialized

    def process_result_value(self, value: Any, dialect) -> tuple[Interval, ...]:
        if not value:
            return ()
        return tuple(
            Interval(
                start=datetime.fromisoformat(entry["start"]),
                end=datetime.fromisoformat(entry["end"]),
            )
            for entry in value
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base, UUIDMixin):
    """
    Customer event order.

    Attributes:
        id: Unique order identifier, immutable after creation
        created: Creation timestamp
        updated: Last modification timestamp, never moves backwards
        event_date: Date and time of the customer's event
        event_type_id: Event type the order is booked for
        billed_to_customer_id: Customer receiving the invoice
        billed_to_address_id: Billing address
        shipped_to_address_id: Delivery address
        amount .. item_total_value: Monetary fields, two fractional digits
        tax_rate: Tax rate applied to the order
        current_status: Lifecycle status
        payment_terms: When the balance falls due
        delivery_window: Ordered list of delivery intervals
        pickup_window: Ordered list of pickup intervals
        delivery_pickup_notes: Free-text logistics notes
    """

    __tablename__ = "orders"

    created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        comment="Timestamp when order was created",
    )

    updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        comment="Timestamp when order was last updated",
    )

    event_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
        comment="Date and time of the event",
    )

    event_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("event_types.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Event type identifier",
    )

    billed_to_customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
        comment="Customer billed for the order",
    )

    billed_to_address_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        comment="Billing address identifier",
    )

    shipped_to_address_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        comment="Delivery address identifier",
    )

    # Pricing fields
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        comment="Order amount",
    )

    balance_due: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Outstanding balance",
    )

    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=6, scale=4),
        nullable=False,
        comment="Tax rate",
    )

    tax_value: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Tax amount",
    )

    deposit: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Deposit paid",
    )

    discount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Applied discount",
    )

    shipping_cost: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Delivery and pickup charges",
    )

    item_total_value: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Sum of item prices",
    )

    current_status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=OrderStatus.DRAFT,
        index=True,
        comment="Current order status",
    )

    payment_terms: Mapped[PaymentTerms] = mapped_column(
        SQLEnum(
            PaymentTerms,
            name="payment_terms",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
        comment="Payment terms",
    )

    delivery_window: Mapped[tuple[Interval, ...]] = mapped_column(
        IntervalListType,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
        comment="Delivery intervals",
    )

    pickup_window: Mapped[tuple[Interval, ...]] = mapped_column(
        IntervalListType,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
        comment="Pickup intervals",
    )

    delivery_pickup_notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Delivery and pickup notes",
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_orders_event_date_id", "event_date", "id"),
        Index("ix_orders_customer_event_date", "billed_to_customer_id", "event_date"),
        CheckConstraint("amount >= 0", name="ck_orders_amount_non_negative"),
        CheckConstraint("tax_rate >= 0", name="ck_orders_tax_rate_non_negative"),
        {"comment": "Customer event orders"},
    )


class OrderItem(Base, UUIDMixin):
    """
    Line item of an order.

    Name, category and price are captured when the item is added and are
    not re-synced from the catalog.
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Parent order identifier",
    )

    item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        comment="Catalog item identifier",
    )

    qty: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Quantity ordered",
    )

    item_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    item_category: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=True,
        comment="Unit price when the item was added",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        Index("ix_order_items_order_item", "order_id", "item_id"),
        {"comment": "Individual items in an order"},
    )


class OrderHistory(Base, UUIDMixin):
    """Append-only audit row for one changed order attribute."""

    __tablename__ = "order_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
        comment="Audited order identifier",
    )

    property_name: Mapped[str] = mapped_column(String(100), nullable=False)
    changed_from: Mapped[str] = mapped_column(Text, nullable=False, default="")
    changed_to: Mapped[str] = mapped_column(Text, nullable=False, default="")

    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    changed_by_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_order_history_order_changed", "order_id", "changed_at"),
        {"comment": "Field-level order change audit trail"},
    )


class OrderItemHistory(Base, UUIDMixin):
    """Append-only audit row for one item add, update or delete."""

    __tablename__ = "order_item_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
        comment="Audited order identifier",
    )

    item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        comment="Catalog item identifier",
    )

    item_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    item_category: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    old_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    new_quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    change_type: Mapped[OrderItemChangeType] = mapped_column(
        SQLEnum(
            OrderItemChangeType,
            name="order_item_change_type",
            create_constraint=True,
            values_callable=_enum_values,
        ),
        nullable=False,
    )

    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    changed_by_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
    )

    changed_by_user_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_order_item_history_order_changed", "order_id", "changed_at"),
        CheckConstraint(
            "change_type <> 'add' OR old_quantity = 0",
            name="ck_order_item_history_add_old_zero",
        ),
        CheckConstraint(
            "change_type <> 'delete' OR new_quantity = 0",
            name="ck_order_item_history_delete_new_zero",
        ),
        {"comment": "Item-level order change audit trail"},
    )
