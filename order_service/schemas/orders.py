"""
Order Pydantic schemas: immutable snapshots and write requests.

Snapshots are frozen models exchanged between the database layer, the audit
engine, item reconciliation and the cache. Request models describe the writes
accepted by the order service.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from order_service.services.orders.enums import (
    OrderItemChangeType,
    OrderStatus,
    PaymentTerms,
)


class Interval(BaseModel):
    """A delivery or pickup window; ordering of start and end is not enforced."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime


class EventTypeSnapshot(BaseModel):
    """Event type (wedding, birthday, ...) an order is booked for."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    name: str


class OrderSnapshot(BaseModel):
    """Immutable view of an order row."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    created: datetime
    updated: datetime
    event_date: datetime
    event_type_id: UUID
    billed_to_customer_id: UUID
    billed_to_address_id: UUID
    shipped_to_address_id: UUID
    amount: Decimal
    balance_due: Decimal = Decimal("0.00")
    tax_rate: Decimal
    tax_value: Decimal = Decimal("0.00")
    deposit: Decimal = Decimal("0.00")
    discount: Decimal = Decimal("0.00")
    shipping_cost: Decimal = Decimal("0.00")
    item_total_value: Decimal = Decimal("0.00")
    current_status: OrderStatus = OrderStatus.DRAFT
    payment_terms: PaymentTerms
    delivery_window: tuple[Interval, ...] = ()
    pickup_window: tuple[Interval, ...] = ()
    delivery_pickup_notes: Optional[str] = None


class OrderItemSnapshot(BaseModel):
    """Immutable view of an order line item."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID
    order_id: UUID
    item_id: UUID
    qty: int
    item_name: Optional[str] = None
    item_category: Optional[str] = None
    price: Optional[Decimal] = None


class OrderHistoryRecord(BaseModel):
    """One audited change of one order attribute."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    order_id: UUID
    property_name: str
    changed_from: str
    changed_to: str
    changed_at: datetime
    changed_by_user_id: UUID


class OrderItemHistoryRecord(BaseModel):
    """One audited quantity change of an order line item."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: UUID = Field(default_factory=uuid4)
    order_id: UUID
    item_id: UUID
    item_name: Optional[str] = None
    item_category: Optional[str] = None
    old_quantity: int
    new_quantity: int
    change_type: OrderItemChangeType
    changed_at: datetime
    changed_by_user_id: UUID
    changed_by_user_name: Optional[str] = None


class OrderListResponse(BaseModel):
    """One page of orders with the total number of stored orders."""

    model_config = ConfigDict(frozen=True)

    orders: list[OrderSnapshot]
    page_size: int
    offset: int
    total_count: int


# ============================================================================
# Requests
# ============================================================================


class OrderItemCreate(BaseModel):
    """Line item supplied when an order is created."""

    model_config = ConfigDict(validate_assignment=True)

    item_id: UUID = Field(..., description="Catalog item identifier")
    qty: int = Field(..., description="Quantity ordered")
    item_name: Optional[str] = Field(None, max_length=255)
    item_category: Optional[str] = Field(None, max_length=255)
    price: Optional[Decimal] = Field(None, decimal_places=2)


class OrderFields(BaseModel):
    """Mutable order attributes shared by create and update requests."""

    model_config = ConfigDict(validate_assignment=True)

    event_date: datetime
    event_type_id: UUID
    billed_to_customer_id: UUID
    billed_to_address_id: UUID
    shipped_to_address_id: UUID
    amount: Decimal = Field(..., decimal_places=2)
    balance_due: Decimal = Field(default=Decimal("0.00"), decimal_places=2)
    tax_rate: Decimal = Field(..., ge=0, decimal_places=4)
    tax_value: Decimal = Field(default=Decimal("0.00"), decimal_places=2)
    deposit: Decimal = Field(default=Decimal("0.00"), decimal_places=2)
    discount: Decimal = Field(default=Decimal("0.00"), decimal_places=2)
    shipping_cost: Decimal = Field(default=Decimal("0.00"), decimal_places=2)
    item_total_value: Decimal = Field(default=Decimal("0.00"), decimal_places=2)
    current_status: OrderStatus = OrderStatus.DRAFT
    payment_terms: PaymentTerms
    delivery_window: list[Interval] = Field(default_factory=list)
    pickup_window: list[Interval] = Field(default_factory=list)
    delivery_pickup_notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("current_status", mode="before")
    @classmethod
    def parse_status(cls, v):
        """Accept status names in any case."""
        if isinstance(v, str):
            return OrderStatus.from_string(v)
        return v


class OrderCreate(OrderFields):
    """Create an order together with its initial line items."""

    items: list[OrderItemCreate] = Field(default_factory=list)


class OrderUpdate(OrderFields):
    """Full replacement of an existing order's mutable attributes."""

    id: UUID


class OrderItemChangeRequest(BaseModel):
    """
    One entry of an item change batch.

    ``change_type`` is kept as given when it is not a known kind so the
    reconciliation can report it as a per-entry failure instead of rejecting
    the whole batch.
    """

    model_config = ConfigDict(validate_assignment=True)

    item_id: UUID
    qty: int = 0
    change_type: Union[OrderItemChangeType, str]
    item_name: Optional[str] = None
    item_category: Optional[str] = None
    price: Optional[Decimal] = None


class EventTypeCreate(BaseModel):
    """New event type."""

    name: str = Field(..., min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Event type name cannot be blank")
        return v
