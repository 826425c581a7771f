"""
Field-level change audit for orders and order items.

Both entry points are pure functions over frozen snapshots: they compute the
audit records a write should append, and persisting those records in the
same transaction as the write is the caller's job.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union
from uuid import UUID

from order_service.schemas.orders import (
    OrderHistoryRecord,
    OrderItemHistoryRecord,
    OrderItemSnapshot,
    OrderSnapshot,
)
from order_service.services.orders.enums import OrderItemChangeType
from order_service.services.orders.errors import (
    InvalidArgumentError,
    ReferencedEntityMissingError,
)
from order_service.services.orders.intervals import (
    format_instant,
    intervals_equal,
    render_intervals,
    to_utc,
)

# Audited scalar attributes: canonical property name -> snapshot attribute
SCALAR_FIELDS: tuple[tuple[str, str], ...] = (
    ("EventDate", "event_date"),
    ("EventTypeId", "event_type_id"),
    ("BilledToCustomerId", "billed_to_customer_id"),
    ("BilledToAddressId", "billed_to_address_id"),
    ("ShippedToAddressId", "shipped_to_address_id"),
    ("Amount", "amount"),
    ("BalanceDue", "balance_due"),
    ("TaxRate", "tax_rate"),
    ("TaxValue", "tax_value"),
    ("Deposit", "deposit"),
    ("Discount", "discount"),
    ("ShippingCost", "shipping_cost"),
    ("ItemTotalValue", "item_total_value"),
    ("DeliveryPickupNotes", "delivery_pickup_notes"),
    ("CurrentStatus", "current_status"),
    ("PaymentTerms", "payment_terms"),
)

INTERVAL_FIELDS: tuple[tuple[str, str], ...] = (
    ("DeliveryWindow", "delivery_window"),
    ("PickupWindow", "pickup_window"),
)

AUDITED_PROPERTIES = frozenset(
    name for name, _ in SCALAR_FIELDS + INTERVAL_FIELDS
)

_TWO_PLACES = Decimal("0.01")


def render_decimal(value: Decimal) -> str:
    """
    Render a decimal with at least two fractional digits.

    ``Decimal("125.5")`` renders as ``"125.50"``; extra significant digits
    (tax rates such as ``0.0825``) are kept.
    """
    normalized = value.normalize()
    if normalized.as_tuple().exponent >= -2:
        return str(value.quantize(_TWO_PLACES))
    return format(normalized, "f")


def render_value(value: Any) -> str:
    """Human-readable rendering of an audited scalar value."""
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return render_decimal(value)
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return format_instant(value)
    if isinstance(value, UUID):
        return str(value)
    return str(value)


def _values_equal(old: Any, new: Any) -> bool:
    if isinstance(old, datetime) and isinstance(new, datetime):
        return to_utc(old) == to_utc(new)
    return old == new


def diff_order(
    old: OrderSnapshot,
    new: OrderSnapshot,
    user_id: UUID,
    now: datetime,
) -> list[OrderHistoryRecord]:
    """
    Compute one audit record per changed order attribute.

    Args:
        old: Stored order snapshot
        new: Order snapshot after the update
        user_id: Acting user
        now: Timestamp stamped on every record

    Returns:
        Audit records in a fixed attribute order; empty for a no-op update
    """
    records: list[OrderHistoryRecord] = []

    def emit(property_name: str, changed_from: str, changed_to: str) -> None:
        records.append(
            OrderHistoryRecord(
                order_id=new.id,
                property_name=property_name,
                changed_from=changed_from,
                changed_to=changed_to,
                changed_at=now,
                changed_by_user_id=user_id,
            )
        )

    for property_name, attr in SCALAR_FIELDS:
        old_value = getattr(old, attr)
        new_value = getattr(new, attr)
        if not _values_equal(old_value, new_value):
            emit(property_name, render_value(old_value), render_value(new_value))

    for property_name, attr in INTERVAL_FIELDS:
        old_value = getattr(old, attr)
        new_value = getattr(new, attr)
        if not intervals_equal(old_value, new_value):
            emit(property_name, render_intervals(old_value), render_intervals(new_value))

    return records


def coerce_change_type(kind: Union[OrderItemChangeType, str]) -> OrderItemChangeType:
    """
    Resolve a requested change kind.

    Raises:
        InvalidArgumentError: If the kind is not add, update or delete
    """
    if isinstance(kind, OrderItemChangeType):
        return kind
    try:
        return OrderItemChangeType(str(kind).lower())
    except ValueError as e:
        raise InvalidArgumentError(
            f"Unknown item change type: {kind}",
            change_type=str(kind),
        ) from e


def _quantities_for(
    kind: OrderItemChangeType,
    existing_item: Optional[OrderItemSnapshot],
    requested_qty: int,
) -> tuple[int, int]:
    if kind is OrderItemChangeType.ADD:
        return 0, requested_qty
    if kind is OrderItemChangeType.UPDATE:
        return existing_item.qty, requested_qty
    return existing_item.qty, 0


def diff_item_change(
    kind: Union[OrderItemChangeType, str],
    order_id: UUID,
    existing_item: Optional[OrderItemSnapshot],
    requested_qty: int,
    requested_name: Optional[str],
    requested_category: Optional[str],
    user_id: UUID,
    now: datetime,
    user_name: Optional[str] = None,
    item_id: Optional[UUID] = None,
) -> OrderItemHistoryRecord:
    """
    Build the audit record for one item-level change.

    Args:
        kind: add, update or delete
        order_id: Owning order
        existing_item: Current line for the catalog item, if the order has one
        requested_qty: Quantity carried by the request
        requested_name: Item name carried by the request
        requested_category: Item category carried by the request
        user_id: Acting user
        now: Timestamp stamped on the record
        user_name: Acting user's display name
        item_id: Catalog item id; required when there is no existing item

    Returns:
        The item history record. Add records have ``old_quantity == 0``
        and delete records have ``new_quantity == 0``.

    Raises:
        ReferencedEntityMissingError: Update or delete without an existing item
        InvalidArgumentError: Unknown change kind, or no item id available
    """
    change_type = coerce_change_type(kind)

    if change_type is not OrderItemChangeType.ADD and existing_item is None:
        raise ReferencedEntityMissingError(
            f"Order {order_id} has no item {item_id} to {change_type.value}",
            order_id=str(order_id),
            item_id=str(item_id) if item_id else None,
            change_type=change_type.value,
        )

    resolved_item_id = existing_item.item_id if existing_item else item_id
    if resolved_item_id is None:
        raise InvalidArgumentError(
            "Item change requires a catalog item id",
            order_id=str(order_id),
            change_type=change_type.value,
        )

    old_quantity, new_quantity = _quantities_for(change_type, existing_item, requested_qty)

    item_name = requested_name
    item_category = requested_category
    if existing_item is not None:
        item_name = existing_item.item_name or requested_name
        item_category = existing_item.item_category or requested_category

    return OrderItemHistoryRecord(
        order_id=order_id,
        item_id=resolved_item_id,
        item_name=item_name,
        item_category=item_category,
        old_quantity=old_quantity,
        new_quantity=new_quantity,
        change_type=change_type,
        changed_at=now,
        changed_by_user_id=user_id,
        changed_by_user_name=user_name,
    )
