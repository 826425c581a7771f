"""
Order item reconciliation.

Applies a batch of add / update / delete requests to an order's current
item set. Entries are processed in order against a working copy of the
lines, so a later entry sees the effect of an earlier one (an item added at
position 0 can be updated at position 1). A failing entry is reported and
skipped; the rest of the batch still applies.
"""

from datetime import datetime
from typing import Optional, Sequence
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict

from order_service.core.logging import get_logger
from order_service.schemas.orders import (
    OrderItemChangeRequest,
    OrderItemHistoryRecord,
    OrderItemSnapshot,
)
from order_service.services.orders.audit import coerce_change_type, diff_item_change
from order_service.services.orders.enums import OrderItemChangeType
from order_service.services.orders.errors import ErrorKind, OrderServiceError

logger = get_logger(__name__)


class ItemChangeFailure(BaseModel):
    """A batch entry that could not be applied."""

    model_config = ConfigDict(frozen=True)

    index: int
    item_id: UUID
    change_type: str
    kind: ErrorKind
    message: str


class ItemReconciliation(BaseModel):
    """
    Outcome of reconciling one item change batch.

    ``added``, ``updated`` and ``deleted`` are the net row mutations to
    persist; ``items`` is the resulting item set; ``history`` holds exactly
    one record per applied entry in batch order.
    """

    model_config = ConfigDict(frozen=True)

    order_id: UUID
    added: list[OrderItemSnapshot]
    updated: list[OrderItemSnapshot]
    deleted: list[OrderItemSnapshot]
    items: list[OrderItemSnapshot]
    history: list[OrderItemHistoryRecord]
    failures: list[ItemChangeFailure]

    @property
    def has_changes(self) -> bool:
        """Whether any entry was applied."""
        return bool(self.history)

    @property
    def applied_count(self) -> int:
        return len(self.history)


def reconcile_items(
    order_id: UUID,
    existing_items: Sequence[OrderItemSnapshot],
    changes: Sequence[OrderItemChangeRequest],
    user_id: UUID,
    now: datetime,
    user_name: Optional[str] = None,
) -> ItemReconciliation:
    """
    Reconcile an item change batch against the current item set.

    Args:
        order_id: Order owning the items
        existing_items: Current persisted items of the order
        changes: Requested changes, applied in order
        user_id: Acting user
        now: Timestamp stamped on every history record
        user_name: Acting user's display name

    Returns:
        Row mutations, audit records and per-entry failures
    """
    # Working set: line id -> line; an item id resolves to its newest line
    lines: dict[UUID, OrderItemSnapshot] = {item.id: item for item in existing_items}
    persisted_ids = set(lines)

    def current_line(item_id: UUID) -> Optional[OrderItemSnapshot]:
        for line in reversed(lines.values()):
            if line.item_id == item_id:
                return line
        return None

    # Net mutations keyed by line id, insertion ordered
    added: dict[UUID, OrderItemSnapshot] = {}
    updated: dict[UUID, OrderItemSnapshot] = {}
    deleted: dict[UUID, OrderItemSnapshot] = {}
    history: list[OrderItemHistoryRecord] = []
    failures: list[ItemChangeFailure] = []

    for index, change in enumerate(changes):
        existing = current_line(change.item_id)

        try:
            change_type = coerce_change_type(change.change_type)
            record = diff_item_change(
                change_type,
                order_id,
                existing,
                change.qty,
                change.item_name,
                change.item_category,
                user_id,
                now,
                user_name=user_name,
                item_id=change.item_id,
            )
        except OrderServiceError as e:
            failures.append(
                ItemChangeFailure(
                    index=index,
                    item_id=change.item_id,
                    change_type=str(getattr(change.change_type, "value", change.change_type)),
                    kind=e.kind,
                    message=e.message,
                )
            )
            logger.warning(
                "Item change rejected",
                order_id=str(order_id),
                item_id=str(change.item_id),
                index=index,
                error_kind=e.kind.value,
                error=e.message,
            )
            continue

        history.append(record)

        if change_type is OrderItemChangeType.ADD:
            line = OrderItemSnapshot(
                id=uuid4(),
                order_id=order_id,
                item_id=change.item_id,
                qty=change.qty,
                item_name=change.item_name,
                item_category=change.item_category,
                price=change.price,
            )
            lines[line.id] = line
            added[line.id] = line

        elif change_type is OrderItemChangeType.UPDATE:
            line = existing.model_copy(update={"qty": change.qty})
            lines[line.id] = line
            if line.id in added:
                added[line.id] = line
            else:
                updated[line.id] = line

        else:
            del lines[existing.id]
            if existing.id in added:
                del added[existing.id]
            else:
                updated.pop(existing.id, None)
                if existing.id in persisted_ids:
                    deleted[existing.id] = existing

    result = ItemReconciliation(
        order_id=order_id,
        added=list(added.values()),
        updated=list(updated.values()),
        deleted=list(deleted.values()),
        items=list(lines.values()),
        history=history,
        failures=failures,
    )

    logger.debug(
        "Item batch reconciled",
        order_id=str(order_id),
        requested=len(changes),
        applied=result.applied_count,
        failed=len(failures),
    )

    return result
