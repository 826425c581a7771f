"""
Order service orchestrating persistence, auditing and caching.

Writes load the current state, compute audit records, flush the new state
and its audit trail in one transaction, commit, and only then invalidate the
cached views the write touched. A failed or cancelled commit never reaches
the invalidation step. Reads are cache-aside: cache first, database on miss,
then populate the cache with a TTL.
"""

import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional, Sequence, Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from order_service.core.config import get_settings
from order_service.core.logging import get_logger, log_performance
from order_service.schemas.orders import (
    EventTypeCreate,
    EventTypeSnapshot,
    OrderCreate,
    OrderHistoryRecord,
    OrderItemChangeRequest,
    OrderItemHistoryRecord,
    OrderItemSnapshot,
    OrderListResponse,
    OrderSnapshot,
    OrderUpdate,
)
from order_service.services.cache.order_cache import OrderCache, get_order_cache
from order_service.services.orders.audit import diff_item_change, diff_order
from order_service.services.orders.enums import OrderItemChangeType
from order_service.services.orders.errors import (
    InvalidArgumentError,
    InvalidRangeError,
    NotFoundError,
    PersistenceFailureError,
)
from order_service.services.orders.intervals import to_utc, utc_day
from order_service.services.orders.reconciliation import (
    ItemReconciliation,
    reconcile_items,
)
from order_service.services.orders.repository import (
    EventTypeRepository,
    OrderRepository,
    OrderRepositoryError,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]
DayOrInstant = Union[date, datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderService:
    """
    Order operations exposed to the routing layer.

    Attributes:
        session: Async database session; the service commits it
        repository: Order repository for data access
        event_types: Event type repository
        cache: Cache-aside store for read views
    """

    def __init__(
        self,
        session: AsyncSession,
        cache: Optional[OrderCache] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize order service.

        Args:
            session: Async database session
            cache: Order cache (uses global if None)
            clock: Source of the current UTC time
        """
        self.session = session
        self.repository = OrderRepository(session)
        self.event_types = EventTypeRepository(session)
        self.cache = cache or get_order_cache()
        self._clock = clock or _utcnow
        self._settings = get_settings()

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _persistence(self, operation: str, **context: Any) -> AsyncIterator[None]:
        """Surface repository failures as PersistenceFailureError."""
        try:
            yield
        except OrderRepositoryError as e:
            logger.error(
                "Persistence failure",
                operation=operation,
                error=str(e),
                repository_context=e.context,
                **context,
            )
            raise PersistenceFailureError(
                f"{operation} failed",
                operation=operation,
                **context,
            ) from e

    async def _commit(self, operation: str, **context: Any) -> None:
        """
        Commit the session.

        Raises:
            PersistenceFailureError: If the commit fails; the session is
                rolled back and nothing is invalidated
        """
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Commit failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                **context,
            )
            raise PersistenceFailureError(
                f"{operation} failed",
                operation=operation,
                **context,
            ) from e

    async def _require_order(self, order_id: uuid.UUID) -> None:
        async with self._persistence("load_order", order_id=str(order_id)):
            exists = await self.repository.order_exists(order_id)
        if not exists:
            raise NotFoundError(f"Order {order_id} not found", order_id=str(order_id))

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def create_order(self, request: OrderCreate, user_id: uuid.UUID) -> OrderSnapshot:
        """
        Create an order with its initial items.

        Each initial item is recorded in the item history as an add.

        Args:
            request: Order attributes and initial items
            user_id: Acting user

        Returns:
            The created order

        Raises:
            PersistenceFailureError: If the order cannot be stored
        """
        now = self._clock()
        order_id = uuid.uuid4()
        order = OrderSnapshot.model_validate(
            {
                **request.model_dump(exclude={"items"}),
                "id": order_id,
                "created": now,
                "updated": now,
            }
        )
        items = [
            OrderItemSnapshot(id=uuid.uuid4(), order_id=order_id, **item.model_dump())
            for item in request.items
        ]
        history = [
            diff_item_change(
                OrderItemChangeType.ADD,
                order_id,
                None,
                item.qty,
                item.item_name,
                item.item_category,
                user_id,
                now,
                item_id=item.item_id,
            )
            for item in items
        ]

        with log_performance(logger, "create_order", order_id=str(order_id)):
            async with self._persistence("create_order", order_id=str(order_id)):
                order = await self.repository.create_order(order, items)
                await self.repository.append_item_history(history)
            await self._commit("create_order", order_id=str(order_id))

        await self.cache.invalidate_order_lists()
        return order

    async def get_order(self, order_id: uuid.UUID) -> OrderSnapshot:
        """
        Get one order.

        Raises:
            NotFoundError: If the order does not exist
        """
        cached = await self.cache.get_order(order_id)
        if cached is not None:
            return cached

        async with self._persistence("get_order", order_id=str(order_id)):
            order = await self.repository.get_order(order_id)

        if order is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=str(order_id))

        await self.cache.set_order(order)
        return order

    async def update_order(self, request: OrderUpdate, user_id: uuid.UUID) -> OrderSnapshot:
        """
        Replace an order's mutable attributes and audit every changed one.

        The stored row, not the cached view, is the "before" snapshot.

        Args:
            request: New attribute values for the order named by ``request.id``
            user_id: Acting user

        Returns:
            The updated order

        Raises:
            NotFoundError: If the order does not exist
            PersistenceFailureError: If the update cannot be stored
        """
        order_id = request.id

        async with self._persistence("update_order", order_id=str(order_id)):
            old = await self.repository.get_order(order_id)
        if old is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=str(order_id))

        now = self._clock()
        new = OrderSnapshot.model_validate(
            {
                **old.model_dump(),
                **request.model_dump(exclude={"id"}),
                "updated": max(to_utc(old.updated), to_utc(now)),
            }
        )
        history = diff_order(old, new, user_id, now)

        with log_performance(
            logger, "update_order", order_id=str(order_id), changes=len(history)
        ):
            async with self._persistence("update_order", order_id=str(order_id)):
                new = await self.repository.update_order(new, history)
            await self._commit("update_order", order_id=str(order_id))

        await self.cache.invalidate_keys(
            [
                self.cache.keys.order_family_prefix(order_id),
                self.cache.keys.list_family_prefix(),
            ]
        )
        return new

    async def delete_order(self, order_id: uuid.UUID) -> None:
        """
        Delete an order and its items. Audit history is kept.

        Raises:
            NotFoundError: If the order does not exist
            PersistenceFailureError: If the delete fails
        """
        async with self._persistence("delete_order", order_id=str(order_id)):
            deleted = await self.repository.delete_order(order_id)
        if not deleted:
            raise NotFoundError(f"Order {order_id} not found", order_id=str(order_id))

        await self._commit("delete_order", order_id=str(order_id))

        await self.cache.invalidate_keys(
            [
                self.cache.keys.order_family_prefix(order_id),
                self.cache.keys.list_family_prefix(),
            ]
        )

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def list_orders(
        self,
        page_size: Optional[int] = None,
        offset: int = 0,
    ) -> OrderListResponse:
        """
        One page of orders ordered by event date, then id.

        Args:
            page_size: Orders per page (settings.default_page_size if None)
            offset: Number of orders to skip

        Raises:
            InvalidArgumentError: If page_size < 1 or offset < 0
        """
        page_size = page_size if page_size is not None else self._settings.default_page_size
        if page_size < 1 or offset < 0:
            raise InvalidArgumentError(
                "page_size must be positive and offset non-negative",
                page_size=page_size,
                offset=offset,
            )

        cached = await self.cache.get_order_page(page_size, offset)
        if cached is not None:
            return cached

        async with self._persistence("list_orders", page_size=page_size, offset=offset):
            orders = await self.repository.list_orders(page_size, offset)
            total = await self.repository.count_orders()

        page = OrderListResponse(
            orders=orders,
            page_size=page_size,
            offset=offset,
            total_count=total,
        )
        await self.cache.set_order_page(page)
        return page

    async def list_orders_by_customer(self, customer_id: uuid.UUID) -> list[OrderSnapshot]:
        """Orders billed to one customer, latest event first; empty if none."""
        key = self.cache.keys.orders_by_customer_key(customer_id)
        cached = await self.cache.get_order_list(key)
        if cached is not None:
            return cached

        async with self._persistence("list_orders_by_customer", customer_id=str(customer_id)):
            orders = await self.repository.list_orders_by_customer(customer_id)

        await self.cache.set_order_list(key, orders)
        return orders

    async def list_orders_by_date(self, day: DayOrInstant) -> list[OrderSnapshot]:
        """Orders whose event falls on ``day`` (UTC calendar day)."""
        day = utc_day(day)

        key = self.cache.keys.orders_by_date_key(day)
        cached = await self.cache.get_order_list(key)
        if cached is not None:
            return cached

        async with self._persistence("list_orders_by_date", day=day.isoformat()):
            orders = await self.repository.list_orders_by_date(day)

        await self.cache.set_order_list(key, orders)
        return orders

    async def list_orders_by_date_range(
        self,
        start: DayOrInstant,
        end: DayOrInstant,
    ) -> list[OrderSnapshot]:
        """
        Orders whose event day lies strictly between the UTC days of ``start``
        and ``end``, ordered by status then id.

        Raises:
            InvalidRangeError: If ``end`` falls on an earlier day than ``start``;
                storage is not touched
        """
        start = utc_day(start)
        end = utc_day(end)
        if end < start:
            raise InvalidRangeError(
                "End date cannot be earlier than start date",
                start=start.isoformat(),
                end=end.isoformat(),
            )

        key = self.cache.keys.orders_by_date_range_key(start, end)
        cached = await self.cache.get_order_list(key)
        if cached is not None:
            return cached

        async with self._persistence(
            "list_orders_by_date_range", start=start.isoformat(), end=end.isoformat()
        ):
            orders = await self.repository.list_orders_by_date_range(start, end)

        await self.cache.set_order_list(key, orders)
        return orders

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def get_order_items(self, order_id: uuid.UUID) -> list[OrderItemSnapshot]:
        """
        Items of one order.

        Raises:
            NotFoundError: If the order does not exist
        """
        cached = await self.cache.get_order_items(order_id)
        if cached is not None:
            return cached

        await self._require_order(order_id)
        async with self._persistence("get_order_items", order_id=str(order_id)):
            items = await self.repository.get_items(order_id)

        await self.cache.set_order_items(order_id, items)
        return items

    async def update_order_items(
        self,
        order_id: uuid.UUID,
        changes: Sequence[OrderItemChangeRequest],
        user_id: uuid.UUID,
        user_name: Optional[str] = None,
    ) -> ItemReconciliation:
        """
        Apply a batch of item changes.

        Entries that fail (unknown item for update/delete, unknown change
        kind) are reported in ``failures``; the other entries are committed
        together with their history. A batch with no applicable entry
        writes nothing.

        Args:
            order_id: Order whose items change
            changes: Batch entries, applied in order
            user_id: Acting user
            user_name: Acting user's display name

        Returns:
            Reconciliation outcome including per-entry failures

        Raises:
            NotFoundError: If the order does not exist
            PersistenceFailureError: If the batch cannot be stored
        """
        await self._require_order(order_id)

        async with self._persistence("update_order_items", order_id=str(order_id)):
            existing = await self.repository.get_items(order_id)

        result = reconcile_items(
            order_id,
            existing,
            changes,
            user_id,
            self._clock(),
            user_name=user_name,
        )

        if not result.has_changes:
            logger.info(
                "Item batch had no applicable entries",
                order_id=str(order_id),
                failures=len(result.failures),
            )
            return result

        with log_performance(
            logger, "update_order_items", order_id=str(order_id), applied=result.applied_count
        ):
            async with self._persistence("update_order_items", order_id=str(order_id)):
                await self.repository.apply_item_reconciliation(result)
            await self._commit("update_order_items", order_id=str(order_id))

        await self.cache.invalidate_order(order_id)
        return result

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def get_order_history(self, order_id: uuid.UUID) -> list[OrderHistoryRecord]:
        """Field-level audit trail of an order; still readable after deletion."""
        cached = await self.cache.get_order_history(order_id)
        if cached is not None:
            return cached

        async with self._persistence("get_order_history", order_id=str(order_id)):
            records = await self.repository.get_order_history(order_id)

        await self.cache.set_order_history(order_id, records)
        return records

    async def get_order_item_history(self, order_id: uuid.UUID) -> list[OrderItemHistoryRecord]:
        """Item-level audit trail of an order; still readable after deletion."""
        cached = await self.cache.get_order_item_history(order_id)
        if cached is not None:
            return cached

        async with self._persistence("get_order_item_history", order_id=str(order_id)):
            records = await self.repository.get_item_history(order_id)

        await self.cache.set_order_item_history(order_id, records)
        return records

    # ------------------------------------------------------------------
    # Event types
    # ------------------------------------------------------------------

    async def list_event_types(self) -> list[EventTypeSnapshot]:
        """All event types ordered by name."""
        cached = await self.cache.get_event_types()
        if cached is not None:
            return cached

        async with self._persistence("list_event_types"):
            event_types = await self.event_types.list_event_types()

        await self.cache.set_event_types(event_types)
        return event_types

    async def create_event_type(self, name: str) -> EventTypeSnapshot:
        """
        Create an event type.

        Raises:
            InvalidArgumentError: If the name is blank or too long
            PersistenceFailureError: If the insert fails (e.g. duplicate name)
        """
        try:
            request = EventTypeCreate(name=name)
        except ValidationError as e:
            raise InvalidArgumentError(
                "Invalid event type name", name=name, error=str(e)
            ) from e

        async with self._persistence("create_event_type", name=request.name):
            event_type = await self.event_types.create_event_type(request.name)
        await self._commit("create_event_type", name=request.name)

        await self.cache.invalidate_event_types()
        return event_type

    async def delete_event_type(self, event_type_id: uuid.UUID) -> None:
        """
        Delete an event type.

        Raises:
            NotFoundError: If the event type does not exist
            PersistenceFailureError: If the delete fails (e.g. still referenced)
        """
        async with self._persistence("delete_event_type", event_type_id=str(event_type_id)):
            deleted = await self.event_types.delete_event_type(event_type_id)
        if not deleted:
            raise NotFoundError(
                f"Event type {event_type_id} not found",
                event_type_id=str(event_type_id),
            )

        await self._commit("delete_event_type", event_type_id=str(event_type_id))
        await self.cache.invalidate_event_types()

    async def ensure_default_event_types(self) -> int:
        """Seed the default event types into an empty table."""
        async with self._persistence("seed_event_types"):
            inserted = await self.event_types.seed_defaults()

        if inserted:
            await self._commit("seed_event_types")
            await self.cache.invalidate_event_types()
        return inserted


def get_order_service(session: AsyncSession) -> OrderService:
    """
    Build an order service bound to a session and the global order cache.

    Args:
        session: Async database session for the current unit of work
    """
    return OrderService(session, cache=get_order_cache())
