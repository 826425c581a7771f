"""
Order data access repository.

Repositories flush but never commit: the service owns the transaction and
commits once per logical operation, so an order mutation and its audit
records become durable together or not at all. Every method returns frozen
snapshots rather than ORM instances.
"""

import uuid
from datetime import date, datetime, timedelta
from typing import Any, Optional, Sequence, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from order_service.core.logging import get_logger
from order_service.database.models import (
    DEFAULT_EVENT_TYPES,
    EventType,
    Order,
    OrderHistory,
    OrderItem,
    OrderItemHistory,
)
from order_service.schemas.orders import (
    EventTypeSnapshot,
    OrderHistoryRecord,
    OrderItemHistoryRecord,
    OrderItemSnapshot,
    OrderSnapshot,
)
from order_service.services.orders.intervals import start_of_day, utc_day
from order_service.services.orders.reconciliation import ItemReconciliation

logger = get_logger(__name__)

DayOrInstant = Union[date, datetime]


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderIntegrityError(OrderRepositoryError):
    """Raised when a write violates a database constraint."""

    pass


def _order_values(snapshot: OrderSnapshot) -> dict[str, Any]:
    return {name: getattr(snapshot, name) for name in OrderSnapshot.model_fields}


def _item_values(snapshot: OrderItemSnapshot) -> dict[str, Any]:
    return {name: getattr(snapshot, name) for name in OrderItemSnapshot.model_fields}


class _RepositoryBase:
    """Shared session handling and error wrapping."""

    def __init__(self, session: AsyncSession):
        """
        Initialize repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def _fail(
        self,
        message: str,
        error: SQLAlchemyError,
        **context: Any,
    ) -> OrderRepositoryError:
        """Roll back, log and build the wrapped error for ``raise ... from``."""
        await self.session.rollback()
        logger.error(
            message,
            error=str(error),
            error_type=type(error).__name__,
            **context,
        )
        error_cls = (
            OrderIntegrityError if isinstance(error, IntegrityError) else OrderRepositoryError
        )
        return error_cls(message, error=str(error), **context)


class OrderRepository(_RepositoryBase):
    """
    Repository for orders, their items and their audit history.

    Provides load-by-id, upsert and delete of orders and items, append of
    history records, and the listing queries used by the order service.
    """

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def create_order(
        self,
        order: OrderSnapshot,
        items: Sequence[OrderItemSnapshot] = (),
    ) -> OrderSnapshot:
        """
        Insert an order with its initial items.

        Args:
            order: Order snapshot with id and timestamps already assigned
            items: Initial item lines

        Returns:
            The stored order snapshot

        Raises:
            OrderRepositoryError: If the insert fails
        """
        try:
            logger.info(
                "Creating order",
                order_id=str(order.id),
                customer_id=str(order.billed_to_customer_id),
                item_count=len(items),
            )

            row = Order(**_order_values(order))
            self.session.add(row)
            for item in items:
                self.session.add(OrderItem(**_item_values(item)))

            await self.session.flush()
            return OrderSnapshot.model_validate(row)

        except SQLAlchemyError as e:
            raise await self._fail(
                "Order creation failed", e, order_id=str(order.id)
            ) from e

    async def get_order(self, order_id: uuid.UUID) -> Optional[OrderSnapshot]:
        """
        Load one order.

        Args:
            order_id: Order identifier

        Returns:
            Order snapshot if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            logger.debug("Fetching order by ID", order_id=str(order_id))
            result = await self.session.execute(select(Order).where(Order.id == order_id))
            row = result.scalar_one_or_none()
            return OrderSnapshot.model_validate(row) if row is not None else None

        except SQLAlchemyError as e:
            raise await self._fail("Failed to fetch order", e, order_id=str(order_id)) from e

    async def order_exists(self, order_id: uuid.UUID) -> bool:
        """Check whether an order row exists."""
        try:
            result = await self.session.execute(
                select(func.count()).select_from(Order).where(Order.id == order_id)
            )
            return bool(result.scalar_one())

        except SQLAlchemyError as e:
            raise await self._fail(
                "Failed to check order existence", e, order_id=str(order_id)
            ) from e

    async def update_order(
        self,
        order: OrderSnapshot,
        history: Sequence[OrderHistoryRecord],
    ) -> OrderSnapshot:
        """
        Overwrite an order row and append its audit records.

        Args:
            order: New order snapshot
            history: Audit records computed for this update

        Returns:
            The stored order snapshot

        Raises:
            OrderRepositoryError: If the update fails
        """
        try:
            values = _order_values(order)
            values.pop("id")
            values.pop("created")

            await self.session.execute(
                update(Order).where(Order.id == order.id).values(**values)
            )
            await self.append_order_history(history, flush=False)
            await self.session.flush()

            logger.info(
                "Order updated",
                order_id=str(order.id),
                changed_properties=[record.property_name for record in history],
            )
            return order

        except SQLAlchemyError as e:
            raise await self._fail("Order update failed", e, order_id=str(order.id)) from e

    async def delete_order(self, order_id: uuid.UUID) -> bool:
        """
        Delete an order and its items; audit history is retained.

        Args:
            order_id: Order identifier

        Returns:
            True if a row was deleted, False if the order did not exist

        Raises:
            OrderRepositoryError: If the delete fails
        """
        try:
            await self.session.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
            result = await self.session.execute(delete(Order).where(Order.id == order_id))
            await self.session.flush()

            deleted = (result.rowcount or 0) > 0
            logger.info("Order deleted", order_id=str(order_id), deleted=deleted)
            return deleted

        except SQLAlchemyError as e:
            raise await self._fail("Order deletion failed", e, order_id=str(order_id)) from e

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def _fetch_orders(self, stmt, operation: str, **context: Any) -> list[OrderSnapshot]:
        try:
            result = await self.session.execute(stmt)
            orders = [OrderSnapshot.model_validate(row) for row in result.scalars().all()]
            logger.debug("Orders listed", operation=operation, count=len(orders), **context)
            return orders

        except SQLAlchemyError as e:
            raise await self._fail("Failed to list orders", e, operation=operation, **context) from e

    async def count_orders(self) -> int:
        """Total number of stored orders."""
        try:
            result = await self.session.execute(select(func.count()).select_from(Order))
            return int(result.scalar_one())

        except SQLAlchemyError as e:
            raise await self._fail("Failed to count orders", e) from e

    async def list_orders(self, page_size: int, offset: int) -> list[OrderSnapshot]:
        """One page of orders ordered by event date, then id."""
        stmt = (
            select(Order)
            .order_by(Order.event_date, Order.id)
            .offset(offset)
            .limit(page_size)
        )
        return await self._fetch_orders(stmt, "list_orders", page_size=page_size, offset=offset)

    async def list_orders_by_customer(self, customer_id: uuid.UUID) -> list[OrderSnapshot]:
        """Orders billed to one customer, latest event first."""
        stmt = (
            select(Order)
            .where(Order.billed_to_customer_id == customer_id)
            .order_by(Order.event_date.desc(), Order.id)
        )
        return await self._fetch_orders(
            stmt, "list_orders_by_customer", customer_id=str(customer_id)
        )

    async def list_orders_by_date(self, day: date) -> list[OrderSnapshot]:
        """Orders whose event falls on the given UTC calendar day."""
        start = start_of_day(day)
        stmt = (
            select(Order)
            .where(Order.event_date >= start, Order.event_date < start + timedelta(days=1))
            .order_by(Order.event_date, Order.id)
        )
        return await self._fetch_orders(stmt, "list_orders_by_date", day=day.isoformat())

    async def list_orders_by_date_range(
        self,
        start: DayOrInstant,
        end: DayOrInstant,
    ) -> list[OrderSnapshot]:
        """
        Orders whose event day lies strictly between the days of ``start``
        and ``end``; events on either boundary day are excluded.

        Sorted by status in lifecycle order (the database enum's declaration
        order), then id.
        """
        start_day = utc_day(start)
        end_day = utc_day(end)
        stmt = (
            select(Order)
            .where(
                Order.event_date >= start_of_day(start_day) + timedelta(days=1),
                Order.event_date < start_of_day(end_day),
            )
            .order_by(Order.current_status, Order.id)
        )
        return await self._fetch_orders(
            stmt,
            "list_orders_by_date_range",
            start=start_day.isoformat(),
            end=end_day.isoformat(),
        )

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def get_items(self, order_id: uuid.UUID) -> list[OrderItemSnapshot]:
        """
        Load an order's items.

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            result = await self.session.execute(
                select(OrderItem)
                .where(OrderItem.order_id == order_id)
                .order_by(OrderItem.item_name, OrderItem.id)
            )
            return [OrderItemSnapshot.model_validate(row) for row in result.scalars().all()]

        except SQLAlchemyError as e:
            raise await self._fail("Failed to fetch order items", e, order_id=str(order_id)) from e

    async def apply_item_reconciliation(self, result: ItemReconciliation) -> None:
        """
        Persist a reconciled item batch: inserts, quantity updates, deletes
        and item history, flushed together.

        Args:
            result: Reconciliation outcome

        Raises:
            OrderRepositoryError: If any statement fails
        """
        try:
            for item in result.added:
                self.session.add(OrderItem(**_item_values(item)))

            for item in result.updated:
                await self.session.execute(
                    update(OrderItem).where(OrderItem.id == item.id).values(qty=item.qty)
                )

            deleted_ids = [item.id for item in result.deleted]
            if deleted_ids:
                await self.session.execute(
                    delete(OrderItem).where(OrderItem.id.in_(deleted_ids))
                )

            await self.append_item_history(result.history, flush=False)
            await self.session.flush()

            logger.info(
                "Item batch persisted",
                order_id=str(result.order_id),
                added=len(result.added),
                updated=len(result.updated),
                deleted=len(result.deleted),
                history_records=len(result.history),
            )

        except SQLAlchemyError as e:
            raise await self._fail(
                "Item batch persistence failed", e, order_id=str(result.order_id)
            ) from e

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def append_order_history(
        self,
        records: Sequence[OrderHistoryRecord],
        flush: bool = True,
    ) -> None:
        """Append field-level audit records."""
        for record in records:
            self.session.add(OrderHistory(**record.model_dump()))
        if flush and records:
            await self.session.flush()

    async def append_item_history(
        self,
        records: Sequence[OrderItemHistoryRecord],
        flush: bool = True,
    ) -> None:
        """Append item-level audit records."""
        for record in records:
            self.session.add(OrderItemHistory(**record.model_dump()))
        if flush and records:
            await self.session.flush()

    async def get_order_history(self, order_id: uuid.UUID) -> list[OrderHistoryRecord]:
        """Field-level audit records of an order, oldest first."""
        try:
            result = await self.session.execute(
                select(OrderHistory)
                .where(OrderHistory.order_id == order_id)
                .order_by(OrderHistory.changed_at, OrderHistory.property_name)
            )
            return [OrderHistoryRecord.model_validate(row) for row in result.scalars().all()]

        except SQLAlchemyError as e:
            raise await self._fail("Failed to fetch order history", e, order_id=str(order_id)) from e

    async def get_item_history(self, order_id: uuid.UUID) -> list[OrderItemHistoryRecord]:
        """Item-level audit records of an order, oldest first."""
        try:
            result = await self.session.execute(
                select(OrderItemHistory)
                .where(OrderItemHistory.order_id == order_id)
                .order_by(OrderItemHistory.changed_at, OrderItemHistory.id)
            )
            return [OrderItemHistoryRecord.model_validate(row) for row in result.scalars().all()]

        except SQLAlchemyError as e:
            raise await self._fail(
                "Failed to fetch order item history", e, order_id=str(order_id)
            ) from e


class EventTypeRepository(_RepositoryBase):
    """Repository for the event type reference table."""

    async def list_event_types(self) -> list[EventTypeSnapshot]:
        """All event types ordered by name."""
        try:
            result = await self.session.execute(select(EventType).order_by(EventType.name))
            return [EventTypeSnapshot.model_validate(row) for row in result.scalars().all()]

        except SQLAlchemyError as e:
            raise await self._fail("Failed to list event types", e) from e

    async def create_event_type(self, name: str) -> EventTypeSnapshot:
        """
        Insert an event type.

        Raises:
            OrderIntegrityError: If the name already exists
            OrderRepositoryError: If the insert fails
        """
        try:
            row = EventType(id=uuid.uuid4(), name=name)
            self.session.add(row)
            await self.session.flush()
            logger.info("Event type created", event_type_id=str(row.id), name=name)
            return EventTypeSnapshot.model_validate(row)

        except SQLAlchemyError as e:
            raise await self._fail("Event type creation failed", e, name=name) from e

    async def delete_event_type(self, event_type_id: uuid.UUID) -> bool:
        """
        Delete an event type.

        Returns:
            True if a row was deleted, False if it did not exist
        """
        try:
            result = await self.session.execute(
                delete(EventType).where(EventType.id == event_type_id)
            )
            await self.session.flush()
            return (result.rowcount or 0) > 0

        except SQLAlchemyError as e:
            raise await self._fail(
                "Event type deletion failed", e, event_type_id=str(event_type_id)
            ) from e

    async def seed_defaults(self) -> int:
        """
        Insert the default event types into an empty table.

        Returns:
            Number of rows inserted
        """
        try:
            result = await self.session.execute(select(func.count()).select_from(EventType))
            if result.scalar_one():
                return 0

            for name in DEFAULT_EVENT_TYPES:
                self.session.add(EventType(id=uuid.uuid4(), name=name))
            await self.session.flush()

            logger.info("Default event types seeded", count=len(DEFAULT_EVENT_TYPES))
            return len(DEFAULT_EVENT_TYPES)

        except SQLAlchemyError as e:
            raise await self._fail("Event type seeding failed", e) from e
