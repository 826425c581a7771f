"""
Test suite for the database layer.

Test Coverage:
- Async URL conversion
- Model metadata registration and constraints
- Interval list column serialization
- Model serialization helpers
- Transactional session scope (commit, rollback, close)
"""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.dialects import postgresql

from order_service.database import connection
from order_service.database.base import Base
from order_service.database.models import EventType, IntervalListType, Order, OrderItem
from order_service.schemas.orders import Interval
from order_service.services.orders.enums import OrderStatus


class TestDatabaseUrl:
    """Test async driver URL conversion."""

    def test_plain_url_gets_asyncpg_driver(self):
        url = connection._convert_database_url_to_async("postgresql://u:p@db:5432/orders")

        assert url == "postgresql+asyncpg://u:p@db:5432/orders"

    def test_async_url_unchanged(self):
        url = "postgresql+asyncpg://u:p@db:5432/orders"

        assert connection._convert_database_url_to_async(url) == url


class TestModelRegistration:
    """Test that every table is registered on the metadata."""

    def test_all_tables_registered(self):
        assert {
            "orders",
            "order_items",
            "order_history",
            "order_item_history",
            "event_types",
        } <= set(Base.metadata.tables)

    def test_history_tables_have_no_order_foreign_key(self):
        """Audit history outlives the order it describes."""
        for name in ("order_history", "order_item_history"):
            table = Base.metadata.tables[name]
            assert not table.c.order_id.foreign_keys

    def test_items_cascade_with_order(self):
        fk = next(iter(Base.metadata.tables["order_items"].c.order_id.foreign_keys))

        assert fk.ondelete == "CASCADE"


class TestIntervalListType:
    """Test JSONB serialization of interval lists."""

    dialect = postgresql.dialect()

    def test_bind_serializes_iso_strings(self):
        start = datetime(2024, 7, 4, 9, tzinfo=timezone.utc)
        end = datetime(2024, 7, 4, 11, tzinfo=timezone.utc)

        bound = IntervalListType().process_bind_param(
            (Interval(start=start, end=end), (start, end)), self.dialect
        )

        assert bound == [
            {"start": start.isoformat(), "end": end.isoformat()},
            {"start": start.isoformat(), "end": end.isoformat()},
        ]

    def test_none_binds_as_empty_list(self):
        assert IntervalListType().process_bind_param(None, self.dialect) == []

    def test_result_preserves_instants(self):
        plus_two = timezone(timedelta(hours=2))
        start = datetime(2024, 7, 4, 11, tzinfo=plus_two)
        end = datetime(2024, 7, 4, 12, 30, 0, 125000, tzinfo=plus_two)
        column_type = IntervalListType()

        loaded = column_type.process_result_value(
            column_type.process_bind_param([(start, end)], self.dialect), self.dialect
        )

        assert loaded == (Interval(start=start, end=end),)
        assert loaded[0].end == end

    def test_empty_result(self):
        assert IntervalListType().process_result_value(None, self.dialect) == ()


class TestModelHelpers:
    """Test Base helpers."""

    def test_to_dict_converts_values(self):
        item = OrderItem(
            id=uuid.uuid4(),
            order_id=uuid.uuid4(),
            item_id=uuid.uuid4(),
            qty=3,
            item_name="Chair",
            item_category=None,
            price=Decimal("2.50"),
        )

        data = item.to_dict(exclude={"item_category"})

        assert data["id"] == str(item.id)
        assert data["price"] == "2.50"
        assert data["qty"] == 3
        assert "item_category" not in data

    def test_to_dict_enum_and_datetime(self):
        created = datetime(2024, 6, 1, tzinfo=timezone.utc)
        order = Order(id=uuid.uuid4(), current_status=OrderStatus.IN_USE, created=created)

        data = order.to_dict()

        assert data["current_status"] == "in_use"
        assert data["created"] == created.isoformat()

    def test_repr_shows_primary_key(self):
        event_type_id = uuid.uuid4()

        assert repr(EventType(id=event_type_id, name="Wedding")) == (
            f"<EventType(id={event_type_id!r})>"
        )


class TestSessionScope:
    """Test the transactional session context manager."""

    @pytest.fixture
    def session(self):
        session = AsyncMock()
        factory = MagicMock(return_value=session)
        with patch.object(connection, "get_session_factory", return_value=factory):
            yield session

    @pytest.mark.asyncio
    async def test_commits_on_success(self, session):
        async with connection.get_session() as s:
            assert s is session

        session.commit.assert_awaited_once()
        session.rollback.assert_not_called()
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, session):
        with pytest.raises(ValueError):
            async with connection.get_session():
                raise ValueError("boom")

        session.commit.assert_not_called()
        session.rollback.assert_awaited_once()
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rolls_back_on_cancellation(self, session):
        with pytest.raises(asyncio.CancelledError):
            async with connection.get_session():
                raise asyncio.CancelledError()

        session.commit.assert_not_called()
        session.rollback.assert_awaited_once()
