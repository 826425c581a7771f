"""
Pytest configuration and shared test fixtures.

Provides an in-memory async Redis double, order and item snapshot factories,
and mocked database sessions for the order service tests.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Optional
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession

from order_service.cache.redis_client import RedisClient
from order_service.schemas.orders import Interval, OrderItemSnapshot, OrderSnapshot
from order_service.services.cache.cache_keys import CacheKeyManager
from order_service.services.cache.order_cache import OrderCache
from order_service.services.orders.enums import OrderStatus, PaymentTerms

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# In-memory Redis
# ============================================================================


def _glob_to_regex(pattern: str) -> re.Pattern:
    """Translate a Redis MATCH pattern (with backslash escapes) to a regex."""
    parts = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            parts.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
        i += 1
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


class FakeRedis:
    """
    Minimal async stand-in for ``redis.asyncio.Redis``.

    Supports the commands the cache layer issues. Setting ``fail`` makes
    every command raise a Redis ``ConnectionError``.
    """

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, Optional[int]] = {}
        self.fail = False
        self.scan_calls: list[str] = []

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        count = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                self.ttls.pop(key, None)
                count += 1
        return count

    async def scan_iter(self, match: str = "*", count: int = 10) -> AsyncIterator[str]:
        self._check()
        self.scan_calls.append(match)
        regex = _glob_to_regex(match)
        for key in list(self.store):
            if regex.match(key):
                yield key

    async def aclose(self) -> None:
        return None


@pytest.fixture
def fake_redis() -> FakeRedis:
    """In-memory Redis double."""
    return FakeRedis()


@pytest.fixture
def redis_client(fake_redis) -> RedisClient:
    """RedisClient wired to the in-memory double, already connected."""
    client = RedisClient(url="redis://localhost:6379/15")
    client._client = fake_redis
    client._is_connected = True
    return client


@pytest.fixture
def key_manager() -> CacheKeyManager:
    """Key manager with a fixed namespace and version."""
    return CacheKeyManager(namespace="orders", version="v1")


@pytest.fixture
def order_cache(redis_client, key_manager) -> OrderCache:
    """Order cache over the in-memory Redis."""
    return OrderCache(redis_client=redis_client, key_manager=key_manager)


# ============================================================================
# Database session
# ============================================================================


@pytest.fixture
def mock_session() -> AsyncMock:
    """
    Create a mock database session.

    Returns:
        AsyncMock: Mocked async session
    """
    session = AsyncMock(spec=AsyncSession)
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.add = MagicMock()
    return session


# ============================================================================
# Snapshot factories
# ============================================================================


@pytest.fixture
def make_order() -> Callable[..., OrderSnapshot]:
    """Factory for order snapshots; keyword arguments override defaults."""

    def _make(**overrides: Any) -> OrderSnapshot:
        values: dict[str, Any] = {
            "id": uuid4(),
            "created": FIXED_NOW,
            "updated": FIXED_NOW,
            "event_date": datetime(2024, 7, 4, 18, 0, tzinfo=timezone.utc),
            "event_type_id": uuid4(),
            "billed_to_customer_id": uuid4(),
            "billed_to_address_id": uuid4(),
            "shipped_to_address_id": uuid4(),
            "amount": Decimal("100.00"),
            "balance_due": Decimal("50.00"),
            "tax_rate": Decimal("0.0825"),
            "tax_value": Decimal("8.25"),
            "deposit": Decimal("50.00"),
            "discount": Decimal("0.00"),
            "shipping_cost": Decimal("25.00"),
            "item_total_value": Decimal("75.00"),
            "current_status": OrderStatus.CONFIRMED,
            "payment_terms": PaymentTerms.NET_30,
            "delivery_window": (
                Interval(
                    start=datetime(2024, 7, 4, 9, 0, tzinfo=timezone.utc),
                    end=datetime(2024, 7, 4, 11, 0, tzinfo=timezone.utc),
                ),
            ),
            "pickup_window": (),
            "delivery_pickup_notes": "Leave at side gate",
        }
        values.update(overrides)
        return OrderSnapshot(**values)

    return _make


@pytest.fixture
def make_item() -> Callable[..., OrderItemSnapshot]:
    """Factory for order item snapshots."""

    def _make(order_id: UUID, item_id: Optional[UUID] = None, qty: int = 1, **overrides: Any):
        values: dict[str, Any] = {
            "id": uuid4(),
            "order_id": order_id,
            "item_id": item_id or uuid4(),
            "qty": qty,
            "item_name": "Folding chair",
            "item_category": "Seating",
            "price": Decimal("2.50"),
        }
        values.update(overrides)
        return OrderItemSnapshot(**values)

    return _make


@pytest.fixture
def user_id() -> UUID:
    """Acting user identifier."""
    return uuid4()
