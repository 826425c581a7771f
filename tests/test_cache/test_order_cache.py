"""
Tests for the order cache-aside layer.

Covers typed envelopes, prefix invalidation scoped to the service namespace,
degradation to misses when Redis is unavailable and cache statistics.
"""

import json
from datetime import date
from uuid import uuid4

import pytest

from order_service.schemas.orders import EventTypeSnapshot, OrderListResponse
from order_service.services.cache.order_cache import CacheKind, OrderCache


# ============================================================================
# Typed get / set
# ============================================================================


class TestTypedAccess:
    """Test envelope round trips and kind checks."""

    @pytest.mark.asyncio
    async def test_order_round_trip(self, order_cache: OrderCache, make_order):
        """A cached order comes back equal to what was stored."""
        order = make_order()

        assert await order_cache.set_order(order)
        cached = await order_cache.get_order(order.id)

        assert cached == order

    @pytest.mark.asyncio
    async def test_envelope_shape_and_ttl(self, order_cache: OrderCache, fake_redis, make_order):
        """Entries are wrapped with kind and timestamp and use the kind TTL."""
        order = make_order()
        await order_cache.set_order(order)

        key = order_cache.keys.order_detail_key(order.id)
        envelope = json.loads(fake_redis.store[key])

        assert envelope["kind"] == "order"
        assert "cached_at" in envelope
        assert envelope["data"]["id"] == str(order.id)
        assert fake_redis.ttls[key] == order_cache.ttl_for(CacheKind.ORDER)

    @pytest.mark.asyncio
    async def test_explicit_ttl_overrides_default(self, order_cache: OrderCache, fake_redis):
        """A TTL passed to set wins over the kind default."""
        await order_cache.set_event_types([EventTypeSnapshot(id=uuid4(), name="Wedding")], ttl=7)

        assert fake_redis.ttls[order_cache.keys.event_types_key()] == 7

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl", [0, -5])
    async def test_non_positive_ttl_rejected(self, order_cache: OrderCache, fake_redis, ttl):
        """A zero or negative TTL is refused rather than replaced by the default."""
        with pytest.raises(ValueError):
            await order_cache.set_event_types([EventTypeSnapshot(id=uuid4(), name="Wedding")], ttl=ttl)

        assert order_cache.keys.event_types_key() not in fake_redis.ttls
        assert order_cache.get_statistics()["sets"] == 0

    @pytest.mark.asyncio
    async def test_kind_mismatch_is_miss(self, order_cache: OrderCache, make_order):
        """Reading a key as another kind yields a miss."""
        order = make_order()
        await order_cache.set_order(order)
        key = order_cache.keys.order_detail_key(order.id)

        assert await order_cache.get(key, CacheKind.ORDER_LIST) is None
        assert order_cache.get_statistics()["cache_misses"] == 1

    @pytest.mark.asyncio
    async def test_missing_key_is_miss(self, order_cache: OrderCache):
        """Absent entries are misses."""
        assert await order_cache.get_order(uuid4()) is None

    @pytest.mark.asyncio
    async def test_page_round_trip(self, order_cache: OrderCache, make_order):
        """Order pages keep their paging metadata."""
        page = OrderListResponse(orders=[make_order()], page_size=10, offset=0, total_count=31)
        await order_cache.set_order_page(page)

        cached = await order_cache.get_order_page(10, 0)

        assert cached == page
        assert await order_cache.get_order_page(10, 10) is None

    @pytest.mark.asyncio
    async def test_set_overwrites(self, order_cache: OrderCache, make_order):
        """A second set replaces the first entry."""
        order = make_order()
        await order_cache.set_order(order)
        changed = order.model_copy(update={"delivery_pickup_notes": "Front door"})
        await order_cache.set_order(changed)

        cached = await order_cache.get_order(order.id)

        assert cached.delivery_pickup_notes == "Front door"


# ============================================================================
# Invalidation
# ============================================================================


class TestInvalidation:
    """Test exact and prefix invalidation."""

    @pytest.mark.asyncio
    async def test_list_prefix_removes_only_listings(
        self, order_cache: OrderCache, fake_redis, make_order
    ):
        """Every listing key goes; order views and foreign keys stay."""
        order = make_order()
        keys = order_cache.keys
        await order_cache.set_order(order)
        await order_cache.set_order_page(
            OrderListResponse(orders=[order], page_size=50, offset=0, total_count=1)
        )
        await order_cache.set_order_list(keys.orders_by_customer_key(order.billed_to_customer_id), [order])
        await order_cache.set_order_list(keys.orders_by_date_key(date(2024, 7, 4)), [order])
        fake_redis.store["billing:v1:list:page:abc"] = "{}"

        removed = await order_cache.invalidate_by_prefix("orders:v1:list:")

        assert removed == 3
        assert not any(k.startswith("orders:v1:list:") for k in fake_redis.store)
        assert keys.order_detail_key(order.id) in fake_redis.store
        assert "billing:v1:list:page:abc" in fake_redis.store

    @pytest.mark.asyncio
    async def test_invalidate_order_removes_every_view(
        self, order_cache: OrderCache, fake_redis, make_order, make_item
    ):
        """All views of one order are purged; other orders survive."""
        order = make_order()
        other = make_order()
        await order_cache.set_order(order)
        await order_cache.set_order_items(order.id, [make_item(order.id)])
        await order_cache.set_order_history(order.id, [])
        await order_cache.set_order(other)

        removed = await order_cache.invalidate_order(order.id)

        assert removed == 3
        assert await order_cache.get_order(order.id) is None
        assert await order_cache.get_order(other.id) == other

    @pytest.mark.asyncio
    async def test_prefix_outside_namespace_rejected(self, order_cache: OrderCache, fake_redis):
        """Prefixes outside the namespace raise before touching Redis."""
        with pytest.raises(ValueError):
            await order_cache.invalidate_by_prefix("billing:v1:")
        with pytest.raises(ValueError):
            await order_cache.invalidate_by_prefix("")

        assert fake_redis.scan_calls == []

    @pytest.mark.asyncio
    async def test_invalidate_keys_exact_and_prefix(
        self, order_cache: OrderCache, fake_redis, make_order
    ):
        """Patterns match as exact keys and as prefixes; a trailing '*' is optional."""
        order = make_order()
        keys = order_cache.keys
        await order_cache.set_order(order)
        await order_cache.set_event_types([])
        await order_cache.set_order_list(keys.orders_by_date_key(date(2024, 7, 4)), [order])

        removed = await order_cache.invalidate_keys(
            [keys.event_types_key(), keys.list_family_prefix() + "*"]
        )

        assert removed == 2
        assert list(fake_redis.store) == [keys.order_detail_key(order.id)]

    @pytest.mark.asyncio
    async def test_invalidate_keys_rejects_foreign_pattern(self, order_cache: OrderCache):
        """One foreign pattern rejects the whole call."""
        with pytest.raises(ValueError):
            await order_cache.invalidate_keys(["orders:v1:list:", "*"])

    @pytest.mark.asyncio
    async def test_invalidate_event_types(self, order_cache: OrderCache):
        """The event type table is removed by exact key."""
        await order_cache.set_event_types([EventTypeSnapshot(id=uuid4(), name="Birthday")])

        assert await order_cache.invalidate_event_types() == 1
        assert await order_cache.get_event_types() is None


# ============================================================================
# Degradation
# ============================================================================


class TestDegradation:
    """Test behavior when Redis is unavailable."""

    @pytest.mark.asyncio
    async def test_get_degrades_to_miss(self, order_cache: OrderCache, fake_redis):
        fake_redis.fail = True

        assert await order_cache.get_order(uuid4()) is None
        stats = order_cache.get_statistics()
        assert stats["errors"] == 1
        assert stats["cache_misses"] == 1

    @pytest.mark.asyncio
    async def test_set_reports_false(self, order_cache: OrderCache, fake_redis, make_order):
        fake_redis.fail = True

        assert await order_cache.set_order(make_order()) is False

    @pytest.mark.asyncio
    async def test_invalidation_reports_zero(self, order_cache: OrderCache, fake_redis):
        fake_redis.fail = True

        assert await order_cache.invalidate_order_lists() == 0
        assert await order_cache.invalidate_event_types() == 0
        assert order_cache.get_statistics()["errors"] == 2

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_miss(self, order_cache: OrderCache, fake_redis):
        """Undecodable entries are treated as misses."""
        order_id = uuid4()
        fake_redis.store[order_cache.keys.order_detail_key(order_id)] = "not json"

        assert await order_cache.get_order(order_id) is None


# ============================================================================
# Statistics
# ============================================================================


class TestStatistics:
    """Test cache statistics."""

    @pytest.mark.asyncio
    async def test_hit_rate(self, order_cache: OrderCache, make_order):
        order = make_order()
        await order_cache.set_order(order)
        await order_cache.get_order(order.id)
        await order_cache.get_order(uuid4())

        stats = order_cache.get_statistics()

        assert stats["cache_hits"] == 1
        assert stats["cache_misses"] == 1
        assert stats["hit_rate_percent"] == 50.0
        assert stats["sets"] == 1
        assert "redis_stats" in stats

    @pytest.mark.asyncio
    async def test_reset(self, order_cache: OrderCache, make_order):
        await order_cache.set_order(make_order())
        order_cache.reset_statistics()

        stats = order_cache.get_statistics()

        assert stats["sets"] == 0
        assert stats["hit_rate_percent"] == 0.0
