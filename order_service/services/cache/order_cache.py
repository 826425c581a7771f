"""
Order caching service with cache-aside pattern implementation.

Values are stored as typed envelopes ``{"kind", "cached_at", "data"}``; a
read that finds an envelope of another kind is a miss. Cache failures never
reach callers: reads degrade to misses, writes and invalidations report
``False`` / ``0`` and the failure is logged as ``cache_unavailable``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional, Union
from uuid import UUID

from pydantic import TypeAdapter

from order_service.cache.redis_client import RedisClient, get_redis_client
from order_service.core.config import get_settings
from order_service.core.logging import get_logger
from order_service.schemas.orders import (
    EventTypeSnapshot,
    OrderHistoryRecord,
    OrderItemHistoryRecord,
    OrderItemSnapshot,
    OrderListResponse,
    OrderSnapshot,
)
from order_service.services.cache.cache_keys import CacheKeyManager, get_cache_key_manager
from order_service.services.orders.errors import ErrorKind

logger = get_logger(__name__)


class CacheKind(str, Enum):
    """Resource kind tagged on every cached envelope."""

    ORDER = "order"
    ORDER_PAGE = "order_page"
    ORDER_LIST = "order_list"
    ORDER_ITEMS = "order_items"
    ORDER_HISTORY = "order_history"
    ORDER_ITEM_HISTORY = "order_item_history"
    EVENT_TYPES = "event_types"


_ADAPTERS: dict[CacheKind, TypeAdapter] = {
    CacheKind.ORDER: TypeAdapter(OrderSnapshot),
    CacheKind.ORDER_PAGE: TypeAdapter(OrderListResponse),
    CacheKind.ORDER_LIST: TypeAdapter(list[OrderSnapshot]),
    CacheKind.ORDER_ITEMS: TypeAdapter(list[OrderItemSnapshot]),
    CacheKind.ORDER_HISTORY: TypeAdapter(list[OrderHistoryRecord]),
    CacheKind.ORDER_ITEM_HISTORY: TypeAdapter(list[OrderItemHistoryRecord]),
    CacheKind.EVENT_TYPES: TypeAdapter(list[EventTypeSnapshot]),
}


def _default_ttls() -> dict[CacheKind, int]:
    settings = get_settings()
    return {
        CacheKind.ORDER: settings.order_cache_ttl,
        CacheKind.ORDER_PAGE: settings.order_list_cache_ttl,
        CacheKind.ORDER_LIST: settings.order_list_cache_ttl,
        CacheKind.ORDER_ITEMS: settings.order_cache_ttl,
        CacheKind.ORDER_HISTORY: settings.history_cache_ttl,
        CacheKind.ORDER_ITEM_HISTORY: settings.history_cache_ttl,
        CacheKind.EVENT_TYPES: settings.event_types_cache_ttl,
    }


class OrderCache:
    """
    Order-specific caching service with cache-aside pattern.

    Provides typed get/set per resource kind, exact and prefix invalidation
    scoped to the service namespace, and hit/miss/invalidation statistics.
    """

    def __init__(
        self,
        redis_client: Optional[RedisClient] = None,
        key_manager: Optional[CacheKeyManager] = None,
        ttls: Optional[dict[CacheKind, int]] = None,
    ):
        """
        Initialize order cache service.

        Args:
            redis_client: Redis client instance (uses global if None)
            key_manager: Cache key manager (uses global if None)
            ttls: Per-kind TTL overrides in seconds
        """
        self._redis_client = redis_client
        self.keys = key_manager or get_cache_key_manager()
        self._ttls = _default_ttls()
        if ttls:
            self._ttls.update(ttls)
        self._cache_stats = self._empty_stats()

        logger.info(
            "Order cache service initialized",
            namespace=self.keys.namespace_prefix(),
            order_ttl=self._ttls[CacheKind.ORDER],
            list_ttl=self._ttls[CacheKind.ORDER_LIST],
        )

    @staticmethod
    def _empty_stats() -> dict[str, int]:
        return {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "invalidations": 0,
            "errors": 0,
        }

    async def _get_redis_client(self) -> RedisClient:
        if self._redis_client is None:
            self._redis_client = await get_redis_client()
        return self._redis_client

    def _record_failure(self, operation: str, error: Exception, **context: Any) -> None:
        self._cache_stats["errors"] += 1
        logger.error(
            "Cache operation failed",
            operation=operation,
            error_kind=ErrorKind.CACHE_UNAVAILABLE.value,
            error=str(error),
            error_type=type(error).__name__,
            **context,
        )

    def ttl_for(self, kind: CacheKind) -> int:
        """Default TTL in seconds for a resource kind."""
        return self._ttls[kind]

    # ------------------------------------------------------------------
    # Generic typed access
    # ------------------------------------------------------------------

    async def get(self, key: str, kind: CacheKind) -> Optional[Any]:
        """
        Get a cached value of the expected kind.

        Args:
            key: Cache key
            kind: Expected resource kind

        Returns:
            Deserialized value, or None on miss, kind mismatch or cache failure
        """
        try:
            redis = await self._get_redis_client()
            envelope = await redis.get_json(key)

            if envelope is None:
                self._cache_stats["misses"] += 1
                logger.debug("Cache miss", cache_key=key, kind=kind.value)
                return None

            if not isinstance(envelope, dict) or envelope.get("kind") != kind.value:
                self._cache_stats["misses"] += 1
                logger.warning(
                    "Cache entry kind mismatch",
                    cache_key=key,
                    expected=kind.value,
                    found=envelope.get("kind") if isinstance(envelope, dict) else None,
                )
                return None

            value = _ADAPTERS[kind].validate_python(envelope.get("data"))
            self._cache_stats["hits"] += 1
            logger.debug("Cache hit", cache_key=key, kind=kind.value)
            return value

        except Exception as e:
            self._cache_stats["misses"] += 1
            self._record_failure("get", e, cache_key=key, kind=kind.value)
            return None

    async def set(
        self,
        key: str,
        kind: CacheKind,
        value: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        """
        Cache a value with TTL, overwriting any existing entry.

        Args:
            key: Cache key
            kind: Resource kind of ``value``
            value: Snapshot, listing or list of snapshots
            ttl: Time-to-live in seconds (per-kind default if None)

        Returns:
            True if cached successfully, False otherwise

        Raises:
            ValueError: If ``ttl`` is given and not positive
        """
        if ttl is None:
            ttl = self._ttls[kind]
        elif ttl <= 0:
            raise ValueError(f"Cache TTL must be positive, got {ttl}")

        try:
            envelope = {
                "kind": kind.value,
                "cached_at": datetime.now(timezone.utc).isoformat(),
                "data": _ADAPTERS[kind].dump_python(value, mode="json"),
            }
            redis = await self._get_redis_client()
            success = await redis.set_json(key, envelope, ex=ttl)

            if success:
                self._cache_stats["sets"] += 1
                logger.debug("Cache entry stored", cache_key=key, kind=kind.value, ttl=ttl)
            else:
                logger.warning("Failed to cache entry", cache_key=key, kind=kind.value)

            return success

        except Exception as e:
            self._record_failure("set", e, cache_key=key, kind=kind.value)
            return False

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def _check_owned(self, key_or_prefix: str) -> None:
        if not key_or_prefix or not self.keys.owns(key_or_prefix):
            raise ValueError(
                f"Refusing to invalidate outside namespace "
                f"{self.keys.namespace_prefix()!r}: {key_or_prefix!r}"
            )

    async def invalidate_exact(self, keys: Iterable[str]) -> int:
        """
        Remove exact-match keys.

        Args:
            keys: Keys to remove

        Returns:
            Number of keys removed (0 on cache failure)
        """
        keys = list(keys)
        if not keys:
            return 0

        try:
            redis = await self._get_redis_client()
            count = await redis.delete_many(keys)
            self._cache_stats["invalidations"] += count
            logger.info("Cache keys invalidated", keys=keys, keys_deleted=count)
            return count

        except Exception as e:
            self._record_failure("invalidate_exact", e, keys=keys)
            return 0

    async def invalidate_by_prefix(self, prefix: str) -> int:
        """
        Remove every stored key starting with ``prefix``.

        Cost is proportional to the keys scanned; use only on bounded
        families (one order's views, the listings).

        Args:
            prefix: Literal key prefix inside the service namespace

        Returns:
            Number of keys removed (0 on cache failure)

        Raises:
            ValueError: If the prefix lies outside the service namespace
        """
        self._check_owned(prefix)

        try:
            redis = await self._get_redis_client()
            count = await redis.delete_prefix(prefix)
            self._cache_stats["invalidations"] += count
            logger.info("Cache prefix invalidated", prefix=prefix, keys_deleted=count)
            return count

        except Exception as e:
            self._record_failure("invalidate_by_prefix", e, prefix=prefix)
            return 0

    async def invalidate_keys(self, patterns: Iterable[str]) -> int:
        """
        Remove each pattern both as an exact key and as a prefix.

        A trailing ``*`` on a pattern is optional and stripped.

        Args:
            patterns: Exact keys and/or family prefixes

        Returns:
            Total number of keys removed

        Raises:
            ValueError: If a pattern lies outside the service namespace
        """
        bases = []
        for pattern in patterns:
            base = pattern[:-1] if pattern.endswith("*") else pattern
            self._check_owned(base)
            bases.append(base)

        total = await self.invalidate_exact(bases)
        for base in bases:
            total += await self.invalidate_by_prefix(base)
        return total

    async def invalidate_order(self, order_id: Union[UUID, str]) -> int:
        """Remove every cached view derived from one order."""
        return await self.invalidate_by_prefix(self.keys.order_family_prefix(order_id))

    async def invalidate_order_lists(self) -> int:
        """Remove every cached order listing."""
        return await self.invalidate_by_prefix(self.keys.list_family_prefix())

    async def invalidate_event_types(self) -> int:
        """Remove the cached event type table."""
        return await self.invalidate_exact([self.keys.event_types_key()])

    # ------------------------------------------------------------------
    # Resource helpers
    # ------------------------------------------------------------------

    async def get_order(self, order_id: UUID) -> Optional[OrderSnapshot]:
        return await self.get(self.keys.order_detail_key(order_id), CacheKind.ORDER)

    async def set_order(self, order: OrderSnapshot, ttl: Optional[int] = None) -> bool:
        return await self.set(self.keys.order_detail_key(order.id), CacheKind.ORDER, order, ttl)

    async def get_order_page(self, page_size: int, offset: int) -> Optional[OrderListResponse]:
        return await self.get(self.keys.order_page_key(page_size, offset), CacheKind.ORDER_PAGE)

    async def set_order_page(self, page: OrderListResponse, ttl: Optional[int] = None) -> bool:
        key = self.keys.order_page_key(page.page_size, page.offset)
        return await self.set(key, CacheKind.ORDER_PAGE, page, ttl)

    async def get_order_list(self, key: str) -> Optional[list[OrderSnapshot]]:
        """Get a filtered order listing stored under a ``list:`` key."""
        return await self.get(key, CacheKind.ORDER_LIST)

    async def set_order_list(
        self,
        key: str,
        orders: list[OrderSnapshot],
        ttl: Optional[int] = None,
    ) -> bool:
        return await self.set(key, CacheKind.ORDER_LIST, orders, ttl)

    async def get_order_items(self, order_id: UUID) -> Optional[list[OrderItemSnapshot]]:
        return await self.get(self.keys.order_items_key(order_id), CacheKind.ORDER_ITEMS)

    async def set_order_items(
        self,
        order_id: UUID,
        items: list[OrderItemSnapshot],
        ttl: Optional[int] = None,
    ) -> bool:
        return await self.set(self.keys.order_items_key(order_id), CacheKind.ORDER_ITEMS, items, ttl)

    async def get_order_history(self, order_id: UUID) -> Optional[list[OrderHistoryRecord]]:
        return await self.get(self.keys.order_history_key(order_id), CacheKind.ORDER_HISTORY)

    async def set_order_history(
        self,
        order_id: UUID,
        records: list[OrderHistoryRecord],
        ttl: Optional[int] = None,
    ) -> bool:
        key = self.keys.order_history_key(order_id)
        return await self.set(key, CacheKind.ORDER_HISTORY, records, ttl)

    async def get_order_item_history(
        self, order_id: UUID
    ) -> Optional[list[OrderItemHistoryRecord]]:
        key = self.keys.order_item_history_key(order_id)
        return await self.get(key, CacheKind.ORDER_ITEM_HISTORY)

    async def set_order_item_history(
        self,
        order_id: UUID,
        records: list[OrderItemHistoryRecord],
        ttl: Optional[int] = None,
    ) -> bool:
        key = self.keys.order_item_history_key(order_id)
        return await self.set(key, CacheKind.ORDER_ITEM_HISTORY, records, ttl)

    async def get_event_types(self) -> Optional[list[EventTypeSnapshot]]:
        return await self.get(self.keys.event_types_key(), CacheKind.EVENT_TYPES)

    async def set_event_types(
        self,
        event_types: list[EventTypeSnapshot],
        ttl: Optional[int] = None,
    ) -> bool:
        return await self.set(self.keys.event_types_key(), CacheKind.EVENT_TYPES, event_types, ttl)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_statistics(self) -> dict[str, Any]:
        """
        Get cache performance statistics.

        Returns:
            Dictionary containing hit rate, counters and, when a client is
            attached, the Redis client's own counters
        """
        lookups = self._cache_stats["hits"] + self._cache_stats["misses"]
        hit_rate = self._cache_stats["hits"] / lookups * 100 if lookups > 0 else 0.0

        stats: dict[str, Any] = {
            "cache_hits": self._cache_stats["hits"],
            "cache_misses": self._cache_stats["misses"],
            "hit_rate_percent": round(hit_rate, 2),
            "sets": self._cache_stats["sets"],
            "invalidations": self._cache_stats["invalidations"],
            "errors": self._cache_stats["errors"],
        }
        if self._redis_client is not None:
            stats["redis_stats"] = self._redis_client.get_cache_stats()
        return stats

    def reset_statistics(self) -> None:
        """Reset cache performance statistics."""
        self._cache_stats = self._empty_stats()
        logger.info("Cache statistics reset")


_order_cache: Optional[OrderCache] = None


def get_order_cache() -> OrderCache:
    """
    Get or create global order cache instance.

    The Redis connection is opened lazily on first use.
    """
    global _order_cache

    if _order_cache is None:
        _order_cache = OrderCache()

    return _order_cache
