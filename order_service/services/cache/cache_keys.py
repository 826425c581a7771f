"""
Cache key generation for the order cache.

Every key lives under ``{namespace}:{version}:`` and keys for the views of one
resource family share a prefix, so a single prefix invalidation after a write
purges every cached view that write touched, including query shapes (page
sizes, offsets, date ranges) the writer cannot enumerate.
"""

import hashlib
import json
from datetime import date, datetime
from typing import Any, Optional, Union
from uuid import UUID

from order_service.core.config import get_settings
from order_service.core.logging import get_logger

logger = get_logger(__name__)

KeyPart = Union[str, UUID]


class CacheKeyManager:
    """
    Centralized cache key management with versioning and namespace support.

    Keys:
    - ``{ns}:{v}:order:{order_id}:detail|items|history|item_history``
    - ``{ns}:{v}:list:page:{hash}`` and ``list:customer|date|range:...``
    - ``{ns}:{v}:event_types:all``
    """

    PATTERN_ORDER_VIEW = "{namespace}:{version}:order:{order_id}:{view}"
    PATTERN_ORDER_FAMILY = "{namespace}:{version}:order:{order_id}:"
    PATTERN_LIST_PAGE = "{namespace}:{version}:list:page:{hash}"
    PATTERN_LIST_CUSTOMER = "{namespace}:{version}:list:customer:{customer_id}"
    PATTERN_LIST_DATE = "{namespace}:{version}:list:date:{day}"
    PATTERN_LIST_RANGE = "{namespace}:{version}:list:range:{hash}"
    PATTERN_LIST_FAMILY = "{namespace}:{version}:list:"
    PATTERN_EVENT_TYPES = "{namespace}:{version}:event_types:all"

    VIEW_DETAIL = "detail"
    VIEW_ITEMS = "items"
    VIEW_HISTORY = "history"
    VIEW_ITEM_HISTORY = "item_history"

    def __init__(self, namespace: Optional[str] = None, version: Optional[str] = None):
        """
        Initialize cache key manager.

        Args:
            namespace: Key namespace, defaults to settings.cache_namespace
            version: Key version, defaults to settings.cache_key_version
        """
        settings = get_settings()
        self.namespace = namespace or settings.cache_namespace
        self.version = version or settings.cache_key_version
        logger.debug(
            "Cache key manager initialized",
            namespace=self.namespace,
            version=self.version,
        )

    def _generate_hash(self, data: dict[str, Any]) -> str:
        """
        Generate deterministic hash from dictionary data.

        Args:
            data: Dictionary to hash

        Returns:
            First 16 hex characters of the SHA-256 of the sorted JSON
        """
        sorted_data = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(sorted_data.encode("utf-8")).hexdigest()[:16]

    def _sanitize_key_part(self, value: KeyPart) -> str:
        """Replace separators and whitespace, and cap the length of a key part."""
        sanitized = str(value).replace(":", "_").replace(" ", "_")
        return sanitized[:200]

    def _format(self, pattern: str, **parts: Any) -> str:
        return pattern.format(namespace=self.namespace, version=self.version, **parts)

    # ------------------------------------------------------------------
    # Per-order views
    # ------------------------------------------------------------------

    def _order_view_key(self, order_id: KeyPart, view: str) -> str:
        return self._format(
            self.PATTERN_ORDER_VIEW,
            order_id=self._sanitize_key_part(order_id),
            view=view,
        )

    def order_detail_key(self, order_id: KeyPart) -> str:
        """Key for a single order."""
        return self._order_view_key(order_id, self.VIEW_DETAIL)

    def order_items_key(self, order_id: KeyPart) -> str:
        """Key for an order's item set."""
        return self._order_view_key(order_id, self.VIEW_ITEMS)

    def order_history_key(self, order_id: KeyPart) -> str:
        """Key for an order's field-level audit history."""
        return self._order_view_key(order_id, self.VIEW_HISTORY)

    def order_item_history_key(self, order_id: KeyPart) -> str:
        """Key for an order's item-level audit history."""
        return self._order_view_key(order_id, self.VIEW_ITEM_HISTORY)

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def order_page_key(self, page_size: int, offset: int) -> str:
        """
        Generate cache key for a paginated order listing.

        Args:
            page_size: Orders per page
            offset: Number of orders skipped

        Returns:
            Cache key string
        """
        param_hash = self._generate_hash({"page_size": page_size, "offset": offset})
        key = self._format(self.PATTERN_LIST_PAGE, hash=param_hash)
        logger.debug("Generated order page key", key=key, page_size=page_size, offset=offset)
        return key

    def orders_by_customer_key(self, customer_id: KeyPart) -> str:
        """Key for the listing of one customer's orders."""
        return self._format(
            self.PATTERN_LIST_CUSTOMER,
            customer_id=self._sanitize_key_part(customer_id),
        )

    def orders_by_date_key(self, day: Union[date, datetime]) -> str:
        """Key for the listing of orders whose event falls on ``day``."""
        if isinstance(day, datetime):
            day = day.date()
        return self._format(self.PATTERN_LIST_DATE, day=day.isoformat())

    def orders_by_date_range_key(
        self,
        start: Union[date, datetime],
        end: Union[date, datetime],
    ) -> str:
        """
        Generate cache key for a date range listing.

        Args:
            start: First day of the range
            end: Last day of the range

        Returns:
            Cache key string
        """
        param_hash = self._generate_hash(
            {"start": start.isoformat(), "end": end.isoformat()}
        )
        key = self._format(self.PATTERN_LIST_RANGE, hash=param_hash)
        logger.debug("Generated order range key", key=key, start=str(start), end=str(end))
        return key

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def event_types_key(self) -> str:
        """Key for the full event type table."""
        return self._format(self.PATTERN_EVENT_TYPES)

    # ------------------------------------------------------------------
    # Family prefixes
    # ------------------------------------------------------------------

    def namespace_prefix(self) -> str:
        """Prefix shared by every key this service owns."""
        return f"{self.namespace}:{self.version}:"

    def order_family_prefix(self, order_id: KeyPart) -> str:
        """Prefix shared by every view derived from one order."""
        return self._format(
            self.PATTERN_ORDER_FAMILY,
            order_id=self._sanitize_key_part(order_id),
        )

    def list_family_prefix(self) -> str:
        """Prefix shared by every order listing."""
        return self._format(self.PATTERN_LIST_FAMILY)

    def order_keys(self, order_id: KeyPart) -> list[str]:
        """All exact keys of the views derived from one order."""
        return [
            self.order_detail_key(order_id),
            self.order_items_key(order_id),
            self.order_history_key(order_id),
            self.order_item_history_key(order_id),
        ]

    def owns(self, key_or_prefix: str) -> bool:
        """Whether a key or prefix lies inside this service's namespace."""
        return key_or_prefix.startswith(self.namespace_prefix())


_cache_key_manager: Optional[CacheKeyManager] = None


def get_cache_key_manager() -> CacheKeyManager:
    """
    Get or create global cache key manager instance.

    Returns:
        CacheKeyManager instance
    """
    global _cache_key_manager

    if _cache_key_manager is None:
        _cache_key_manager = CacheKeyManager()
        logger.info("Created global cache key manager instance")

    return _cache_key_manager
