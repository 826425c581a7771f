"""
Redis client configuration with connection pooling and async support.

This module provides the async Redis client used by the order cache layer:
connection pooling, retry with exponential backoff, health checks, JSON
helpers and SCAN-based deletion of every key under a prefix.
"""

import json
from typing import Any, AsyncIterator, Iterable, Optional, Union

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import (
    ConnectionError,
    RedisError,
    TimeoutError,
)

from order_service.core.config import get_settings
from order_service.core.logging import get_logger

logger = get_logger(__name__)

# Characters with special meaning in a Redis MATCH pattern
_GLOB_SPECIAL = frozenset("*?[]\\")


def escape_glob(value: str) -> str:
    """
    Escape a literal string for use inside a Redis MATCH pattern.

    Args:
        value: Literal key prefix

    Returns:
        Pattern-safe string matching ``value`` literally
    """
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIAL else ch for ch in value)


class RedisClient:
    """
    Async Redis client with connection pooling and retry logic.

    Provides a high-level interface for the handful of Redis operations the
    cache-aside layer needs, with automatic connection management and
    structured error logging. Errors are logged and re-raised; callers
    decide whether a failure is fatal.
    """

    SCAN_BATCH_SIZE = 500

    def __init__(
        self,
        url: Optional[str] = None,
        max_connections: Optional[int] = None,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        retry_on_timeout: bool = True,
        health_check_interval: int = 30,
    ):
        """
        Initialize Redis client with connection pool settings.

        Args:
            url: Redis connection URL (defaults to settings.redis_url)
            max_connections: Maximum pool connections (defaults to settings)
            socket_timeout: Socket operation timeout in seconds
            socket_connect_timeout: Socket connection timeout in seconds
            retry_on_timeout: Enable automatic retry on timeout
            health_check_interval: Health check interval in seconds
        """
        settings = get_settings()
        self._url = url or settings.redis_url
        self._max_connections = max_connections or settings.redis_max_connections
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._retry_on_timeout = retry_on_timeout
        self._health_check_interval = health_check_interval

        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._is_connected = False

        self._cache_hits = 0
        self._cache_misses = 0
        self._total_operations = 0

        logger.info(
            "Redis client initialized",
            url=self._sanitize_url(self._url),
            max_connections=self._max_connections,
            socket_timeout=socket_timeout,
        )

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """
        Sanitize Redis URL for logging (remove password).

        Args:
            url: Redis connection URL

        Returns:
            Sanitized URL safe for logging
        """
        if "://" in url:
            protocol, rest = url.split("://", 1)
            if "@" in rest:
                _, host_part = rest.split("@", 1)
                return f"{protocol}://***@{host_part}"
        return url

    @property
    def is_connected(self) -> bool:
        """Whether the client holds a live connection pool."""
        return self._is_connected

    async def connect(self) -> None:
        """
        Establish Redis connection with retry logic.

        Creates connection pool and verifies connectivity with ping.

        Raises:
            ConnectionError: If connection cannot be established
        """
        if self._is_connected:
            logger.warning("Redis client already connected")
            return

        try:
            retry = Retry(
                ExponentialBackoff(base=0.1, cap=2.0),
                retries=3,
            )

            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=self._max_connections,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
                retry_on_timeout=self._retry_on_timeout,
                health_check_interval=self._health_check_interval,
                retry=retry,
                decode_responses=True,
            )

            self._client = Redis(connection_pool=self._pool)

            await self._client.ping()
            self._is_connected = True

            logger.info(
                "Redis connection established",
                url=self._sanitize_url(self._url),
                pool_size=self._max_connections,
            )

        except (ConnectionError, TimeoutError) as e:
            logger.error(
                "Failed to connect to Redis",
                error=str(e),
                url=self._sanitize_url(self._url),
            )
            await self._release()
            raise ConnectionError(f"Redis connection failed: {e}") from e

    async def _release(self) -> None:
        """Close client and pool without touching the connected flag checks."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None
        self._is_connected = False

    async def disconnect(self) -> None:
        """
        Close Redis connection and cleanup resources.

        Safely closes connection pool and releases all resources.
        """
        if not self._is_connected:
            return

        try:
            await self._release()
            logger.info("Redis connection closed")

        except RedisError as e:
            logger.error(
                "Error during Redis disconnect",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    async def health_check(self) -> bool:
        """
        Perform Redis health check.

        Returns:
            True if Redis is healthy and responsive, False otherwise
        """
        if not self._is_connected or not self._client:
            logger.warning("Redis health check failed: not connected")
            return False

        try:
            await self._client.ping()
            logger.debug("Redis health check passed")
            return True

        except RedisError as e:
            logger.error(
                "Redis health check failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def _ensure_connected(self) -> Redis:
        """
        Ensure Redis client is connected.

        Returns:
            The underlying redis.asyncio client

        Raises:
            ConnectionError: If client is not connected
        """
        if not self._is_connected or self._client is None:
            raise ConnectionError("Redis client is not connected")
        return self._client

    async def get(self, key: str) -> Optional[str]:
        """
        Get value from Redis by key.

        Args:
            key: Cache key

        Returns:
            Cached value or None if key doesn't exist

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If Redis operation fails
        """
        client = self._ensure_connected()

        try:
            self._total_operations += 1
            value = await client.get(key)

            if value is not None:
                self._cache_hits += 1
            else:
                self._cache_misses += 1

            logger.debug("Redis GET operation", key=key, found=value is not None)
            return value

        except RedisError as e:
            logger.error("Redis GET operation failed", key=key, error=str(e))
            raise

    async def set(
        self,
        key: str,
        value: Union[str, bytes, int, float],
        ex: Optional[int] = None,
    ) -> bool:
        """
        Set value in Redis with optional expiration, overwriting any
        existing value.

        Args:
            key: Cache key
            value: Value to cache
            ex: Expiration time in seconds

        Returns:
            True if operation succeeded, False otherwise

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If Redis operation fails
        """
        client = self._ensure_connected()

        try:
            self._total_operations += 1
            result = await client.set(key, value, ex=ex)
            logger.debug("Redis SET operation", key=key, ex=ex, success=bool(result))
            return bool(result)

        except RedisError as e:
            logger.error("Redis SET operation failed", key=key, error=str(e))
            raise

    async def delete(self, *keys: str) -> int:
        """
        Delete one or more keys from Redis.

        Args:
            *keys: Keys to delete

        Returns:
            Number of keys deleted

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If Redis operation fails
        """
        if not keys:
            return 0

        client = self._ensure_connected()

        try:
            self._total_operations += 1
            count = await client.delete(*keys)
            logger.debug("Redis DELETE operation", keys=keys, count=count)
            return count

        except RedisError as e:
            logger.error("Redis DELETE operation failed", keys=keys, error=str(e))
            raise

    async def scan_prefix(self, prefix: str) -> AsyncIterator[str]:
        """
        Iterate over every key that starts with ``prefix``.

        Uses SCAN so the server is never blocked; cost is proportional to
        the keyspace walked, not just the matches.

        Args:
            prefix: Literal key prefix

        Yields:
            Matching keys
        """
        client = self._ensure_connected()
        pattern = f"{escape_glob(prefix)}*"

        async for key in client.scan_iter(match=pattern, count=self.SCAN_BATCH_SIZE):
            yield key

    async def delete_prefix(self, prefix: str) -> int:
        """
        Delete all keys starting with a literal prefix.

        Keys are deleted in batches while scanning.

        Args:
            prefix: Literal key prefix (e.g., "orders:v1:list:")

        Returns:
            Number of keys deleted

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If Redis operation fails
        """
        total = 0
        batch: list[str] = []

        try:
            async for key in self.scan_prefix(prefix):
                batch.append(key)
                if len(batch) >= self.SCAN_BATCH_SIZE:
                    total += await self.delete(*batch)
                    batch = []

            if batch:
                total += await self.delete(*batch)

            logger.debug("Redis DELETE prefix", prefix=prefix, count=total)
            return total

        except RedisError as e:
            logger.error("Redis DELETE prefix failed", prefix=prefix, error=str(e))
            raise

    async def delete_many(self, keys: Iterable[str]) -> int:
        """Delete an iterable of exact keys; empty input is a no-op."""
        unique = list(dict.fromkeys(keys))
        return await self.delete(*unique) if unique else 0

    async def get_json(self, key: str) -> Optional[Any]:
        """
        Get JSON value from Redis by key.

        Args:
            key: Cache key

        Returns:
            Deserialized JSON value or None if key doesn't exist

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If Redis operation fails
            json.JSONDecodeError: If value is not valid JSON
        """
        value = await self.get(key)
        if value is None:
            return None

        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            logger.error("Failed to decode JSON from cache", key=key, error=str(e))
            raise

    async def set_json(
        self,
        key: str,
        value: Any,
        ex: Optional[int] = None,
    ) -> bool:
        """
        Set JSON value in Redis with optional expiration.

        Args:
            key: Cache key
            value: JSON-serializable value
            ex: Expiration time in seconds

        Returns:
            True if operation succeeded, False otherwise

        Raises:
            ConnectionError: If Redis is not connected
            RedisError: If Redis operation fails
            TypeError: If value is not JSON serializable
        """
        try:
            json_value = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error("Failed to serialize value to JSON", key=key, error=str(e))
            raise
        return await self.set(key, json_value, ex=ex)

    def get_cache_stats(self) -> dict[str, Any]:
        """
        Get cache performance statistics.

        Returns:
            Dictionary containing cache hit rate and operation counts
        """
        lookups = self._cache_hits + self._cache_misses
        hit_rate = self._cache_hits / lookups * 100 if lookups > 0 else 0.0

        return {
            "total_operations": self._total_operations,
            "cache_hits": self._cache_hits,
            "cache_misses": self._cache_misses,
            "hit_rate_percent": round(hit_rate, 2),
        }


_redis_client: Optional[RedisClient] = None


async def get_redis_client() -> RedisClient:
    """
    Get or create global Redis client instance.

    Returns:
        Singleton Redis client instance

    Raises:
        ConnectionError: If Redis connection fails
    """
    global _redis_client

    if _redis_client is None:
        client = RedisClient()
        await client.connect()
        _redis_client = client

    return _redis_client


async def close_redis_client() -> None:
    """
    Close global Redis client connection.

    Safely closes the global Redis client and releases resources.
    """
    global _redis_client

    if _redis_client is not None:
        await _redis_client.disconnect()
        _redis_client = None
