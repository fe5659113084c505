"""
Redis-backed chat state store implementation.
Suitable for multi-instance deployments sharing one Redis.

Version: 1.0.0
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import (
    RedisError,
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError
)
from cachetools import TTLCache
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from .chat_state import ChatState
from .state_store import ChatStateStore

logger = logging.getLogger(__name__)


redis_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, max=2.0),
    retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True
)


class RedisChatStateStore(ChatStateStore):
    """
    Redis-backed implementation of ChatStateStore.

    Features:
    - Shared state across instances
    - Expiry handled by Redis key TTLs
    - Optional short-lived L1 cache for hot chats
    - Retries on connection and timeout errors

    The L1 cache is off by default: with several instances a cached
    state can lag behind another instance's write for up to the L1 TTL.
    """

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "chat_state:",
        default_ttl: int = 86400,
        max_connections: int = 50,
        socket_timeout: int = 5,
        socket_connect_timeout: int = 5,
        health_check_interval: int = 30,
        enable_l1_cache: bool = False,
        l1_cache_size: int = 1000,
        l1_cache_ttl: int = 5
    ):
        """
        Initialize Redis chat state store.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for chat state keys
            default_ttl: Default TTL in seconds
            max_connections: Maximum connection pool size
            socket_timeout: Socket timeout in seconds
            socket_connect_timeout: Connection timeout in seconds
            health_check_interval: Health check interval in seconds
            enable_l1_cache: Enable L1 in-memory cache
            l1_cache_size: L1 cache size (number of chats)
            l1_cache_ttl: L1 cache TTL in seconds
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.default_ttl = default_ttl

        self.pool = redis.ConnectionPool.from_url(
            redis_url,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            decode_responses=True,
            health_check_interval=health_check_interval,
            socket_keepalive=True
        )
        self.client: Optional[Redis] = None

        self.enable_l1_cache = enable_l1_cache
        self.l1_cache: Optional[TTLCache] = None
        self.l1_cache_lock = asyncio.Lock()
        if enable_l1_cache:
            self.l1_cache = TTLCache(maxsize=l1_cache_size, ttl=l1_cache_ttl)
            logger.info(f"L1 cache enabled (size={l1_cache_size}, ttl={l1_cache_ttl}s)")

        logger.info(
            f"RedisChatStateStore initialized "
            f"(prefix={key_prefix}, ttl={default_ttl}s, l1_cache={enable_l1_cache})"
        )

    async def _ensure_connection(self) -> Redis:
        """Create the client on first use."""
        if self.client is None:
            self.client = Redis(connection_pool=self.pool)
        return self.client

    def _make_key(self, chat_id: str) -> str:
        return f"{self.key_prefix}{chat_id}"

    # ===========================
    # L1 cache
    # ===========================

    async def _get_from_l1_cache(self, chat_id: str) -> Optional[ChatState]:
        if self.l1_cache is None:
            return None
        async with self.l1_cache_lock:
            cached = self.l1_cache.get(chat_id)
            if cached is not None:
                logger.debug(f"L1 cache hit for chat {chat_id}")
                return cached.model_copy(deep=True)
        return None

    async def _set_in_l1_cache(self, chat_id: str, state: ChatState) -> None:
        if self.l1_cache is None:
            return
        async with self.l1_cache_lock:
            self.l1_cache[chat_id] = state.model_copy(deep=True)

    async def _invalidate_l1_cache(self, chat_id: str) -> None:
        if self.l1_cache is None:
            return
        async with self.l1_cache_lock:
            self.l1_cache.pop(chat_id, None)

    # ===========================
    # Store operations
    # ===========================

    @redis_retry
    async def get(self, chat_id: str) -> Optional[ChatState]:
        """Get chat state, L1 cache first."""
        cached = await self._get_from_l1_cache(chat_id)
        if cached is not None:
            return cached

        try:
            client = await self._ensure_connection()
            state_json = await client.get(self._make_key(chat_id))
            if not state_json:
                return None

            state = ChatState.from_json(state_json)
            await self._set_in_l1_cache(chat_id, state)

            logger.debug(f"Retrieved chat state {chat_id} from Redis")
            return state

        except (RedisConnectionError, RedisTimeoutError):
            raise
        except RedisError as e:
            logger.error(f"Redis error getting chat state {chat_id}: {e}")
            return None

    @redis_retry
    async def set(
        self,
        chat_id: str,
        state: ChatState,
        ttl: Optional[int] = None
    ) -> bool:
        """Store chat state with a fresh TTL."""
        try:
            client = await self._ensure_connection()

            stored = state.model_copy(deep=True)
            now = datetime.utcnow()
            if stored.created_at is None:
                stored.created_at = now
            stored.updated_at = now
            stored.last_activity = now

            ttl = ttl or self.default_ttl
            await client.set(self._make_key(chat_id), stored.to_json(), ex=ttl)
            await self._set_in_l1_cache(chat_id, stored)

            logger.debug(f"Set chat state {chat_id} in Redis (mode={stored.mode}, ttl={ttl}s)")
            return True

        except (RedisConnectionError, RedisTimeoutError):
            raise
        except RedisError as e:
            logger.error(f"Redis error setting chat state {chat_id}: {e}")
            return False

    @redis_retry
    async def delete(self, chat_id: str) -> bool:
        """Delete chat state."""
        try:
            client = await self._ensure_connection()
            deleted = await client.delete(self._make_key(chat_id))
            await self._invalidate_l1_cache(chat_id)

            if deleted > 0:
                logger.debug(f"Deleted chat state {chat_id} from Redis")
                return True
            return False

        except (RedisConnectionError, RedisTimeoutError):
            raise
        except RedisError as e:
            logger.error(f"Redis error deleting chat state {chat_id}: {e}")
            return False

    async def cleanup_expired(self) -> int:
        """Redis expires keys itself; only the L1 cache needs pruning."""
        if self.l1_cache is not None:
            async with self.l1_cache_lock:
                self.l1_cache.expire()
        return 0

    async def get_stats(self) -> Dict[str, Any]:
        """Get store statistics."""
        try:
            client = await self._ensure_connection()

            active = 0
            async for _ in client.scan_iter(match=f"{self.key_prefix}*", count=500):
                active += 1

            memory_info = await client.info('memory')

            stats = {
                "store_type": "redis",
                "active_chats": active,
                "used_memory_human": memory_info.get('used_memory_human', 'unknown'),
                "default_ttl": self.default_ttl,
                "l1_cache_enabled": self.enable_l1_cache
            }

            if self.l1_cache is not None:
                async with self.l1_cache_lock:
                    stats["l1_cache_size"] = len(self.l1_cache)
                    stats["l1_cache_maxsize"] = self.l1_cache.maxsize

            return stats

        except RedisError as e:
            logger.error(f"Redis error getting stats: {e}")
            return {
                "store_type": "redis",
                "error": str(e)
            }

    async def ping(self) -> bool:
        """Test Redis connection."""
        try:
            client = await self._ensure_connection()
            return await client.ping()
        except RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self.client:
            await self.client.aclose()
            await self.pool.disconnect()
            self.client = None
            logger.info("✓ Closed Redis connection")


__all__ = ['RedisChatStateStore']
