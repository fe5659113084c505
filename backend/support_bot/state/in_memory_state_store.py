"""
In-memory chat state store implementation.
Suitable for development and single-instance deployments.

Version: 1.0.0
"""
import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from .chat_state import ChatState
from .state_store import ChatStateStore

logger = logging.getLogger(__name__)


class InMemoryChatStateStore(ChatStateStore):
    """
    In-memory implementation of ChatStateStore.

    Features:
    - Async-safe operations using an asyncio lock
    - LRU eviction when max_chats is reached
    - TTL-based expiration against an injectable clock
    - Deep copies in and out so callers never share state objects

    Limitations:
    - State lost on restart
    - Not shared across multiple instances
    """

    def __init__(
        self,
        max_chats: int = 10000,
        default_ttl: int = 86400,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        """
        Initialize in-memory store.

        Args:
            max_chats: Maximum number of chats to keep
            default_ttl: Default TTL in seconds
            clock: Returns the current UTC time; tests pass a fake clock
        """
        self.states: "OrderedDict[str, ChatState]" = OrderedDict()
        self.expiry: Dict[str, datetime] = {}
        self.max_chats = max_chats
        self.default_ttl = default_ttl
        self.clock = clock
        self.lock = asyncio.Lock()

        logger.info(
            f"InMemoryChatStateStore initialized "
            f"(max_chats={max_chats}, default_ttl={default_ttl}s)"
        )

    def _is_expired(self, chat_id: str, now: datetime) -> bool:
        expires_at = self.expiry.get(chat_id)
        return expires_at is not None and now >= expires_at

    def _remove(self, chat_id: str) -> None:
        self.states.pop(chat_id, None)
        self.expiry.pop(chat_id, None)

    async def get(self, chat_id: str) -> Optional[ChatState]:
        """Get chat state, dropping it if expired."""
        async with self.lock:
            now = self.clock()

            if self._is_expired(chat_id, now):
                self._remove(chat_id)
                logger.debug(f"Chat state {chat_id} expired and removed")
                return None

            state = self.states.get(chat_id)
            if state is None:
                return None

            self.states.move_to_end(chat_id)
            return state.model_copy(deep=True)

    async def set(
        self,
        chat_id: str,
        state: ChatState,
        ttl: Optional[int] = None
    ) -> bool:
        """Store chat state and refresh its expiry."""
        async with self.lock:
            now = self.clock()

            if chat_id not in self.states and len(self.states) >= self.max_chats:
                oldest_id, _ = self.states.popitem(last=False)
                self.expiry.pop(oldest_id, None)
                logger.info(f"Evicted least recently used chat state {oldest_id}")

            stored = state.model_copy(deep=True)
            if stored.created_at is None:
                existing = self.states.get(chat_id)
                stored.created_at = existing.created_at if existing and existing.created_at else now
            stored.updated_at = now
            stored.last_activity = now

            self.states[chat_id] = stored
            self.states.move_to_end(chat_id)

            ttl = ttl or self.default_ttl
            self.expiry[chat_id] = now + timedelta(seconds=ttl)

            logger.debug(f"Stored chat state {chat_id} (mode={stored.mode}, ttl={ttl}s)")
            return True

    async def delete(self, chat_id: str) -> bool:
        """Delete chat state."""
        async with self.lock:
            if chat_id in self.states:
                self._remove(chat_id)
                logger.debug(f"Deleted chat state {chat_id}")
                return True
            return False

    async def cleanup_expired(self) -> int:
        """Remove every expired chat state."""
        async with self.lock:
            now = self.clock()
            expired = [
                chat_id for chat_id, expires_at in self.expiry.items()
                if now >= expires_at
            ]

            for chat_id in expired:
                self._remove(chat_id)

            if expired:
                logger.info(f"Cleaned up {len(expired)} expired chat states")

            return len(expired)

    async def get_stats(self) -> Dict[str, Any]:
        """Get store statistics."""
        async with self.lock:
            now = self.clock()
            active = sum(1 for chat_id in self.states if not self._is_expired(chat_id, now))
            in_ticket = sum(
                1 for state in self.states.values()
                if state.ticket is not None
            )

            return {
                "store_type": "in_memory",
                "total_chats": len(self.states),
                "active_chats": active,
                "expired_chats": len(self.states) - active,
                "chats_in_ticket_intake": in_ticket,
                "max_chats": self.max_chats,
                "utilization": f"{(len(self.states) / self.max_chats * 100):.1f}%",
                "default_ttl": self.default_ttl
            }


__all__ = ['InMemoryChatStateStore']
