"""
Abstract chat state store interface.
Defines the contract for per-chat state persistence implementations.

Version: 1.0.0
"""
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
from datetime import datetime

from .chat_state import ChatState


class ChatStateStore(ABC):
    """
    Abstract base class for chat state storage.

    Implementations must provide async-safe operations for:
    - Getting chat state
    - Setting chat state (with expiry)
    - Deleting chat state
    - Cleaning up expired state
    """

    @abstractmethod
    async def get(self, chat_id: str) -> Optional[ChatState]:
        """
        Get chat state by chat id.

        Args:
            chat_id: Chat identifier

        Returns:
            ChatState or None if not found or expired
        """
        pass

    @abstractmethod
    async def set(
        self,
        chat_id: str,
        state: ChatState,
        ttl: Optional[int] = None
    ) -> bool:
        """
        Store chat state.

        Args:
            chat_id: Chat identifier
            state: State to store
            ttl: Time-to-live in seconds (optional)

        Returns:
            True if successful
        """
        pass

    @abstractmethod
    async def delete(self, chat_id: str) -> bool:
        """
        Delete chat state.

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """
        Clean up expired chat state.

        Returns:
            Number of chats cleaned up
        """
        pass

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        """Get store statistics."""
        pass

    async def get_or_create(self, chat_id: str) -> ChatState:
        """
        Get chat state or a fresh one if none exists.

        A fresh state is not stored until ``set`` is called.
        """
        state = await self.get(chat_id)
        if state is not None:
            return state
        return ChatState(chat_id=chat_id, created_at=datetime.utcnow())

    async def close(self) -> None:
        """Release any connections held by the store."""
        return None

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform health check on the store.

        Returns:
            Dictionary with health status
        """
        try:
            test_chat_id = f"health_check_{datetime.utcnow().timestamp()}"
            test_state = ChatState(chat_id=test_chat_id)

            set_success = await self.set(test_chat_id, test_state, ttl=10)
            retrieved = await self.get(test_chat_id)
            get_success = retrieved is not None
            delete_success = await self.delete(test_chat_id)

            stats = await self.get_stats()

            return {
                "healthy": set_success and get_success and delete_success,
                "operations": {
                    "set": set_success,
                    "get": get_success,
                    "delete": delete_success
                },
                "stats": stats
            }

        except Exception as e:
            return {
                "healthy": False,
                "error": str(e)
            }


__all__ = ['ChatStateStore']
