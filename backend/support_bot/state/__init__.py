"""
Chat state package.
Per-chat conversation state, its storage backends and event de-duplication.

Version: 1.0.0
"""
from .chat_state import (
    ChatModeKind,
    TicketStep,
    MenuKind,
    ChatMode,
    ContextTurn,
    TicketDraft,
    ChatState,
)
from .state_store import ChatStateStore
from .in_memory_state_store import InMemoryChatStateStore
from .event_dedupe import EventDeduplicator


def create_state_store(
    store_type: str = "in_memory",
    **kwargs
) -> ChatStateStore:
    """
    Factory function to create a chat state store.

    Args:
        store_type: Type of store ('in_memory' or 'redis')
        **kwargs: Store-specific configuration

    Returns:
        ChatStateStore instance

    Examples:
        store = create_state_store('in_memory', max_chats=10000)

        store = create_state_store(
            'redis',
            redis_url='redis://localhost:6379/0',
            key_prefix='chat_state:'
        )
    """
    if store_type == "in_memory":
        return InMemoryChatStateStore(**kwargs)

    elif store_type == "redis":
        from .redis_state_store import RedisChatStateStore
        return RedisChatStateStore(**kwargs)

    else:
        raise ValueError(f"Unknown store type: {store_type}")


__all__ = [
    'ChatModeKind',
    'TicketStep',
    'MenuKind',
    'ChatMode',
    'ContextTurn',
    'TicketDraft',
    'ChatState',
    'ChatStateStore',
    'InMemoryChatStateStore',
    'EventDeduplicator',
    'create_state_store',
]
