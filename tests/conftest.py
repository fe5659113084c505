"""
Pytest configuration and shared fixtures for testing.
Provides an in-memory database, fake Lark and LLM clients, and the
dialogue components wired the way the application wires them.
"""
import json
import os
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set testing environment before importing the application
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENVIRONMENT"] = "testing"
os.environ["DEBUG"] = "false"
os.environ["ENABLE_TELEMETRY"] = "false"
os.environ["STATE_STORE_TYPE"] = "in_memory"
for _name in ("OPENAI_API_KEY", "LARK_APP_ID", "LARK_APP_SECRET", "LARK_SUPPORT_GROUP_ID"):
    os.environ.pop(_name, None)

from support_bot.database import Base
from support_bot.models import KnowledgeEntry, SupportTicket  # noqa: F401
from support_bot.agents.support_agent import SupportBotAgent
from support_bot.clients.call_wrapper import reset_all_circuit_breakers
from support_bot.config import DEFAULT_KNOWLEDGE_BASE_PATH
from support_bot.dialogue.analytics import BotAnalytics
from support_bot.dialogue.events import InboundMessage
from support_bot.dialogue.kb_updater import KnowledgeBaseUpdater
from support_bot.dialogue.knowledge import KnowledgeBase
from support_bot.dialogue.orchestrator import DialogueOrchestrator
from support_bot.dialogue.response_cache import ResponseCache
from support_bot.dialogue.tickets import TicketLifecycleManager
from support_bot.services.knowledge_service import KnowledgeService
from support_bot.services.ticket_service import TicketService
from support_bot.state import EventDeduplicator, InMemoryChatStateStore


SUPPORT_GROUP_ID = "oc_support_team"
BOT_OPEN_ID = "ou_bot"


# ===========================
# Resilience Fixtures
# ===========================

@pytest.fixture(autouse=True)
def reset_breakers():
    """Circuit breakers are process-wide; start every test closed."""
    reset_all_circuit_breakers()
    yield
    reset_all_circuit_breakers()


# ===========================
# Database Fixtures
# ===========================

@pytest.fixture
def db_engine():
    """
    Create in-memory SQLite engine for testing.
    Scope: function (every test gets empty tables).
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def ticket_service(session_factory) -> TicketService:
    return TicketService(session_factory=session_factory)


@pytest.fixture
def knowledge_service(session_factory) -> KnowledgeService:
    return KnowledgeService(session_factory=session_factory)


# ===========================
# Client Mock Fixtures
# ===========================

@pytest.fixture
def fake_messenger():
    """Lark client double recording every send."""
    messenger = MagicMock()
    messenger.configured = True
    messenger.send_text = AsyncMock(return_value="om_sent")
    messenger.send_card = AsyncMock(return_value="om_card")
    messenger.get_user_info = AsyncMock(return_value={
        "user_id": "ou_user",
        "name": "Test User",
        "email": "test.user@example.com"
    })
    messenger.get_message = AsyncMock(return_value=None)
    messenger.cleanup = AsyncMock()
    return messenger


@pytest.fixture
def fake_llm():
    """LLM client double; answers and extractions are canned."""
    llm = MagicMock()
    llm.configured = True
    llm.answer = AsyncMock(return_value="You can do that from the Candidates page.")
    llm.extract = AsyncMock(return_value=json.dumps({
        "question": "How do I fix the login page not loading?",
        "answer": "Clear your browser cache and retry.",
        "category": "authentication"
    }))
    llm.get_status = MagicMock(return_value={
        "configured": True,
        "model": "test-model",
        "active_requests": 0,
        "queued_requests": 0,
        "max_concurrent_requests": 3
    })
    llm.cleanup = AsyncMock()
    return llm


# ===========================
# Dialogue Fixtures
# ===========================

@pytest.fixture
def knowledge_base() -> KnowledgeBase:
    kb = KnowledgeBase(path=DEFAULT_KNOWLEDGE_BASE_PATH)
    kb.load([])
    return kb


@pytest.fixture
def response_cache() -> ResponseCache:
    return ResponseCache(ttl_seconds=3600)


@pytest.fixture
def ticket_manager(ticket_service, fake_messenger) -> TicketLifecycleManager:
    return TicketLifecycleManager(
        ticket_service=ticket_service,
        messenger=fake_messenger,
        support_group_id=SUPPORT_GROUP_ID,
        support_email="support@pm-next.com",
        support_chat_link="https://example.com/support-chat"
    )


@pytest.fixture
def orchestrator(knowledge_base, response_cache, fake_llm, ticket_manager) -> DialogueOrchestrator:
    return DialogueOrchestrator(
        knowledge_base=knowledge_base,
        response_cache=response_cache,
        llm=fake_llm,
        tickets=ticket_manager
    )


@pytest.fixture
def kb_updater(
    ticket_service,
    knowledge_service,
    knowledge_base,
    fake_llm,
    fake_messenger,
    response_cache
) -> KnowledgeBaseUpdater:
    return KnowledgeBaseUpdater(
        ticket_service=ticket_service,
        knowledge_service=knowledge_service,
        knowledge_base=knowledge_base,
        llm=fake_llm,
        messenger=fake_messenger,
        support_group_id=SUPPORT_GROUP_ID,
        on_reload=response_cache.clear
    )


@pytest.fixture
def state_store() -> InMemoryChatStateStore:
    return InMemoryChatStateStore(max_chats=100, default_ttl=300)


@pytest.fixture
def agent(state_store, orchestrator, kb_updater, fake_messenger) -> SupportBotAgent:
    return SupportBotAgent(
        state_store=state_store,
        orchestrator=orchestrator,
        kb_updater=kb_updater,
        messenger=fake_messenger,
        analytics=BotAnalytics(),
        bot_ids=[BOT_OPEN_ID]
    )


# ===========================
# Application Fixtures
# ===========================

@pytest.fixture
def bot_app(agent, ticket_service, knowledge_service, knowledge_base, kb_updater, fake_messenger, fake_llm):
    """
    FastAPI app with components attached directly to ``app.state``.

    The lifespan is not run, so no real database or client is touched.
    """
    from support_bot.main import create_app

    app = create_app()
    app.state.agent = agent
    app.state.event_dedupe = EventDeduplicator(max_events=100, trim_to=50)
    app.state.ticket_service = ticket_service
    app.state.knowledge_service = knowledge_service
    app.state.knowledge_base = knowledge_base
    app.state.kb_updater = kb_updater
    app.state.lark_client = fake_messenger
    app.state.llm_client = fake_llm
    return app


@pytest.fixture
def client(bot_app):
    from fastapi.testclient import TestClient
    return TestClient(bot_app)


# ===========================
# Message Fixtures
# ===========================

@pytest.fixture
def make_message() -> Callable[..., InboundMessage]:
    """Build an InboundMessage; direct message from a user by default."""
    def _make(
        text: str,
        chat_id: str = "oc_user_chat",
        chat_type: str = "p2p",
        sender_id: Optional[str] = "ou_user",
        sender_type: str = "user",
        **kwargs: Any
    ) -> InboundMessage:
        return InboundMessage(
            chat_id=chat_id,
            text=text,
            message_id=kwargs.pop("message_id", "om_incoming"),
            chat_type=chat_type,
            message_type="text",
            sender_id=sender_id,
            sender_type=sender_type,
            **kwargs
        )

    return _make


@pytest.fixture
def ticket_data() -> Dict[str, Any]:
    return {
        "user_id": "ou_user",
        "chat_id": "oc_user_chat",
        "user_name": "Test User",
        "issue_category": "authentication",
        "issue_title": "Login page not loading",
        "issue_description": "The login page shows a blank screen after entering my password.",
        "steps_attempted": ["Refreshed page", "Tried Firefox"],
        "urgency_level": "medium"
    }


def message_event(
    text: str,
    event_id: str = "evt_001",
    chat_id: str = "oc_user_chat",
    chat_type: str = "p2p",
    sender_open_id: str = "ou_user",
    **message_fields: Any
) -> Dict[str, Any]:
    """Lark v2 ``im.message.receive_v1`` envelope."""
    return {
        "schema": "2.0",
        "header": {
            "event_id": event_id,
            "event_type": "im.message.receive_v1",
            "create_time": str(int(datetime.utcnow().timestamp() * 1000)),
            "app_id": "cli_test"
        },
        "event": {
            "sender": {
                "sender_id": {"open_id": sender_open_id, "user_id": "u123"},
                "sender_type": "user"
            },
            "message": {
                "message_id": f"om_{event_id}",
                "chat_id": chat_id,
                "chat_type": chat_type,
                "message_type": "text",
                "content": json.dumps({"text": text}),
                **message_fields
            }
        }
    }


@pytest.fixture
def lark_event() -> Callable[..., Dict[str, Any]]:
    return message_event
