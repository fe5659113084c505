"""
FastAPI dependencies resolving the components built at startup.
"""
from typing import Any

from fastapi import HTTPException, Request

from ..agents.support_agent import SupportBotAgent
from ..dialogue.kb_updater import KnowledgeBaseUpdater
from ..dialogue.knowledge import KnowledgeBase
from ..services.knowledge_service import KnowledgeService
from ..services.ticket_service import TicketService
from ..state.event_dedupe import EventDeduplicator


def _component(request: Request, name: str) -> Any:
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return component


def get_agent(request: Request) -> SupportBotAgent:
    return _component(request, "agent")


def get_event_dedupe(request: Request) -> EventDeduplicator:
    return _component(request, "event_dedupe")


def get_ticket_service(request: Request) -> TicketService:
    return _component(request, "ticket_service")


def get_knowledge_service(request: Request) -> KnowledgeService:
    return _component(request, "knowledge_service")


def get_knowledge_base(request: Request) -> KnowledgeBase:
    return _component(request, "knowledge_base")


def get_kb_updater(request: Request) -> KnowledgeBaseUpdater:
    return _component(request, "kb_updater")


__all__ = [
    'get_agent',
    'get_event_dedupe',
    'get_ticket_service',
    'get_knowledge_service',
    'get_knowledge_base',
    'get_kb_updater',
]
