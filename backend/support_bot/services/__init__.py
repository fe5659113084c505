"""
Persistence services for tickets and knowledge entries.
"""
from .knowledge_service import KnowledgeService, KnowledgeServiceError
from .ticket_service import TicketNotFoundError, TicketService, TicketServiceError

__all__ = [
    'TicketService',
    'TicketServiceError',
    'TicketNotFoundError',
    'KnowledgeService',
    'KnowledgeServiceError',
]
