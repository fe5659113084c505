"""
Database models package.
Exports all SQLAlchemy models for the application.

Version: 1.0.0
"""

from .ticket import SupportTicket, format_ticket_number, TICKET_STATUSES, URGENCY_LEVELS
from .knowledge import KnowledgeEntry

__all__ = [
    'SupportTicket',
    'KnowledgeEntry',
    'format_ticket_number',
    'TICKET_STATUSES',
    'URGENCY_LEVELS'
]
