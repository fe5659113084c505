"""
Support ticket model.
"""
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text

from ..database import Base

TICKET_PREFIX = "PMN"

TICKET_STATUSES = ("open", "in_progress", "resolved", "closed")
URGENCY_LEVELS = ("low", "medium", "high", "critical")


def format_ticket_number(created: datetime, sequence: int) -> str:
    """Build a ticket number such as ``PMN-20240101-0001``."""
    return f"{TICKET_PREFIX}-{created:%Y%m%d}-{sequence:04d}"


class SupportTicket(Base):
    """
    Support ticket collected through the chat intake flow.
    """
    __tablename__ = "support_tickets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ticket_number = Column(String(32), unique=True, nullable=False, index=True)

    user_id = Column(String(100), nullable=True, index=True)
    chat_id = Column(String(100), nullable=False, index=True)
    user_name = Column(String(255), nullable=True)

    issue_category = Column(String(50), nullable=False, default="general")
    issue_title = Column(String(500), nullable=False)
    issue_description = Column(Text, nullable=False)
    steps_attempted = Column(JSON, default=list)
    browser_info = Column(String(255), default="Not specified")
    device_info = Column(String(255), default="Not specified")
    error_messages = Column(Text, nullable=True)

    urgency_level = Column(String(20), nullable=False, default="medium")
    status = Column(String(20), nullable=False, default="open", index=True)
    assigned_to = Column(String(255), nullable=True)

    conversation_context = Column(JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)
    resolution_notes = Column(Text, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "ticket_number": self.ticket_number,
            "user_id": self.user_id,
            "chat_id": self.chat_id,
            "user_name": self.user_name,
            "issue_category": self.issue_category,
            "issue_title": self.issue_title,
            "issue_description": self.issue_description,
            "steps_attempted": list(self.steps_attempted or []),
            "browser_info": self.browser_info,
            "device_info": self.device_info,
            "error_messages": self.error_messages,
            "urgency_level": self.urgency_level,
            "status": self.status,
            "assigned_to": self.assigned_to,
            "conversation_context": dict(self.conversation_context or {}),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution_notes": self.resolution_notes,
        }

    def __repr__(self):
        return f"<SupportTicket(number={self.ticket_number}, status={self.status})>"
