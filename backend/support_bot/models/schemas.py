"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional, Dict, Any
from datetime import datetime
from enum import Enum


class TicketStatus(str, Enum):
    """Ticket status enumeration."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class UrgencyLevel(str, Enum):
    """Ticket urgency enumeration."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Request Schemas

class TicketUpdateRequest(BaseModel):
    """Partial update of a support ticket."""
    status: Optional[TicketStatus] = None
    assigned_to: Optional[str] = Field(None, max_length=255)
    resolution_notes: Optional[str] = Field(None, max_length=10000)
    urgency_level: Optional[UrgencyLevel] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "resolved",
                "assigned_to": "support-agent-1",
                "resolution_notes": "Cleared the browser cache"
            }
        }
    )


class KnowledgeUpdateRequest(BaseModel):
    """Manual request to turn a ticket solution into a knowledge entry."""
    ticket_number: str = Field(..., alias="ticketNumber", min_length=5, max_length=32)
    solution: str = Field(..., min_length=1, max_length=10000)
    force_update: bool = Field(False, alias="forceUpdate")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "ticketNumber": "PMN-20240101-0001",
                "solution": "Solution: clear the browser cache and log in again.",
                "forceUpdate": False
            }
        }
    )

    @field_validator('ticket_number')
    @classmethod
    def normalize_ticket_number(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator('solution')
    @classmethod
    def validate_solution(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Solution cannot be empty')
        return v.strip()


# Response Schemas

class TicketResponse(BaseModel):
    """Support ticket response."""
    id: int
    ticket_number: str
    user_id: Optional[str] = None
    chat_id: str
    user_name: Optional[str] = None
    issue_category: str
    issue_title: str
    issue_description: str
    steps_attempted: List[str] = []
    browser_info: Optional[str] = None
    device_info: Optional[str] = None
    urgency_level: str
    status: str
    assigned_to: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TicketListResponse(BaseModel):
    """List of tickets."""
    tickets: List[TicketResponse]
    total: int


class KnowledgeUpdateResponse(BaseModel):
    """Result of a knowledge base update."""
    success: bool
    ticket_number: str
    message: str
    question: Optional[str] = None
    category: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    version: str
    services: Dict[str, str] = {}
    details: Dict[str, Any] = {}

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "version": "1.0.0",
                "services": {
                    "database": "healthy",
                    "state_store": "healthy",
                    "knowledge_base": "healthy"
                }
            }
        }
    )


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    message: str
    request_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = {}
