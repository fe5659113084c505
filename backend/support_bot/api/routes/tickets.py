"""
Support ticket admin API routes.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ...models.schemas import (
    TicketListResponse,
    TicketResponse,
    TicketStatus,
    TicketUpdateRequest
)
from ...services.ticket_service import (
    TicketNotFoundError,
    TicketService,
    TicketServiceError
)
from ..dependencies import get_ticket_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=TicketListResponse)
async def list_tickets(
    status: Optional[TicketStatus] = None,
    limit: int = Query(50, ge=1, le=200),
    tickets: TicketService = Depends(get_ticket_service)
):
    """
    List tickets, newest first.

    Args:
        status: Only tickets in this status
        limit: Maximum tickets to return
    """
    try:
        items = await tickets.list_tickets(status.value if status else None, limit)
    except TicketServiceError as e:
        logger.error(f"Failed to list tickets: {e}")
        raise HTTPException(status_code=500, detail="Failed to list tickets")

    return TicketListResponse(
        tickets=[TicketResponse(**item) for item in items],
        total=len(items)
    )


@router.get("/{ticket_number}", response_model=TicketResponse)
async def get_ticket(
    ticket_number: str,
    tickets: TicketService = Depends(get_ticket_service)
):
    try:
        ticket = await tickets.get_ticket(ticket_number)
    except TicketServiceError as e:
        logger.error(f"Failed to load ticket {ticket_number}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load ticket")

    if ticket is None:
        raise HTTPException(status_code=404, detail=f"Ticket not found: {ticket_number}")
    return TicketResponse(**ticket)


@router.patch("/{ticket_number}", response_model=TicketResponse)
async def update_ticket(
    ticket_number: str,
    request: TicketUpdateRequest,
    tickets: TicketService = Depends(get_ticket_service)
):
    """
    Update status, assignee, resolution notes or urgency.

    Setting status to ``resolved`` stamps the resolution time.
    """
    changes = request.model_dump(exclude_none=True, mode="json")
    if not changes:
        raise HTTPException(status_code=400, detail="No changes supplied")

    try:
        ticket = await tickets.update_ticket(ticket_number, changes)
    except TicketNotFoundError:
        raise HTTPException(status_code=404, detail=f"Ticket not found: {ticket_number}")
    except TicketServiceError as e:
        logger.error(f"Failed to update ticket {ticket_number}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return TicketResponse(**ticket)
