"""
Support ticket persistence.
Creates, looks up and updates tickets; ORM work runs in the default
executor so the event loop never blocks on the database.

Version: 1.0.0
"""
import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import desc, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_session_factory
from ..models.ticket import (
    SupportTicket,
    TICKET_STATUSES,
    URGENCY_LEVELS,
    format_ticket_number
)

logger = logging.getLogger(__name__)

MAX_NUMBER_ATTEMPTS = 5
UPDATABLE_FIELDS = ("status", "assigned_to", "resolution_notes", "urgency_level")


class TicketServiceError(Exception):
    """Ticket could not be read or written."""
    pass


class TicketNotFoundError(TicketServiceError):
    """No ticket with the given number."""
    pass


class TicketService:
    """
    Ticket store backed by the ``support_tickets`` table.

    Every public method is async and returns plain dictionaries.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self._session_factory = session_factory
        self._clock = clock

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    @contextmanager
    def _session(self):
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def _run(self, fn: Callable, *args) -> Any:
        try:
            return await asyncio.get_event_loop().run_in_executor(None, fn, *args)
        except TicketServiceError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Ticket database error: {e}", exc_info=True)
            raise TicketServiceError(str(e)) from e

    # ===========================
    # Create
    # ===========================

    async def create_ticket(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Persist a new ticket and assign its number.

        Args:
            data: Ticket fields (chat_id, issue_title and issue_description
                are required)

        Returns:
            Stored ticket as a dictionary

        Raises:
            TicketServiceError: Missing fields or database failure
        """
        for required in ("chat_id", "issue_title", "issue_description"):
            if not data.get(required):
                raise TicketServiceError(f"Missing required field: {required}")

        urgency = data.get("urgency_level") or "medium"
        if urgency not in URGENCY_LEVELS:
            raise TicketServiceError(f"Invalid urgency level: {urgency}")

        ticket = await self._run(self._create_ticket_sync, data)
        logger.info(
            f"✓ Created ticket {ticket['ticket_number']}",
            extra={"chat_id": ticket["chat_id"], "ticket_number": ticket["ticket_number"]}
        )
        return ticket

    def _create_ticket_sync(self, data: Dict[str, Any]) -> Dict[str, Any]:
        now = self._clock()
        day_start = datetime(now.year, now.month, now.day)

        for attempt in range(MAX_NUMBER_ATTEMPTS):
            try:
                with self._session() as db:
                    issued_today = db.query(func.count(SupportTicket.id)).filter(
                        SupportTicket.created_at >= day_start,
                        SupportTicket.created_at < day_start + timedelta(days=1)
                    ).scalar() or 0

                    ticket = SupportTicket(
                        ticket_number=format_ticket_number(now, issued_today + 1 + attempt),
                        user_id=data.get("user_id"),
                        chat_id=data["chat_id"],
                        user_name=data.get("user_name"),
                        issue_category=data.get("issue_category") or "general",
                        issue_title=data["issue_title"],
                        issue_description=data["issue_description"],
                        steps_attempted=list(data.get("steps_attempted") or []),
                        browser_info=data.get("browser_info") or "Not specified",
                        device_info=data.get("device_info") or "Not specified",
                        error_messages=data.get("error_messages"),
                        urgency_level=data.get("urgency_level") or "medium",
                        status="open",
                        conversation_context=data.get("conversation_context") or {},
                        created_at=now,
                        updated_at=now
                    )
                    db.add(ticket)
                    db.flush()
                    return ticket.to_dict()

            except IntegrityError:
                logger.warning(f"Ticket number collision on attempt {attempt + 1}, retrying")

        raise TicketServiceError("Could not allocate a unique ticket number")

    # ===========================
    # Read
    # ===========================

    async def get_ticket(self, ticket_number: str) -> Optional[Dict[str, Any]]:
        return await self._run(self._get_ticket_sync, ticket_number.upper())

    def _get_ticket_sync(self, ticket_number: str) -> Optional[Dict[str, Any]]:
        with self._session() as db:
            ticket = db.query(SupportTicket).filter(
                SupportTicket.ticket_number == ticket_number
            ).first()
            return ticket.to_dict() if ticket else None

    async def list_tickets(
        self,
        status: Optional[str] = None,
        limit: int = 50
    ) -> List[Dict[str, Any]]:
        """Most recent tickets first, optionally filtered by status."""
        if status is not None and status not in TICKET_STATUSES:
            raise TicketServiceError(f"Invalid status: {status}")
        return await self._run(self._list_tickets_sync, status, limit)

    def _list_tickets_sync(self, status: Optional[str], limit: int) -> List[Dict[str, Any]]:
        with self._session() as db:
            query = db.query(SupportTicket)
            if status:
                query = query.filter(SupportTicket.status == status)
            tickets = query.order_by(
                desc(SupportTicket.created_at),
                desc(SupportTicket.id)
            ).limit(limit).all()
            return [t.to_dict() for t in tickets]

    async def find_recent_open_ticket(
        self,
        chat_id: str,
        days: int = 7
    ) -> Optional[Dict[str, Any]]:
        """Newest open ticket raised from ``chat_id`` in the last ``days`` days."""
        return await self._run(self._find_recent_open_sync, chat_id, days)

    def _find_recent_open_sync(self, chat_id: str, days: int) -> Optional[Dict[str, Any]]:
        since = self._clock() - timedelta(days=days)
        with self._session() as db:
            ticket = db.query(SupportTicket).filter(
                SupportTicket.chat_id == chat_id,
                SupportTicket.status == "open",
                SupportTicket.created_at >= since
            ).order_by(
                desc(SupportTicket.created_at),
                desc(SupportTicket.id)
            ).first()
            return ticket.to_dict() if ticket else None

    # ===========================
    # Update
    # ===========================

    async def update_ticket(
        self,
        ticket_number: str,
        changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Apply admin changes to a ticket.

        Moving to ``resolved`` stamps ``resolved_at``.

        Raises:
            TicketNotFoundError: Unknown ticket number
            TicketServiceError: Invalid values or database failure
        """
        changes = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS and v is not None}

        if "status" in changes and changes["status"] not in TICKET_STATUSES:
            raise TicketServiceError(f"Invalid status: {changes['status']}")
        if "urgency_level" in changes and changes["urgency_level"] not in URGENCY_LEVELS:
            raise TicketServiceError(f"Invalid urgency level: {changes['urgency_level']}")

        ticket = await self._run(self._update_ticket_sync, ticket_number.upper(), changes)
        logger.info(
            f"✓ Updated ticket {ticket_number}: {sorted(changes)}",
            extra={"ticket_number": ticket_number}
        )
        return ticket

    def _update_ticket_sync(self, ticket_number: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        with self._session() as db:
            ticket = db.query(SupportTicket).filter(
                SupportTicket.ticket_number == ticket_number
            ).first()
            if ticket is None:
                raise TicketNotFoundError(f"Ticket not found: {ticket_number}")

            now = self._clock()
            for name, value in changes.items():
                setattr(ticket, name, value)
            if changes.get("status") == "resolved" and ticket.resolved_at is None:
                ticket.resolved_at = now
            ticket.updated_at = now

            db.flush()
            return ticket.to_dict()

    async def resolve_ticket(self, ticket_number: str, resolution_notes: str) -> Dict[str, Any]:
        return await self.update_ticket(
            ticket_number,
            {"status": "resolved", "resolution_notes": resolution_notes}
        )

    async def get_stats(self) -> Dict[str, Any]:
        return await self._run(self._get_stats_sync)

    def _get_stats_sync(self) -> Dict[str, Any]:
        with self._session() as db:
            rows = db.query(SupportTicket.status, func.count(SupportTicket.id)).group_by(
                SupportTicket.status
            ).all()
            by_status = {status: count for status, count in rows}
            return {
                "total": sum(by_status.values()),
                "by_status": by_status
            }


__all__ = [
    'TicketService',
    'TicketServiceError',
    'TicketNotFoundError',
]
