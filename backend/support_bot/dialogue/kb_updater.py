"""
Knowledge-base updater.

Turns a support agent's solution for a ticket into a knowledge entry:
find the ticket, confirm the message is a solution, distill a Q&A pair
with the LLM, store it, resolve the ticket and reload the knowledge
document. Any failure leaves the message to the dialogue orchestrator.

Version: 1.0.0
"""
import json
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from ..clients.lark_client import LARK_ERRORS
from ..clients.llm_client import LLMClient, LLMError
from ..services.knowledge_service import KnowledgeService, KnowledgeServiceError
from ..services.ticket_service import TicketService, TicketServiceError
from ..utils.telemetry import track_knowledge_update
from .classifiers import extract_ticket_number, is_support_solution
from .events import InboundMessage
from .extraction import extract_message_text
from .knowledge import KnowledgeBase
from .pipeline import StageResult
from .replies import (
    KB_CURATOR_PROMPT,
    build_extraction_prompt,
    build_kb_updated,
    parse_qa_pair
)

logger = logging.getLogger(__name__)


MAX_PARENT_DEPTH = 5
CLOSED_STATUSES = frozenset({"resolved", "closed"})


class KnowledgeUpdateError(Exception):
    """Manual knowledge update could not be completed."""
    pass


class KnowledgeBaseUpdater:
    """
    First stage of the inbound pipeline.

    Looks at support-group messages and threaded replies only; everything
    else passes straight through.
    """

    def __init__(
        self,
        ticket_service: TicketService,
        knowledge_service: KnowledgeService,
        knowledge_base: KnowledgeBase,
        llm: LLMClient,
        messenger: Any,
        support_group_id: Optional[str] = None,
        lookback_days: int = 7,
        support_staff_ids: Optional[Iterable[str]] = None,
        on_reload: Optional[Callable[[], None]] = None
    ):
        self.ticket_service = ticket_service
        self.knowledge_service = knowledge_service
        self.knowledge_base = knowledge_base
        self.llm = llm
        self.messenger = messenger
        self.support_group_id = support_group_id
        self.lookback_days = lookback_days
        self.support_staff_ids = frozenset(support_staff_ids or ())
        self.on_reload = on_reload

        self.updates_applied = 0

    def in_support_group(self, message: InboundMessage) -> bool:
        return bool(self.support_group_id) and message.chat_id == self.support_group_id

    def is_eligible(self, message: InboundMessage) -> bool:
        return self.in_support_group(message) or message.is_thread_reply

    def may_resolve(self, message: InboundMessage, ticket: Dict[str, Any]) -> bool:
        """
        Whether the sender can resolve ``ticket`` with this message.

        Anyone in the support group can. Elsewhere the reporter never can,
        and when support staff are configured only they can.
        """
        if self.in_support_group(message):
            return True

        sender_id = message.sender_id
        if not sender_id or sender_id == ticket.get("user_id"):
            return False
        if self.support_staff_ids:
            return sender_id in self.support_staff_ids
        return True

    async def process(self, message: InboundMessage) -> StageResult:
        """Run the updater on one message; never raises."""
        if not self.is_eligible(message) or not message.text:
            return StageResult.pass_through()

        try:
            return await self._process(message)
        except Exception as e:
            logger.error(
                f"✗ Knowledge update failed: {e}",
                extra={"chat_id": message.chat_id},
                exc_info=True
            )
            return StageResult.pass_through()

    async def _process(self, message: InboundMessage) -> StageResult:
        ticket_number, via_thread = await self.find_ticket_number(message)
        if not ticket_number:
            return StageResult.pass_through()

        if not is_support_solution(message.text, is_reply_to_ticket=via_thread):
            logger.debug(f"Message about {ticket_number} is not a solution")
            return StageResult.pass_through()

        ticket = await self.ticket_service.get_ticket(ticket_number)
        if ticket is None:
            logger.info(f"Ticket {ticket_number} referenced but not found")
            return StageResult.pass_through()
        if ticket["status"] in CLOSED_STATUSES:
            logger.info(f"Ticket {ticket_number} already {ticket['status']}; skipping")
            return StageResult.pass_through()
        if not self.may_resolve(message, ticket):
            logger.info(
                f"Reply on {ticket_number} is not from support staff; skipping",
                extra={"chat_id": message.chat_id, "ticket_number": ticket_number}
            )
            return StageResult.pass_through()

        qa_pair = await self.apply_solution(ticket, message.text)
        return StageResult.text(
            build_kb_updated(ticket["ticket_number"], qa_pair),
            stage="knowledge_update"
        )

    # ===========================
    # Ticket resolution
    # ===========================

    async def find_ticket_number(self, message: InboundMessage) -> Tuple[Optional[str], bool]:
        """
        Locate the ticket a message refers to.

        Order: the message text, the raw event payload, the parent message
        chain, then the newest open ticket in this chat (thread replies
        only).

        Returns:
            ``(ticket_number, found_via_thread)``
        """
        number = extract_ticket_number(message.text)
        if number:
            return number, False

        number = extract_ticket_number(json.dumps(message.raw_event, ensure_ascii=False))
        if number:
            return number, False

        if not message.is_thread_reply:
            return None, False

        number = await self._search_parent_chain(message)
        if number:
            return number, True

        try:
            recent = await self.ticket_service.find_recent_open_ticket(
                message.chat_id,
                days=self.lookback_days
            )
        except TicketServiceError as e:
            logger.warning(f"Recent ticket lookup failed: {e}")
            return None, False

        if recent:
            logger.info(
                f"Using recent open ticket {recent['ticket_number']} for thread reply",
                extra={"chat_id": message.chat_id}
            )
            return recent["ticket_number"], True
        return None, False

    async def _search_parent_chain(self, message: InboundMessage) -> Optional[str]:
        visited = set()
        next_id = message.parent_id or message.root_id

        while next_id and next_id not in visited and len(visited) < MAX_PARENT_DEPTH:
            visited.add(next_id)
            try:
                parent = await self.messenger.get_message(next_id)
            except LARK_ERRORS as e:
                logger.warning(f"Could not fetch parent message {next_id}: {e}")
                return None
            if not parent:
                return None

            body = parent.get("body") or {}
            number = (
                extract_ticket_number(extract_message_text(body.get("content")))
                or extract_ticket_number(json.dumps(parent, ensure_ascii=False))
            )
            if number:
                return number

            next_id = parent.get("parent_id") or parent.get("root_id")

        return None

    # ===========================
    # Applying a solution
    # ===========================

    async def extract_qa_pair(self, ticket: Dict[str, Any], solution: str) -> Dict[str, str]:
        """Distill a Q&A pair; falls back to the ticket title and solution."""
        raw = None
        try:
            raw = await self.llm.extract(
                KB_CURATOR_PROMPT,
                build_extraction_prompt(ticket, solution)
            )
        except LLMError as e:
            logger.warning(f"Q&A extraction failed, using fallback: {e}")

        return parse_qa_pair(raw, ticket, solution)

    async def apply_solution(self, ticket: Dict[str, Any], solution: str) -> Dict[str, str]:
        """
        Store the solution as knowledge and resolve the ticket.

        Raises:
            KnowledgeServiceError: Entry could not be stored
            TicketServiceError: Ticket could not be resolved
        """
        ticket_number = ticket["ticket_number"]
        qa_pair = await self.extract_qa_pair(ticket, solution)

        await self.knowledge_service.add_entry(
            question=qa_pair["question"],
            answer=qa_pair["answer"],
            category=qa_pair["category"],
            ticket_source=ticket_number
        )
        await self.ticket_service.resolve_ticket(ticket_number, solution)
        await self.reload_knowledge()

        self.updates_applied += 1
        track_knowledge_update()
        logger.info(
            f"✓ Knowledge base updated from {ticket_number}",
            extra={"ticket_number": ticket_number}
        )
        return qa_pair

    async def reload_knowledge(self) -> Dict[str, Any]:
        entries = await self.knowledge_service.list_active_entries()
        self.knowledge_base.reload(entries)
        if self.on_reload is not None:
            self.on_reload()
        return self.knowledge_base.stats()

    async def update(
        self,
        ticket_number: str,
        solution: str,
        force: bool = False
    ) -> Dict[str, Any]:
        """
        Manual update for a named ticket.

        ``force`` skips the solution classifier.

        Raises:
            KnowledgeUpdateError: Unknown ticket, closed ticket or a
                message that does not read as a solution
        """
        ticket_number = (extract_ticket_number(ticket_number) or ticket_number or "").upper()
        if not solution or not solution.strip():
            raise KnowledgeUpdateError("Solution text is required")

        if not force and not is_support_solution(solution, is_reply_to_ticket=True):
            raise KnowledgeUpdateError("Message does not look like a solution")

        ticket = await self.ticket_service.get_ticket(ticket_number)
        if ticket is None:
            raise KnowledgeUpdateError(f"Ticket not found: {ticket_number}")
        if ticket["status"] in CLOSED_STATUSES and not force:
            raise KnowledgeUpdateError(f"Ticket {ticket_number} is already {ticket['status']}")

        try:
            qa_pair = await self.apply_solution(ticket, solution.strip())
        except (KnowledgeServiceError, TicketServiceError) as e:
            raise KnowledgeUpdateError(str(e)) from e

        return {
            "ticket_number": ticket_number,
            "qa_pair": qa_pair,
            "message": build_kb_updated(ticket_number, qa_pair)
        }


__all__ = [
    'KnowledgeBaseUpdater',
    'KnowledgeUpdateError',
    'MAX_PARENT_DEPTH',
]
