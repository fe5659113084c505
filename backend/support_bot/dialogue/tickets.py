"""
Ticket intake lifecycle.

Three prompts (title, description, steps attempted), then the ticket is
stored, the support group is notified and the chat goes back to idle.

Version: 1.0.0
"""
import logging
from typing import Any, Dict, List, Optional

from ..clients.lark_client import LARK_ERRORS
from ..services.ticket_service import TicketService, TicketServiceError
from ..state.chat_state import ChatModeKind, ChatState, TicketDraft, TicketStep
from ..utils.telemetry import track_ticket_created
from .replies import (
    TICKET_EMPTY_ANSWER_PREFIX,
    TICKET_RESET_MESSAGE,
    TICKET_STEP_DESCRIPTION_PROMPT,
    TICKET_STEP_STEPS_PROMPT,
    TICKET_STEP_TITLE_PROMPT,
    build_ticket_failure,
    build_ticket_notification,
    build_ticket_success
)

logger = logging.getLogger(__name__)


STEP_PROMPTS = {
    TicketStep.TITLE: TICKET_STEP_TITLE_PROMPT,
    TicketStep.DESCRIPTION: TICKET_STEP_DESCRIPTION_PROMPT,
    TicketStep.STEPS: TICKET_STEP_STEPS_PROMPT,
}


def split_steps(text: str) -> List[str]:
    return [step.strip() for step in (text or "").split(",") if step.strip()]


class TicketLifecycleManager:
    """
    Drives a chat through ticket intake.

    The caller owns the ChatState and persists it after every call.
    """

    def __init__(
        self,
        ticket_service: TicketService,
        messenger: Any,
        support_group_id: Optional[str] = None,
        support_email: str = "support@pm-next.com",
        support_chat_link: str = "",
        context_snapshot_turns: int = 20
    ):
        self.ticket_service = ticket_service
        self.messenger = messenger
        self.support_group_id = support_group_id
        self.support_email = support_email
        self.support_chat_link = support_chat_link
        self.context_snapshot_turns = context_snapshot_turns

    def start(
        self,
        state: ChatState,
        message: str,
        category: str,
        sender_id: Optional[str] = None
    ) -> str:
        """Enter intake at the title step and return the first prompt."""
        state.start_ticket(
            TicketDraft(
                category=category or "general",
                original_message=message,
                sender_id=sender_id
            )
        )
        logger.info(
            f"Ticket intake started ({state.ticket.category})",
            extra={"chat_id": state.chat_id}
        )
        return TICKET_STEP_TITLE_PROMPT

    async def handle(
        self,
        state: ChatState,
        message: str,
        sender_id: Optional[str] = None
    ) -> str:
        """
        Take the user's answer for the current step.

        Any message is consumed as the answer; an empty one re-prompts.
        """
        step = state.mode.ticket_step
        draft = state.ticket
        if state.mode.kind != ChatModeKind.AWAITING_TICKET_STEP or draft is None or step is None:
            logger.error(
                f"Ticket step handler called in mode {state.mode}",
                extra={"chat_id": state.chat_id}
            )
            state.reset_mode()
            return TICKET_RESET_MESSAGE

        answer = (message or "").strip()
        if not answer:
            return TICKET_EMPTY_ANSWER_PREFIX + STEP_PROMPTS[step]

        if draft.sender_id is None and sender_id:
            draft.sender_id = sender_id

        if step == TicketStep.TITLE:
            draft.title = answer
            state.advance_ticket(TicketStep.DESCRIPTION)
            return TICKET_STEP_DESCRIPTION_PROMPT

        if step == TicketStep.DESCRIPTION:
            draft.description = answer
            state.advance_ticket(TicketStep.STEPS)
            return TICKET_STEP_STEPS_PROMPT

        draft.steps_attempted = split_steps(answer)
        return await self.finalize(state)

    async def finalize(self, state: ChatState) -> str:
        """
        Store the ticket and notify the support group.

        The chat returns to idle whether or not the ticket was stored.
        """
        draft = state.ticket
        context_snapshot = {
            "original_message": draft.original_message,
            "turns": [
                turn.model_dump() for turn in state.recent_context(self.context_snapshot_turns)
            ]
        }
        state.reset_mode()

        user_info = await self._lookup_user(draft.sender_id)

        try:
            ticket = await self.ticket_service.create_ticket({
                "user_id": draft.sender_id,
                "chat_id": state.chat_id,
                "user_name": (user_info or {}).get("name"),
                "issue_category": draft.category,
                "issue_title": draft.title,
                "issue_description": draft.description,
                "steps_attempted": draft.steps_attempted,
                "browser_info": draft.browser,
                "device_info": draft.device,
                "urgency_level": draft.urgency,
                "conversation_context": context_snapshot
            })
        except TicketServiceError as e:
            logger.error(
                f"✗ Failed to create ticket: {e}",
                extra={"chat_id": state.chat_id},
                exc_info=True
            )
            return build_ticket_failure(self.support_email, self.support_chat_link)

        track_ticket_created(ticket["issue_category"])
        await self._notify_support_group(ticket)
        return build_ticket_success(ticket["ticket_number"], ticket["urgency_level"])

    async def _lookup_user(self, sender_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not sender_id:
            return None
        try:
            return await self.messenger.get_user_info(sender_id)
        except LARK_ERRORS as e:
            logger.warning(f"User lookup failed for {sender_id}: {e}")
            return None

    async def _notify_support_group(self, ticket: Dict[str, Any]) -> bool:
        if not self.support_group_id:
            logger.warning(
                f"No support group configured; ticket {ticket['ticket_number']} not announced"
            )
            return False

        try:
            await self.messenger.send_text(
                self.support_group_id,
                build_ticket_notification(ticket)
            )
            logger.info(
                f"✓ Support group notified of {ticket['ticket_number']}",
                extra={"ticket_number": ticket["ticket_number"]}
            )
            return True
        except LARK_ERRORS as e:
            logger.error(f"✗ Support group notification failed: {e}")
            return False


__all__ = [
    'TicketLifecycleManager',
    'STEP_PROMPTS',
    'split_steps',
]
