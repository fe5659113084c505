"""
Tests for the ticket intake lifecycle.
"""
from unittest.mock import AsyncMock

import pytest

from support_bot.clients.lark_client import LarkAPIError
from support_bot.dialogue.replies import (
    TICKET_EMPTY_ANSWER_PREFIX,
    TICKET_RESET_MESSAGE,
    TICKET_STEP_STEPS_PROMPT,
    TICKET_STEP_TITLE_PROMPT
)
from support_bot.dialogue.tickets import TicketLifecycleManager, split_steps
from support_bot.services.ticket_service import TicketServiceError
from support_bot.state import ChatState, TicketStep


@pytest.fixture
def state():
    return ChatState(chat_id="oc_user_chat")


async def _complete_intake(manager, state):
    manager.start(state, "login page won't load", "authentication", "ou_user")
    await manager.handle(state, "Login page not loading")
    await manager.handle(state, "Blank screen after entering my password")
    return await manager.handle(state, "Refreshed page, cleared cache, ")


@pytest.mark.unit
def test_split_steps():
    assert split_steps("Refreshed page, cleared cache, ") == ["Refreshed page", "cleared cache"]
    assert split_steps("") == []


@pytest.mark.unit
async def test_full_intake_creates_ticket_and_notifies(ticket_manager, ticket_service, state, fake_messenger):
    """Test three answers produce a stored ticket and a support group post."""
    state.add_exchange("login page won't load", "Login FAQs...", faqs_shown="authentication")

    assert ticket_manager.start(state, "still not working", "authentication", "ou_user") == TICKET_STEP_TITLE_PROMPT

    await ticket_manager.handle(state, "Login page not loading")
    assert state.mode.ticket_step == TicketStep.DESCRIPTION

    reply = await ticket_manager.handle(state, "Blank screen after entering my password")
    assert reply == TICKET_STEP_STEPS_PROMPT
    assert state.mode.ticket_step == TicketStep.STEPS

    reply = await ticket_manager.handle(state, "Refreshed page, tried Firefox")

    assert "Support Ticket Created Successfully" in reply
    assert "PMN-" in reply
    assert "**Urgency**: MEDIUM" in reply
    assert state.mode.is_idle
    assert state.ticket is None

    tickets = await ticket_service.list_tickets()
    assert len(tickets) == 1
    ticket = tickets[0]
    assert ticket["ticket_number"] in reply
    assert ticket["issue_title"] == "Login page not loading"
    assert ticket["steps_attempted"] == ["Refreshed page", "tried Firefox"]
    assert ticket["user_name"] == "Test User"
    assert ticket["user_id"] == "ou_user"
    assert ticket["conversation_context"]["original_message"] == "still not working"
    assert len(ticket["conversation_context"]["turns"]) == 2

    fake_messenger.get_user_info.assert_awaited_once_with("ou_user")
    fake_messenger.send_text.assert_awaited_once()
    chat_id, notification = fake_messenger.send_text.await_args.args
    assert chat_id == "oc_support_team"
    assert ticket["ticket_number"] in notification
    assert "**User**: Test User" in notification


@pytest.mark.unit
async def test_empty_answer_reprompts(ticket_manager, state):
    ticket_manager.start(state, "help", "general")

    reply = await ticket_manager.handle(state, "   ")

    assert reply == TICKET_EMPTY_ANSWER_PREFIX + TICKET_STEP_TITLE_PROMPT
    assert state.mode.ticket_step == TicketStep.TITLE


@pytest.mark.unit
async def test_handle_outside_ticket_mode_resets(ticket_manager, state):
    assert await ticket_manager.handle(state, "hello") == TICKET_RESET_MESSAGE
    assert state.mode.is_idle


@pytest.mark.unit
async def test_storage_failure_returns_contact_details(ticket_manager, ticket_service, state, fake_messenger):
    ticket_service.create_ticket = AsyncMock(side_effect=TicketServiceError("database is locked"))

    reply = await _complete_intake(ticket_manager, state)

    assert "support@pm-next.com" in reply
    assert "https://example.com/support-chat" in reply
    assert state.mode.is_idle
    fake_messenger.send_text.assert_not_awaited()


@pytest.mark.unit
async def test_no_support_group_skips_notification(ticket_service, fake_messenger, state):
    manager = TicketLifecycleManager(ticket_service=ticket_service, messenger=fake_messenger)

    reply = await _complete_intake(manager, state)

    assert "PMN-" in reply
    fake_messenger.send_text.assert_not_awaited()


@pytest.mark.unit
async def test_lark_failures_do_not_block_ticket(ticket_manager, ticket_service, state, fake_messenger):
    fake_messenger.get_user_info.side_effect = LarkAPIError("user lookup denied", code=99991663)
    fake_messenger.send_text.side_effect = LarkAPIError("bot not in chat", code=230002)

    reply = await _complete_intake(ticket_manager, state)

    assert "Support Ticket Created Successfully" in reply
    tickets = await ticket_service.list_tickets()
    assert tickets[0]["user_name"] is None
