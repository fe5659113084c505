"""
Tests for the dialogue orchestrator.
"""
from datetime import datetime, timedelta

import pytest

from support_bot.clients.llm_client import LLMError, LLMRateLimitError, LLMTimeoutError
from support_bot.dialogue.menus import (
    CUSTOM_QUESTION_PROMPT,
    UNKNOWN_FAQ_MESSAGE,
    UNKNOWN_PAGE_MESSAGE,
    build_faq_text,
    build_page_selection_text
)
from support_bot.dialogue.orchestrator import DialogueOrchestrator
from support_bot.dialogue.replies import (
    LLM_ERROR_REPLY,
    LLM_RATE_LIMIT_REPLY,
    LLM_TIMEOUT_REPLY,
    NO_ANSWER_REPLY,
    TICKET_STEP_DESCRIPTION_PROMPT,
    TICKET_STEP_TITLE_PROMPT
)
from support_bot.state import ChatModeKind, ChatState, MenuKind, TicketStep


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 3, 15, 9, 0, 0)

    def __call__(self):
        return self.now


@pytest.fixture
def state():
    return ChatState(chat_id="oc_user_chat")


# ===========================
# Escalation
# ===========================

@pytest.mark.unit
async def test_faqs_shown_before_ticket_then_escalates(orchestrator, state):
    """Test a failing login first gets FAQs, and a follow-up opens a ticket."""
    result = await orchestrator.handle(state, "login page won't load", "ou_user")

    assert result.is_handled
    assert result.stage == "faq"
    assert "Login & Access FAQs" in result.reply.text
    assert state.faqs_shown_for("authentication")
    assert state.context[-1].offers_ticket
    assert state.mode.is_idle

    result = await orchestrator.handle(state, "still not working", "ou_user")

    assert result.stage == "escalation"
    assert result.reply.text == TICKET_STEP_TITLE_PROMPT
    assert state.mode.ticket_step == TicketStep.TITLE
    assert state.ticket.category == "authentication"
    assert state.ticket.original_message == "still not working"
    assert state.ticket.sender_id == "ou_user"


@pytest.mark.unit
async def test_faqs_are_not_repeated_for_same_category(orchestrator, state):
    await orchestrator.handle(state, "login page won't load", "ou_user")
    result = await orchestrator.handle(state, "my password login is broken", "ou_user")

    assert result.stage == "escalation"
    assert state.mode.kind == ChatModeKind.AWAITING_TICKET_STEP


@pytest.mark.unit
async def test_direct_escalation_skips_faqs(orchestrator, state):
    result = await orchestrator.handle(state, "please create ticket, the upload is still not working")

    assert result.stage == "escalation"
    assert state.mode.ticket_step == TicketStep.TITLE


@pytest.mark.unit
async def test_category_without_faqs_escalates_directly(orchestrator, state):
    result = await orchestrator.handle(state, "the file upload is giving an error")

    assert result.stage == "escalation"
    assert state.ticket.category == "file_upload"


@pytest.mark.unit
async def test_accepting_ticket_offer_starts_intake(orchestrator, state):
    state.add_exchange("login is odd", "I can create a support ticket for you if you like.")

    result = await orchestrator.handle(state, "yes", "ou_user")

    assert result.stage == "escalation"
    assert state.mode.ticket_step == TicketStep.TITLE


@pytest.mark.unit
async def test_ticket_intake_consumes_any_message(orchestrator, state, fake_llm):
    """Test a greeting during intake is taken as the answer."""
    state.add_exchange("login is odd", "Shall I create a ticket for you?")
    await orchestrator.handle(state, "yes please")

    result = await orchestrator.handle(state, "hello")

    assert result.stage == "ticket"
    assert result.reply.text == TICKET_STEP_DESCRIPTION_PROMPT
    assert state.ticket.title == "hello"
    assert state.mode.ticket_step == TicketStep.DESCRIPTION
    fake_llm.answer.assert_not_awaited()


# ===========================
# Menus
# ===========================

@pytest.mark.unit
async def test_greeting_on_new_conversation_shows_page_card(orchestrator, state):
    result = await orchestrator.handle(state, "hello")

    assert result.stage == "menu"
    assert result.reply.card is not None
    assert result.reply.fallback_text == build_page_selection_text()
    assert result.reply.fallback_menu == MenuKind.TEXT_PAGE_SELECTION
    assert state.mode.menu_kind == MenuKind.AWAITING_PAGE_SELECTION


@pytest.mark.unit
async def test_greeting_mid_conversation_is_answered(orchestrator, state, fake_llm):
    state.add_exchange("how do I add a job", "Open Jobs.")

    result = await orchestrator.handle(state, "hello")

    assert result.stage == "llm"
    fake_llm.answer.assert_awaited_once()


@pytest.mark.unit
async def test_restart_always_shows_menu(orchestrator, state):
    state.add_exchange("how do I add a job", "Open Jobs.")

    result = await orchestrator.handle(state, "start over")

    assert result.stage == "menu"
    assert state.mode.menu_kind == MenuKind.AWAITING_PAGE_SELECTION


@pytest.mark.unit
async def test_page_number_opens_faq_menu(orchestrator, state):
    """Test replying "1" to the page menu shows the dashboard FAQs."""
    state.enter_menu(MenuKind.AWAITING_PAGE_SELECTION)

    result = await orchestrator.handle(state, "1")

    assert result.stage == "menu"
    assert result.reply.card is not None
    assert result.reply.fallback_text == build_faq_text("dashboard")
    assert result.reply.fallback_menu == MenuKind.TEXT_FAQ_MODE
    assert state.mode.menu_kind == MenuKind.AWAITING_FAQ_SELECTION
    assert state.mode.selected_page == "dashboard"


@pytest.mark.unit
async def test_text_page_menu_stays_text(orchestrator, state):
    state.enter_menu(MenuKind.TEXT_PAGE_SELECTION)

    result = await orchestrator.handle(state, "Claims")

    assert result.reply.card is None
    assert result.reply.text == build_faq_text("claims")
    assert state.mode.menu_kind == MenuKind.TEXT_FAQ_MODE


@pytest.mark.unit
async def test_faq_number_answers_question(orchestrator, state):
    state.enter_menu(MenuKind.AWAITING_FAQ_SELECTION, selected_page="jobs")

    result = await orchestrator.handle(state, "1")

    assert result.stage == "menu"
    assert result.reply.text.startswith("**How to create a new job posting?**")
    assert "Create Job" in result.reply.text
    assert state.mode.is_idle


@pytest.mark.unit
async def test_back_returns_to_page_menu(orchestrator, state):
    state.enter_menu(MenuKind.TEXT_FAQ_MODE, selected_page="jobs")

    result = await orchestrator.handle(state, "back")

    assert result.reply.text == build_page_selection_text()
    assert state.mode.menu_kind == MenuKind.TEXT_PAGE_SELECTION


@pytest.mark.unit
async def test_free_text_in_faq_menu_is_answered_with_page_context(orchestrator, state, fake_llm):
    state.enter_menu(MenuKind.AWAITING_FAQ_SELECTION, selected_page="jobs")

    result = await orchestrator.handle(state, "How do I attach a file?")

    assert result.stage == "llm"
    assert state.mode.is_idle
    assert fake_llm.answer.await_args.args[2] == "[Jobs page] How do I attach a file?"


@pytest.mark.unit
async def test_free_text_in_page_menu_is_treated_as_question(orchestrator, state, fake_llm):
    state.enter_menu(MenuKind.AWAITING_PAGE_SELECTION)

    result = await orchestrator.handle(state, "what does the pipeline tab show")

    assert result.stage == "llm"
    assert state.mode.is_idle
    assert fake_llm.answer.await_args.args[2] == "what does the pipeline tab show"


@pytest.mark.unit
async def test_stale_menu_is_dropped(knowledge_base, response_cache, fake_llm, ticket_manager, state):
    clock = FakeClock()
    orchestrator = DialogueOrchestrator(
        knowledge_base=knowledge_base,
        response_cache=response_cache,
        llm=fake_llm,
        tickets=ticket_manager,
        menu_timeout_seconds=600,
        clock=clock
    )
    state.enter_menu(MenuKind.AWAITING_PAGE_SELECTION, now=clock.now)
    clock.now += timedelta(seconds=601)

    result = await orchestrator.handle(state, "1")

    assert result.stage == "llm"
    assert state.mode.is_idle


# ===========================
# Card actions
# ===========================

@pytest.mark.unit
async def test_card_page_button_opens_faq_card(orchestrator, state):
    result = await orchestrator.handle_card_action(state, {"value": '"claims"'})

    assert result.reply.card is not None
    assert state.mode.selected_page == "claims"


@pytest.mark.unit
async def test_card_faq_button_answers(orchestrator, state):
    state.enter_menu(MenuKind.AWAITING_FAQ_SELECTION, selected_page="jobs")

    result = await orchestrator.handle_card_action(state, "faq_jobs_0")

    assert result.reply.text.startswith("**How to create a new job posting?**")
    assert state.mode.is_idle


@pytest.mark.unit
async def test_card_navigation_buttons(orchestrator, state):
    result = await orchestrator.handle_card_action(state, "back_to_pages")
    assert state.mode.menu_kind == MenuKind.AWAITING_PAGE_SELECTION
    assert result.reply.card is not None

    result = await orchestrator.handle_card_action(state, "ask_custom")
    assert result.reply.text == CUSTOM_QUESTION_PROMPT
    assert state.mode.is_idle


@pytest.mark.unit
async def test_card_unknown_values(orchestrator, state):
    assert (await orchestrator.handle_card_action(state, "faq_jobs_9")).reply.text == UNKNOWN_FAQ_MESSAGE
    assert (await orchestrator.handle_card_action(state, "nonsense")).reply.text == UNKNOWN_PAGE_MESSAGE
    assert (await orchestrator.handle_card_action(state, None)).reply.text == UNKNOWN_PAGE_MESSAGE


# ===========================
# Answers
# ===========================

@pytest.mark.unit
async def test_llm_answer_is_recorded_and_cached(orchestrator, state, fake_llm, response_cache):
    result = await orchestrator.handle(state, "how do I add a candidate")

    assert result.stage == "llm"
    assert result.reply.text == "You can do that from the Candidates page."
    assert [t.role for t in state.context] == ["user", "assistant"]

    system_prompt, history, message = fake_llm.answer.await_args.args
    assert "PM-Next" in system_prompt
    assert history == []
    assert message == "how do I add a candidate"

    other = ChatState(chat_id="oc_other")
    result = await orchestrator.handle(other, "How can I add a new candidate?")

    assert result.stage == "cache"
    assert result.reply.text == "You can do that from the Candidates page."
    assert fake_llm.answer.await_count == 1
    assert len(other.context) == 2


@pytest.mark.unit
async def test_history_is_passed_to_llm(orchestrator, state, fake_llm):
    state.add_exchange("how do I add a job", "Open Jobs.")

    await orchestrator.handle(state, "and then what about the salary range")

    history = fake_llm.answer.await_args.args[1]
    assert history == [
        {"role": "user", "content": "how do I add a job"},
        {"role": "assistant", "content": "Open Jobs."},
    ]


@pytest.mark.unit
@pytest.mark.parametrize("error,reply", [
    (LLMTimeoutError("slow"), LLM_TIMEOUT_REPLY),
    (LLMRateLimitError("busy"), LLM_RATE_LIMIT_REPLY),
    (LLMError("boom"), LLM_ERROR_REPLY),
])
async def test_llm_failures_reply_without_touching_context(orchestrator, state, fake_llm, error, reply):
    fake_llm.answer.side_effect = error

    result = await orchestrator.handle(state, "How do I add a candidate?")

    assert result.stage == "llm_error"
    assert result.reply.text == reply
    assert state.context == []


@pytest.mark.unit
async def test_without_llm_answers_from_knowledge_base(orchestrator, state, fake_llm):
    fake_llm.configured = False

    result = await orchestrator.handle(state, "How to submit an expense claim?")

    assert result.stage == "knowledge"
    assert "New Claim" in result.reply.text
    fake_llm.answer.assert_not_awaited()

    result = await orchestrator.handle(state, "zebra crossing")
    assert result.reply.text == NO_ANSWER_REPLY


# ===========================
# FAQ answers
# ===========================

@pytest.mark.unit
def test_answer_faq_out_of_range(orchestrator):
    assert orchestrator.answer_faq("jobs", 4) is None
    assert orchestrator.answer_faq("jobs", -1) is None
    assert orchestrator.answer_faq("nowhere", 0) is None


@pytest.mark.unit
def test_answer_faq_falls_back_to_page_summary(orchestrator, knowledge_base):
    knowledge_base._document = ""

    answer = orchestrator.answer_faq("calendar", 1)

    assert answer.startswith("**How to request leave approval?**")
    assert "Request Leave" in answer
