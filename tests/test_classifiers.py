"""
Tests for the message classifiers.
"""
import pytest

from support_bot.dialogue.classifiers import (
    categorize_issue,
    check_ticket_confirmation,
    extract_ticket_number,
    is_direct_escalation,
    is_greeting,
    is_restart_request,
    is_support_solution,
    offers_ticket,
    should_escalate_to_ticket
)
from support_bot.state.chat_state import ContextTurn


# ===========================
# Categories
# ===========================

@pytest.mark.unit
@pytest.mark.parametrize("message,expected", [
    ("I can't upload a resume", "candidate_management"),
    ("The job posting won't save", "job_management"),
    ("Where do I edit the client company?", "client_management"),
    ("pipeline values look wrong", "pipeline_management"),
    ("login page won't load", "authentication"),
    ("the file is too big", "file_upload"),
    ("everything is slow today", "system_performance"),
    ("random question", "general"),
])
def test_categorize_issue(message, expected):
    assert categorize_issue(message) == expected


@pytest.mark.unit
def test_categorize_issue_first_keyword_in_table_order_wins():
    # "candidate" precedes "job" in the table
    assert categorize_issue("assign a job to a candidate") == "candidate_management"


@pytest.mark.unit
def test_categorize_issue_falls_back_to_recent_context():
    context = [
        ContextTurn(role="user", content="my login keeps failing"),
        ContextTurn(role="assistant", content="Try clearing your cache."),
    ]
    assert categorize_issue("still no luck", context) == "authentication"


@pytest.mark.unit
def test_categorize_issue_only_scans_last_six_turns():
    context = [ContextTurn(role="user", content="password reset")]
    context += [ContextTurn(role="user", content="nothing relevant") for _ in range(6)]
    assert categorize_issue("still no luck", context) == "general"


# ===========================
# Escalation
# ===========================

@pytest.mark.unit
@pytest.mark.parametrize("message", [
    "login page won't load",
    "This is so frustrating, it's broken",
    "I need to speak to someone",
    "getting an error message",
    "I'm unable to save the form",
])
def test_should_escalate(message):
    assert should_escalate_to_ticket([], message)


@pytest.mark.unit
@pytest.mark.parametrize("message", [
    "How do I add a candidate?",
    "What is the pipeline value?",
    "thanks!",
])
def test_should_not_escalate(message):
    assert not should_escalate_to_ticket([], message)


@pytest.mark.unit
def test_direct_escalation_phrases():
    assert is_direct_escalation("still not working")
    assert is_direct_escalation("Please create ticket")
    assert is_direct_escalation("I need this ASAP")
    assert not is_direct_escalation("login page won't load")


@pytest.mark.unit
def test_typographic_apostrophe_is_normalized():
    assert should_escalate_to_ticket([], "the page won’t load")


# ===========================
# Ticket confirmation
# ===========================

@pytest.mark.unit
def test_offers_ticket():
    assert offers_ticket("I can create a support ticket for you if you like.")
    assert not offers_ticket("Here is how to add a candidate.")


@pytest.mark.unit
def test_confirmation_after_offer():
    context = [
        ContextTurn(role="user", content="login broken"),
        ContextTurn(role="assistant", content="Shall I create a ticket for you?"),
    ]
    assert check_ticket_confirmation(context, "yes")
    assert check_ticket_confirmation(context, "Go ahead")
    assert not check_ticket_confirmation(context, "no thanks")


@pytest.mark.unit
def test_confirmation_uses_offer_flag():
    context = [
        ContextTurn(role="assistant", content="Some FAQs...", offers_ticket=True),
    ]
    assert check_ticket_confirmation(context, "sure")


@pytest.mark.unit
def test_confirmation_requires_recent_offer():
    context = [ContextTurn(role="assistant", content="Let me create a ticket for you.")]
    context += [ContextTurn(role="user", content="hmm") for _ in range(4)]
    assert not check_ticket_confirmation(context, "yes")
    assert not check_ticket_confirmation([], "yes")


@pytest.mark.unit
def test_confirmation_accepts_dict_turns():
    context = [{"role": "assistant", "content": "Want me to create a support ticket?"}]
    assert check_ticket_confirmation(context, "ok")


# ===========================
# Support solutions
# ===========================

@pytest.mark.unit
def test_thread_reply_of_reasonable_length_is_solution():
    assert is_support_solution("Clear your cache and retry - resolved.", is_reply_to_ticket=True)
    assert not is_support_solution("ok", is_reply_to_ticket=True)


@pytest.mark.unit
@pytest.mark.parametrize("message", [
    "Solution: reinstall the extension",
    "For future reference, the export limit is 500 rows",
    "Follow these steps to reset the filters",
    "Please clear cache and log in again",
])
def test_solution_outside_thread(message):
    assert is_support_solution(message)


@pytest.mark.unit
def test_plain_chatter_is_not_solution():
    assert not is_support_solution("Looking into it now")


# ===========================
# Greetings and ticket numbers
# ===========================

@pytest.mark.unit
def test_greetings_and_restart():
    assert is_greeting("Hello!")
    assert is_greeting("good morning")
    assert is_greeting("menu")
    assert not is_greeting("hello, how do I add a job?")
    assert is_restart_request("start over")
    assert not is_restart_request("hi")


@pytest.mark.unit
def test_extract_ticket_number():
    assert extract_ticket_number("Re: ticket pmn-20240315-0007 is fixed") == "PMN-20240315-0007"
    assert extract_ticket_number("no ticket here") is None
    assert extract_ticket_number(None) is None

