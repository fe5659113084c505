"""
Tests for Lark payload text extraction and event envelope parsing.
"""
import json

import pytest

from support_bot.dialogue.events import (
    event_id_of,
    event_type_of,
    is_card_action_event,
    is_message_event,
    is_url_verification,
    parse_card_action,
    parse_message_event
)
from support_bot.dialogue.extraction import (
    extract_message_text,
    extract_text_from_rich_content,
    strip_mentions
)


# ===========================
# Text extraction
# ===========================

@pytest.mark.unit
def test_plain_text_json_string():
    assert extract_message_text('{"text": "  How do I add a job?  "}') == "How do I add a job?"


@pytest.mark.unit
def test_parsed_object():
    assert extract_message_text({"text": "hello"}) == "hello"


@pytest.mark.unit
def test_mentions_are_removed():
    assert extract_message_text('{"text": "@_user_1 how do I reset my password"}') == (
        "how do I reset my password"
    )
    assert strip_mentions("@alice hi") == "hi"


@pytest.mark.unit
def test_rich_post_content():
    content = {
        "title": "Question",
        "content": [
            [{"tag": "text", "text": "Cannot "}, {"tag": "text", "text": "upload"}],
            [{"tag": "img", "image_key": "img_1"}, {"tag": "text", "text": "a resume"}],
        ]
    }
    assert extract_message_text(json.dumps(content)) == "Cannot upload a resume"


@pytest.mark.unit
def test_locale_wrapped_post():
    content = {"en_us": {"title": "", "content": [[{"tag": "text", "text": "help"}]]}}
    assert extract_message_text(content) == "help"


@pytest.mark.unit
def test_non_json_string_used_as_text():
    assert extract_message_text("just words") == "just words"


@pytest.mark.unit
@pytest.mark.parametrize("content, expected", [("2", "2"), ("  3 ", "3"), ("true", "true"), ("null", "null")])
def test_bare_scalar_strings_are_text(content, expected):
    assert extract_message_text(content) == expected


@pytest.mark.unit
@pytest.mark.parametrize("content", [None, "", {}, [], {"image_key": "img_1"}, 42])
def test_unusable_content_yields_empty(content):
    assert extract_message_text(content) == ""


@pytest.mark.unit
def test_rich_content_requires_list():
    assert extract_text_from_rich_content("text") == ""


# ===========================
# Envelopes
# ===========================

@pytest.mark.unit
def test_url_verification():
    assert is_url_verification({"type": "url_verification", "challenge": "abc"})
    assert is_url_verification({"header": {"event_type": "url_verification"}})
    assert not is_url_verification({"type": "event_callback"})


@pytest.mark.unit
def test_message_event_v2(lark_event):
    payload = lark_event("@_user_1 hello there", event_id="evt_42", chat_type="group",
                         mentions=[{"key": "@_user_1", "id": {"open_id": "ou_bot"}}])

    assert is_message_event(payload)
    assert not is_card_action_event(payload)
    assert event_id_of(payload) == "evt_42"

    message = parse_message_event(payload)
    assert message.chat_id == "oc_user_chat"
    assert message.text == "hello there"
    assert message.sender_id == "ou_user"
    assert message.sender_type == "user"
    assert message.chat_type == "group"
    assert message.mentions[0]["id"]["open_id"] == "ou_bot"
    assert not message.is_direct_message
    assert not message.is_thread_reply


@pytest.mark.unit
def test_message_event_thread_reply(lark_event):
    payload = lark_event("fixed it", parent_id="om_parent", root_id="om_root")
    message = parse_message_event(payload)
    assert message.is_thread_reply
    assert message.parent_id == "om_parent"


@pytest.mark.unit
def test_legacy_event_callback():
    payload = {
        "uuid": "legacy-1",
        "type": "event_callback",
        "event": {
            "type": "message",
            "sender": {"sender_id": "ou_legacy"},
            "message": {"chat_id": "oc_legacy", "content": '{"text": "hi"}'}
        }
    }
    assert event_type_of(payload) == "message"
    assert is_message_event(payload)
    assert event_id_of(payload) == "legacy-1"

    message = parse_message_event(payload)
    assert message.chat_id == "oc_legacy"
    assert message.sender_id == "ou_legacy"


@pytest.mark.unit
def test_message_without_chat_id_is_dropped():
    payload = {"header": {"event_type": "im.message.receive_v1"}, "event": {"message": {}}}
    assert parse_message_event(payload) is None


# ===========================
# Card actions
# ===========================

@pytest.mark.unit
def test_card_action_v2_context_shape():
    payload = {
        "schema": "2.0",
        "header": {"event_id": "evt_card", "event_type": "card.action.trigger"},
        "event": {
            "operator": {"open_id": "ou_user"},
            "action": {"value": "jobs", "tag": "button"},
            "context": {"open_chat_id": "oc_chat", "open_message_id": "om_card"}
        }
    }
    assert is_card_action_event(payload)
    action = parse_card_action(payload)
    assert action.chat_id == "oc_chat"
    assert action.user_id == "ou_user"
    assert action.value == "jobs"
    assert action.message_id == "om_card"


@pytest.mark.unit
def test_card_action_bare_payload():
    payload = {
        "open_id": "ou_user",
        "open_chat_id": "oc_chat",
        "open_message_id": "om_card",
        "action": {"value": {"value": "faq_jobs_0"}, "tag": "button"}
    }
    assert event_type_of(payload) == "card.action.trigger"
    action = parse_card_action(payload)
    assert action.chat_id == "oc_chat"
    assert action.value == {"value": "faq_jobs_0"}


@pytest.mark.unit
def test_card_action_unknown_shape_or_empty_value():
    assert parse_card_action({"event": {"action": {"value": "jobs"}}}) is None
    assert parse_card_action({"event": {"open_chat_id": "oc_chat", "action": {"value": ""}}}) is None
