"""
Inbound Lark event parsing.

Normalizes the envelope shapes Lark delivers to the webhook (v2 schema
events, legacy ``event_callback`` events and bare card callbacks) into
``InboundMessage`` and ``CardAction`` values.

Version: 1.0.0
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .extraction import extract_message_text

logger = logging.getLogger(__name__)


MESSAGE_EVENT_TYPE = "im.message.receive_v1"
LEGACY_MESSAGE_EVENT_TYPE = "message"
CARD_ACTION_EVENT_TYPE = "card.action.trigger"
URL_VERIFICATION_TYPE = "url_verification"
EVENT_CALLBACK_TYPE = "event_callback"


@dataclass
class InboundMessage:
    """A chat message addressed to the bot."""
    chat_id: str
    text: str
    message_id: Optional[str] = None
    chat_type: Optional[str] = None
    message_type: Optional[str] = None
    sender_id: Optional[str] = None
    sender_type: Optional[str] = None
    parent_id: Optional[str] = None
    root_id: Optional[str] = None
    mentions: List[Dict[str, Any]] = field(default_factory=list)
    raw_content: Any = None
    raw_event: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_direct_message(self) -> bool:
        return self.chat_type == "p2p"

    @property
    def is_thread_reply(self) -> bool:
        return bool(self.parent_id or self.root_id)


@dataclass
class CardAction:
    """A button press on an interactive card."""
    chat_id: str
    value: Any
    user_id: Optional[str] = None
    message_id: Optional[str] = None
    raw_event: Dict[str, Any] = field(default_factory=dict)


# ===========================
# Envelope inspection
# ===========================

def _header(payload: Dict[str, Any]) -> Dict[str, Any]:
    header = payload.get("header")
    return header if isinstance(header, dict) else {}


def _event(payload: Dict[str, Any]) -> Dict[str, Any]:
    event = payload.get("event")
    return event if isinstance(event, dict) else {}


def is_url_verification(payload: Dict[str, Any]) -> bool:
    return (
        payload.get("type") == URL_VERIFICATION_TYPE
        or _header(payload).get("event_type") == URL_VERIFICATION_TYPE
    )


def event_type_of(payload: Dict[str, Any]) -> Optional[str]:
    """Event type for v2 envelopes, legacy callbacks and bare card callbacks."""
    header_type = _header(payload).get("event_type")
    if header_type:
        return header_type

    if payload.get("type") == EVENT_CALLBACK_TYPE:
        return _event(payload).get("type")

    if payload.get("open_chat_id") and isinstance(payload.get("action"), dict):
        return CARD_ACTION_EVENT_TYPE

    return None


def event_id_of(payload: Dict[str, Any]) -> Optional[str]:
    return (
        _header(payload).get("event_id")
        or payload.get("uuid")
        or _event(payload).get("event_id")
    )


def is_message_event(payload: Dict[str, Any]) -> bool:
    return event_type_of(payload) in (MESSAGE_EVENT_TYPE, LEGACY_MESSAGE_EVENT_TYPE)


def is_card_action_event(payload: Dict[str, Any]) -> bool:
    return event_type_of(payload) == CARD_ACTION_EVENT_TYPE


# ===========================
# Parsing
# ===========================

def parse_message_event(payload: Dict[str, Any]) -> Optional[InboundMessage]:
    """
    Build an InboundMessage from a message event envelope.

    Returns:
        None when the envelope carries no message or no chat id
    """
    event = _event(payload)
    message = event.get("message")
    if not isinstance(message, dict):
        return None

    chat_id = message.get("chat_id") or event.get("open_chat_id")
    if not chat_id:
        logger.warning("Message event without chat_id")
        return None

    sender = event.get("sender") or {}
    sender_id = sender.get("sender_id")
    if isinstance(sender_id, dict):
        sender_id = (
            sender_id.get("open_id")
            or sender_id.get("user_id")
            or sender_id.get("union_id")
            or sender_id.get("id")
        )

    content = message.get("content")
    return InboundMessage(
        chat_id=chat_id,
        text=extract_message_text(content),
        message_id=message.get("message_id"),
        chat_type=message.get("chat_type"),
        message_type=message.get("message_type") or message.get("msg_type"),
        sender_id=sender_id,
        sender_type=sender.get("sender_type"),
        parent_id=message.get("parent_id") or None,
        root_id=message.get("root_id") or None,
        mentions=list(message.get("mentions") or []),
        raw_content=content,
        raw_event=payload
    )


def parse_card_action(payload: Dict[str, Any]) -> Optional[CardAction]:
    """
    Build a CardAction from any supported card callback shape.

    Supported: ``open_chat_id`` on the event (or the bare payload) with
    ``open_id``/``user_id``, and ``context.open_chat_id`` with an
    ``operator`` object.
    """
    event = _event(payload) or payload

    context = event.get("context") if isinstance(event.get("context"), dict) else {}
    operator = event.get("operator") if isinstance(event.get("operator"), dict) else {}

    if event.get("open_chat_id"):
        chat_id = event["open_chat_id"]
        user_id = event.get("open_id") or event.get("user_id") or operator.get("open_id")
        message_id = event.get("open_message_id")
    elif context.get("open_chat_id"):
        chat_id = context["open_chat_id"]
        user_id = operator.get("open_id") or operator.get("user_id")
        message_id = context.get("open_message_id")
    else:
        logger.warning(f"Unknown card callback shape: {sorted(event)}")
        return None

    action = event.get("action") if isinstance(event.get("action"), dict) else {}
    value = action.get("value")
    if value in (None, "", {}):
        logger.warning(f"Card callback without action value (chat {chat_id})")
        return None

    return CardAction(
        chat_id=chat_id,
        value=value,
        user_id=user_id,
        message_id=message_id,
        raw_event=payload
    )


__all__ = [
    'InboundMessage',
    'CardAction',
    'MESSAGE_EVENT_TYPE',
    'CARD_ACTION_EVENT_TYPE',
    'is_url_verification',
    'event_type_of',
    'event_id_of',
    'is_message_event',
    'is_card_action_event',
    'parse_message_event',
    'parse_card_action',
]
