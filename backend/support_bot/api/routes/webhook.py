"""
Lark event webhook.

Message and card events are acknowledged at once and processed as
background tasks so Lark never retries a slow delivery.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from ...agents.support_agent import SupportBotAgent
from ...dialogue.events import (
    event_id_of,
    event_type_of,
    is_card_action_event,
    is_message_event,
    is_url_verification,
    parse_card_action,
    parse_message_event
)
from ...state.event_dedupe import EventDeduplicator
from ...utils.telemetry import track_duplicate_event
from ..dependencies import get_agent, get_event_dedupe

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/lark/events")
@router.post("/webhook")
async def lark_events(
    request: Request,
    background_tasks: BackgroundTasks,
    agent: SupportBotAgent = Depends(get_agent),
    dedupe: EventDeduplicator = Depends(get_event_dedupe)
):
    """
    Receive a Lark event.

    Returns:
        ``{"challenge": ...}`` for URL verification, otherwise
        ``{"success": true}``
    """
    try:
        payload: Dict[str, Any] = await request.json()
    except ValueError:
        logger.warning("Webhook body is not valid JSON")
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid JSON body"}
        )

    if not isinstance(payload, dict):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Expected a JSON object"}
        )

    if is_url_verification(payload):
        logger.info("URL verification request")
        return {"challenge": payload.get("challenge")}

    event_id = event_id_of(payload)
    request.state.lark_event_id = event_id
    request.state.lark_event_type = event_type_of(payload)

    if is_message_event(payload):
        if dedupe.is_duplicate(event_id):
            logger.info(f"Duplicate event {event_id} skipped")
            track_duplicate_event()
            return {"success": True}

        message = parse_message_event(payload)
        if message is not None:
            request.state.lark_chat_id = message.chat_id
            background_tasks.add_task(agent.handle_message_event, message)
        return {"success": True}

    if is_card_action_event(payload):
        if dedupe.is_duplicate(event_id):
            logger.info(f"Duplicate card event {event_id} skipped")
            track_duplicate_event()
            return {"success": True}

        action = parse_card_action(payload)
        if action is not None:
            request.state.lark_chat_id = action.chat_id
            background_tasks.add_task(agent.handle_card_action, action)
        return {"success": True, "message": "Card interaction received"}

    logger.info(
        f"Ignoring unsupported event (type: {event_type_of(payload)}, keys: {sorted(payload)})"
    )
    return {"success": True}
