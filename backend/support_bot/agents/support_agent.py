"""
PM-Next support bot agent.
Runs each inbound Lark message through the knowledge-base updater and
the dialogue orchestrator, delivers the reply and saves the chat state.

Version: 1.0.0
"""
import logging
import time
from typing import Any, Dict, Iterable, Optional

from ..clients.lark_client import LARK_ERRORS
from ..dialogue.analytics import BotAnalytics
from ..dialogue.events import CardAction, InboundMessage
from ..dialogue.kb_updater import KnowledgeBaseUpdater
from ..dialogue.orchestrator import DialogueOrchestrator
from ..dialogue.pipeline import Reply, StageResult
from ..dialogue.replies import LLM_ERROR_REPLY
from ..state.chat_state import ChatState
from ..state.state_store import ChatStateStore
from ..utils.telemetry import track_bot_message

logger = logging.getLogger(__name__)


MIN_IDLE_MESSAGE_LENGTH = 2


class SupportBotAgent:
    """
    Entry point for chat traffic.

    Pipeline per message: skip checks, knowledge-base updater (support
    solutions), addressing checks, dialogue orchestrator, delivery, state
    save.
    """

    def __init__(
        self,
        state_store: ChatStateStore,
        orchestrator: DialogueOrchestrator,
        kb_updater: KnowledgeBaseUpdater,
        messenger: Any,
        analytics: Optional[BotAnalytics] = None,
        bot_ids: Iterable[Optional[str]] = (),
        state_ttl: Optional[int] = None
    ):
        self.state_store = state_store
        self.orchestrator = orchestrator
        self.kb_updater = kb_updater
        self.messenger = messenger
        self.analytics = analytics or BotAnalytics()
        self.bot_ids = frozenset(bot_id for bot_id in bot_ids if bot_id)
        self.state_ttl = state_ttl

        logger.info(
            f"Support bot agent ready (state store: {type(state_store).__name__})"
        )

    # ===========================
    # Addressing
    # ===========================

    def is_own_message(self, message: InboundMessage) -> bool:
        return message.sender_type == "app" or (
            message.sender_id is not None and message.sender_id in self.bot_ids
        )

    def is_bot_mentioned(self, message: InboundMessage) -> bool:
        """
        True when a mention targets the bot.

        Without known bot ids any mention counts.
        """
        if not message.mentions:
            return False
        if not self.bot_ids:
            return True

        for mention in message.mentions:
            ids = mention.get("id") if isinstance(mention.get("id"), dict) else {}
            candidates = [mention.get("key"), mention.get("id"), *ids.values()]
            if self.bot_ids & {c for c in candidates if isinstance(c, str)}:
                return True
        return False

    def is_addressed(self, message: InboundMessage, state: ChatState) -> bool:
        return (
            message.is_direct_message
            or self.is_bot_mentioned(message)
            or not state.mode.is_idle
        )

    # ===========================
    # Messages
    # ===========================

    async def handle_message_event(self, message: InboundMessage) -> Optional[StageResult]:
        """
        Process one inbound chat message.

        Returns:
            The stage result that produced the reply, or None when the
            message was ignored
        """
        if self.is_own_message(message):
            logger.debug("Skipping message from the bot itself")
            return None

        if not message.text:
            logger.debug(f"Skipping empty message in {message.chat_id}")
            return None

        start = time.perf_counter()
        try:
            result = await self._process_message(message)
        except Exception as e:
            logger.error(
                f"✗ Failed to handle message in {message.chat_id}: {e}",
                extra={"chat_id": message.chat_id},
                exc_info=True
            )
            self.analytics.track_error("pipeline")
            await self._send_text(message.chat_id, LLM_ERROR_REPLY)
            return None

        if result is not None:
            elapsed_ms = (time.perf_counter() - start) * 1000
            self.analytics.track_request(
                message.text,
                elapsed_ms,
                from_cache=result.stage == "cache"
            )
            if result.stage == "llm_error":
                self.analytics.track_error("llm")
            track_bot_message(result.stage or "unknown")

        return result

    async def _process_message(self, message: InboundMessage) -> Optional[StageResult]:
        result = await self.kb_updater.process(message)
        if result.is_handled:
            if result.reply is not None:
                await self.deliver(message.chat_id, result.reply)
            return result

        state = await self.state_store.get_or_create(message.chat_id)

        if not self.is_addressed(message, state):
            logger.debug(f"Skipping message not addressed to the bot in {message.chat_id}")
            return None

        if state.mode.is_idle and len(message.text) < MIN_IDLE_MESSAGE_LENGTH:
            logger.debug(f"Skipping too-short message in {message.chat_id}")
            return None

        result = await self.orchestrator.handle(state, message.text, message.sender_id)
        if result.reply is not None:
            await self.deliver(message.chat_id, result.reply, state)

        await self.state_store.set(message.chat_id, state, ttl=self.state_ttl)
        return result

    async def handle_card_action(self, action: CardAction) -> Optional[StageResult]:
        """Process a card button press."""
        try:
            state = await self.state_store.get_or_create(action.chat_id)
            result = await self.orchestrator.handle_card_action(state, action.value)
            if result.reply is not None:
                await self.deliver(action.chat_id, result.reply, state)
            await self.state_store.set(action.chat_id, state, ttl=self.state_ttl)
        except Exception as e:
            logger.error(
                f"✗ Failed to handle card action in {action.chat_id}: {e}",
                extra={"chat_id": action.chat_id},
                exc_info=True
            )
            self.analytics.track_error("card_action")
            return None

        track_bot_message(result.stage or "menu")
        return result

    # ===========================
    # Delivery
    # ===========================

    async def deliver(
        self,
        chat_id: str,
        reply: Reply,
        state: Optional[ChatState] = None
    ) -> bool:
        """
        Send a reply.

        A card that cannot be sent is replaced by its text menu, and the
        chat moves to the matching text menu mode.
        """
        if reply.card is not None:
            try:
                await self.messenger.send_card(chat_id, reply.card)
                return True
            except LARK_ERRORS as e:
                logger.warning(
                    f"Card send failed, falling back to text menu: {e}",
                    extra={"chat_id": chat_id}
                )

            if state is not None and reply.fallback_menu is not None:
                state.enter_menu(reply.fallback_menu, reply.selected_page)
            text = reply.fallback_text or reply.text
            return await self._send_text(chat_id, text) if text else False

        if reply.text:
            return await self._send_text(chat_id, reply.text)
        return False

    async def _send_text(self, chat_id: str, text: str) -> bool:
        try:
            await self.messenger.send_text(chat_id, text)
            return True
        except LARK_ERRORS as e:
            logger.error(f"✗ Failed to send reply to {chat_id}: {e}", extra={"chat_id": chat_id})
            self.analytics.track_error("send")
            return False

    # ===========================
    # Maintenance
    # ===========================

    async def cleanup_expired(self) -> int:
        return await self.state_store.cleanup_expired()

    async def get_stats(self) -> Dict[str, Any]:
        return {
            "state_store": await self.state_store.get_stats(),
            "response_cache": self.orchestrator.response_cache.get_stats(),
            "knowledge_updates": self.kb_updater.updates_applied
        }

    async def cleanup(self) -> None:
        logger.info("Cleaning up agent resources...")
        try:
            cleaned = await self.state_store.cleanup_expired()
            logger.info(f"✓ Cleaned up {cleaned} expired chats")
        except Exception as e:
            logger.error(f"Error cleaning up chat state: {e}")

        try:
            await self.state_store.close()
            logger.info("✓ Closed chat state store")
        except Exception as e:
            logger.error(f"Error closing chat state store: {e}")

        logger.info("✓ Agent cleanup complete")


__all__ = ['SupportBotAgent', 'MIN_IDLE_MESSAGE_LENGTH']
