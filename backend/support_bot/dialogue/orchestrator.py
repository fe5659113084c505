"""
Dialogue orchestrator.

Decides how the bot answers a chat message. The chat's mode picks the
handler; an idle chat runs through, in order: ticket confirmation,
greeting menu, escalation, response cache, LLM answer.

Version: 1.0.0
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from ..clients.llm_client import (
    LLMClient,
    LLMError,
    LLMRateLimitError,
    LLMTimeoutError
)
from ..state.chat_state import ChatModeKind, ChatState, MenuKind
from .classifiers import (
    categorize_issue,
    check_ticket_confirmation,
    is_direct_escalation,
    is_greeting,
    is_restart_request,
    offers_ticket,
    should_escalate_to_ticket
)
from .knowledge import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    FAQ_RESPONSES,
    KnowledgeBase,
    page_fallback
)
from .menus import (
    ACTION_ASK_CUSTOM,
    ACTION_BACK_TO_PAGES,
    ACTION_CUSTOM_QUESTION,
    CUSTOM_QUESTION_OPEN_PROMPT,
    CUSTOM_QUESTION_PROMPT,
    MAIN_PAGES,
    UNKNOWN_FAQ_MESSAGE,
    UNKNOWN_PAGE_MESSAGE,
    build_faq_card,
    build_faq_text,
    build_page_selection_card,
    build_page_selection_text,
    clean_action_value,
    get_page,
    is_back_request,
    parse_faq_action,
    resolve_faq_selection,
    resolve_page_selection
)
from .pipeline import Reply, StageResult
from .replies import (
    FAQ_ANSWER_TEMPLATE,
    LLM_ERROR_REPLY,
    LLM_RATE_LIMIT_REPLY,
    LLM_TIMEOUT_REPLY,
    NO_ANSWER_REPLY,
    PAGE_CONTEXT_TEMPLATE,
    build_faq_reply,
    build_system_prompt
)
from .response_cache import ResponseCache
from .tickets import TicketLifecycleManager

logger = logging.getLogger(__name__)


DEFAULT_MENU_TIMEOUT_SECONDS = 600
DEFAULT_HISTORY_TURNS = 6
DEFAULT_MAX_TURNS = 20

CARD_MENUS = frozenset({MenuKind.AWAITING_PAGE_SELECTION, MenuKind.AWAITING_FAQ_SELECTION})
PAGE_MENUS = frozenset({MenuKind.AWAITING_PAGE_SELECTION, MenuKind.TEXT_PAGE_SELECTION})

Handler = Callable[[ChatState, str, Optional[str]], Awaitable[StageResult]]


class DialogueOrchestrator:
    """
    Second stage of the inbound pipeline; always handles the message.

    The orchestrator mutates the ChatState it is given. The caller loads
    it before and saves it after each message.
    """

    def __init__(
        self,
        knowledge_base: KnowledgeBase,
        response_cache: ResponseCache,
        llm: LLMClient,
        tickets: TicketLifecycleManager,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        menu_timeout_seconds: int = DEFAULT_MENU_TIMEOUT_SECONDS,
        history_turns: int = DEFAULT_HISTORY_TURNS,
        max_turns: int = DEFAULT_MAX_TURNS,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.knowledge_base = knowledge_base
        self.response_cache = response_cache
        self.llm = llm
        self.tickets = tickets
        self.confidence_threshold = confidence_threshold
        self.menu_timeout = timedelta(seconds=menu_timeout_seconds)
        self.history_turns = history_turns
        self.max_turns = max_turns
        self._clock = clock

        self._dispatch: Dict[ChatModeKind, Handler] = {
            ChatModeKind.AWAITING_TICKET_STEP: self._handle_ticket_step,
            ChatModeKind.AWAITING_MENU_SELECTION: self._handle_menu_selection,
            ChatModeKind.IDLE: self._handle_idle,
        }

    async def handle(
        self,
        state: ChatState,
        message: str,
        sender_id: Optional[str] = None
    ) -> StageResult:
        """
        Produce the reply for one user message.

        Args:
            state: The chat's state, updated in place
            message: Extracted message text
            sender_id: Lark id of the sender

        Returns:
            A handled StageResult
        """
        self._expire_menu(state)
        handler = self._dispatch[state.mode.kind]
        return await handler(state, message, sender_id)

    def _expire_menu(self, state: ChatState) -> None:
        mode = state.mode
        if mode.kind != ChatModeKind.AWAITING_MENU_SELECTION:
            return
        if self._clock() - mode.entered_at > self.menu_timeout:
            logger.info(
                f"Menu selection timed out ({mode})",
                extra={"chat_id": state.chat_id}
            )
            state.reset_mode()

    # ===========================
    # Ticket intake
    # ===========================

    async def _handle_ticket_step(
        self,
        state: ChatState,
        message: str,
        sender_id: Optional[str]
    ) -> StageResult:
        reply = await self.tickets.handle(state, message, sender_id)
        return StageResult.text(reply, stage="ticket")

    def _start_ticket(
        self,
        state: ChatState,
        message: str,
        category: str,
        sender_id: Optional[str]
    ) -> StageResult:
        reply = self.tickets.start(state, message, category, sender_id)
        return StageResult.text(reply, stage="escalation")

    # ===========================
    # Menus
    # ===========================

    def _page_menu(self, state: ChatState) -> StageResult:
        state.enter_menu(MenuKind.AWAITING_PAGE_SELECTION, now=self._clock())
        return StageResult.handled(
            Reply(
                card=build_page_selection_card(),
                fallback_text=build_page_selection_text(),
                fallback_menu=MenuKind.TEXT_PAGE_SELECTION
            ),
            stage="menu"
        )

    def _text_page_menu(self, state: ChatState) -> StageResult:
        state.enter_menu(MenuKind.TEXT_PAGE_SELECTION, now=self._clock())
        return StageResult.text(build_page_selection_text(), stage="menu")

    def _faq_menu(self, state: ChatState, page_key: str, as_card: bool = True) -> StageResult:
        if as_card:
            state.enter_menu(MenuKind.AWAITING_FAQ_SELECTION, page_key, now=self._clock())
            return StageResult.handled(
                Reply(
                    card=build_faq_card(page_key),
                    fallback_text=build_faq_text(page_key),
                    fallback_menu=MenuKind.TEXT_FAQ_MODE,
                    selected_page=page_key
                ),
                stage="menu"
            )

        state.enter_menu(MenuKind.TEXT_FAQ_MODE, page_key, now=self._clock())
        return StageResult.text(build_faq_text(page_key), stage="menu")

    def answer_faq(self, page_key: str, index: int) -> Optional[str]:
        """
        Answer one of a page's FAQs.

        Uses the knowledge document when it matches confidently, else the
        page's canned answer. None when neither is available.
        """
        page = get_page(page_key)
        if page is None or not 0 <= index < len(page.faqs):
            return None

        question = page.faqs[index]
        match = self.knowledge_base.answer(question, self.confidence_threshold)
        if match is not None:
            return FAQ_ANSWER_TEMPLATE.format(faq=question, answer=match.section)

        fallback = page_fallback(page_key)
        if fallback:
            return FAQ_ANSWER_TEMPLATE.format(faq=question, answer=fallback)
        return None

    async def _handle_menu_selection(
        self,
        state: ChatState,
        message: str,
        sender_id: Optional[str]
    ) -> StageResult:
        menu = state.mode.menu_kind
        as_card = menu in CARD_MENUS
        choice = clean_action_value(message) or ""

        if is_back_request(choice):
            return self._page_menu(state) if as_card else self._text_page_menu(state)

        if menu in PAGE_MENUS:
            page_key = resolve_page_selection(choice)
            if page_key:
                return self._faq_menu(state, page_key, as_card)

            # Not a page; treat it as a question
            state.reset_mode()
            return await self._handle_idle(state, message, sender_id)

        page_key = state.mode.selected_page
        faq_action = parse_faq_action(choice)
        if faq_action is not None:
            page_key, index = faq_action
        else:
            index = resolve_faq_selection(page_key, choice)

        if index is not None:
            answer = self.answer_faq(page_key, index)
            if answer is not None:
                state.reset_mode()
                return StageResult.text(answer, stage="menu")
            page = get_page(page_key)
            question = page.faqs[index] if page and index < len(page.faqs) else choice
            state.reset_mode()
            return await self._answer(state, self._with_page_context(page_key, question), sender_id)

        other_page = resolve_page_selection(choice) if not choice.isdigit() else None
        if other_page:
            return self._faq_menu(state, other_page, as_card)

        state.reset_mode()
        return await self._answer(state, self._with_page_context(page_key, message), sender_id)

    @staticmethod
    def _with_page_context(page_key: Optional[str], question: str) -> str:
        page = get_page(page_key)
        if page is None:
            return question
        return PAGE_CONTEXT_TEMPLATE.format(page=page.label, question=question)

    async def handle_card_action(self, state: ChatState, value: Any) -> StageResult:
        """
        Handle a card button press.

        Page keys open that page's FAQ card, ``faq_<page>_<n>`` answers
        an FAQ, ``back_to_pages`` returns to the page card and the custom
        question buttons prompt for free text.
        """
        action = clean_action_value(value)
        logger.info(f"Card action {action!r}", extra={"chat_id": state.chat_id})

        if not action:
            return StageResult.text(UNKNOWN_PAGE_MESSAGE, stage="menu")

        if action in MAIN_PAGES:
            return self._faq_menu(state, action)

        if action == ACTION_BACK_TO_PAGES:
            return self._page_menu(state)

        if action in (ACTION_ASK_CUSTOM, ACTION_CUSTOM_QUESTION):
            state.reset_mode()
            prompt = CUSTOM_QUESTION_PROMPT if action == ACTION_ASK_CUSTOM else CUSTOM_QUESTION_OPEN_PROMPT
            return StageResult.text(prompt, stage="menu")

        faq_action = parse_faq_action(action)
        if faq_action is not None:
            answer = self.answer_faq(*faq_action)
            if answer is None:
                return StageResult.text(UNKNOWN_FAQ_MESSAGE, stage="menu")
            state.reset_mode()
            return StageResult.text(answer, stage="menu")

        return StageResult.text(UNKNOWN_PAGE_MESSAGE, stage="menu")

    # ===========================
    # Idle chats
    # ===========================

    async def _handle_idle(
        self,
        state: ChatState,
        message: str,
        sender_id: Optional[str]
    ) -> StageResult:
        if check_ticket_confirmation(state.context, message):
            category = categorize_issue(message, state.context)
            logger.info(
                f"User accepted ticket offer ({category})",
                extra={"chat_id": state.chat_id}
            )
            return self._start_ticket(state, message, category, sender_id)

        if is_greeting(message) or is_restart_request(message):
            if state.is_new_conversation or is_restart_request(message):
                return self._page_menu(state)

        return await self._answer(state, message, sender_id)

    async def _answer(
        self,
        state: ChatState,
        message: str,
        sender_id: Optional[str]
    ) -> StageResult:
        if should_escalate_to_ticket(state.context, message):
            return self._escalate(state, message, sender_id)

        cached = self.response_cache.get(message)
        if cached:
            state.add_exchange(
                message,
                cached,
                offers_ticket=offers_ticket(cached),
                max_turns=self.max_turns
            )
            return StageResult.text(cached, stage="cache")

        if not self.llm.configured:
            return self._answer_from_knowledge(state, message)

        return await self._answer_with_llm(state, message)

    def _escalate(self, state: ChatState, message: str, sender_id: Optional[str]) -> StageResult:
        category = categorize_issue(message, state.context)

        if is_direct_escalation(message):
            logger.info(f"Direct escalation ({category})", extra={"chat_id": state.chat_id})
            return self._start_ticket(state, message, category, sender_id)

        if category in FAQ_RESPONSES and not state.faqs_shown_for(category):
            reply = build_faq_reply(FAQ_RESPONSES[category])
            state.add_exchange(
                message,
                reply,
                faqs_shown=category,
                offers_ticket=True,
                max_turns=self.max_turns
            )
            logger.info(f"Showing {category} FAQs before escalating", extra={"chat_id": state.chat_id})
            return StageResult.text(reply, stage="faq")

        return self._start_ticket(state, message, category, sender_id)

    def _answer_from_knowledge(self, state: ChatState, message: str) -> StageResult:
        match = self.knowledge_base.answer(message, self.confidence_threshold)
        reply = match.section if match is not None else NO_ANSWER_REPLY
        state.add_exchange(
            message,
            reply,
            offers_ticket=offers_ticket(reply),
            max_turns=self.max_turns
        )
        return StageResult.text(reply, stage="knowledge")

    async def _answer_with_llm(self, state: ChatState, message: str) -> StageResult:
        history = [turn.to_message() for turn in state.recent_context(self.history_turns)]

        try:
            reply = await self.llm.answer(
                build_system_prompt(self.knowledge_base.document),
                history,
                message
            )
        except LLMTimeoutError as e:
            logger.warning(f"LLM timeout: {e}", extra={"chat_id": state.chat_id})
            return StageResult.text(LLM_TIMEOUT_REPLY, stage="llm_error")
        except LLMRateLimitError as e:
            logger.warning(f"LLM rate limited: {e}", extra={"chat_id": state.chat_id})
            return StageResult.text(LLM_RATE_LIMIT_REPLY, stage="llm_error")
        except LLMError as e:
            logger.error(f"LLM failure: {e}", extra={"chat_id": state.chat_id})
            return StageResult.text(LLM_ERROR_REPLY, stage="llm_error")

        state.add_exchange(
            message,
            reply,
            offers_ticket=offers_ticket(reply),
            max_turns=self.max_turns
        )
        self.response_cache.set(message, reply)
        return StageResult.text(reply, stage="llm")


__all__ = [
    'DialogueOrchestrator',
    'DEFAULT_MENU_TIMEOUT_SECONDS',
]
