"""
Per-chat conversation state.
Rolling context, the chat's current mode and any ticket draft in progress.

Version: 1.0.0
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


DEFAULT_MAX_TURNS = 20


class ChatModeKind(str, Enum):
    """Top-level mode of a chat."""
    IDLE = "idle"
    AWAITING_TICKET_STEP = "awaiting_ticket_step"
    AWAITING_MENU_SELECTION = "awaiting_menu_selection"


class TicketStep(str, Enum):
    """Ticket intake steps, in order."""
    TITLE = "title"
    DESCRIPTION = "description"
    STEPS = "steps"


class MenuKind(str, Enum):
    """Which navigation menu the user is currently facing."""
    AWAITING_PAGE_SELECTION = "awaiting_page_selection"
    AWAITING_FAQ_SELECTION = "awaiting_faq_selection"
    TEXT_PAGE_SELECTION = "text_page_selection"
    TEXT_FAQ_MODE = "text_faq_mode"


class ChatMode(BaseModel):
    """
    Tagged chat mode.

    ``Idle``, ``AwaitingTicketStep(step)`` or ``AwaitingMenuSelection(kind)``.
    Use the constructors rather than building instances by hand.
    """

    kind: ChatModeKind = ChatModeKind.IDLE
    ticket_step: Optional[TicketStep] = None
    menu_kind: Optional[MenuKind] = None
    selected_page: Optional[str] = None
    entered_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_payload(self) -> 'ChatMode':
        if self.kind == ChatModeKind.AWAITING_TICKET_STEP:
            if self.ticket_step is None or self.menu_kind is not None:
                raise ValueError("Ticket mode requires a ticket step and no menu kind")
        elif self.kind == ChatModeKind.AWAITING_MENU_SELECTION:
            if self.menu_kind is None or self.ticket_step is not None:
                raise ValueError("Menu mode requires a menu kind and no ticket step")
        elif self.ticket_step is not None or self.menu_kind is not None:
            raise ValueError("Idle mode carries no payload")
        return self

    @classmethod
    def idle(cls) -> 'ChatMode':
        return cls()

    @classmethod
    def awaiting_ticket_step(cls, step: TicketStep) -> 'ChatMode':
        return cls(kind=ChatModeKind.AWAITING_TICKET_STEP, ticket_step=step)

    @classmethod
    def awaiting_menu_selection(
        cls,
        kind: MenuKind,
        selected_page: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> 'ChatMode':
        return cls(
            kind=ChatModeKind.AWAITING_MENU_SELECTION,
            menu_kind=kind,
            selected_page=selected_page,
            entered_at=now or datetime.utcnow()
        )

    @property
    def is_idle(self) -> bool:
        return self.kind == ChatModeKind.IDLE

    def __str__(self) -> str:
        if self.kind == ChatModeKind.AWAITING_TICKET_STEP:
            return f"AwaitingTicketStep({self.ticket_step.value})"
        if self.kind == ChatModeKind.AWAITING_MENU_SELECTION:
            return f"AwaitingMenuSelection({self.menu_kind.value})"
        return "Idle"


class ContextTurn(BaseModel):
    """One turn of conversation history."""

    role: Literal["user", "assistant"]
    content: str
    faqs_shown: Optional[str] = Field(
        None,
        description="Issue category whose FAQ text this turn delivered"
    )
    offers_ticket: bool = Field(
        False,
        description="Assistant turn that offered to open a support ticket"
    )

    def to_message(self) -> Dict[str, str]:
        """Shape used for LLM chat history."""
        return {"role": self.role, "content": self.content}


class TicketDraft(BaseModel):
    """Ticket fields collected so far during intake."""

    category: str = "general"
    original_message: str = ""
    sender_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    steps_attempted: List[str] = Field(default_factory=list)
    browser: str = "Not specified"
    device: str = "Not specified"
    urgency: str = "medium"


class ChatState(BaseModel):
    """
    Everything the bot remembers about one chat.

    The mode and the ticket draft move together: a chat awaiting a
    ticket step always has a draft, any other mode never does.
    """

    chat_id: str = Field(..., min_length=1, max_length=255)
    context: List[ContextTurn] = Field(default_factory=list)
    mode: ChatMode = Field(default_factory=ChatMode.idle)
    ticket: Optional[TicketDraft] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None

    @model_validator(mode='after')
    def validate_ticket_mode(self) -> 'ChatState':
        in_ticket_mode = self.mode.kind == ChatModeKind.AWAITING_TICKET_STEP
        if in_ticket_mode and self.ticket is None:
            raise ValueError("Ticket mode requires a ticket draft")
        if not in_ticket_mode and self.ticket is not None:
            raise ValueError("Ticket draft present outside ticket mode")
        return self

    # ===========================
    # Context
    # ===========================

    @property
    def is_new_conversation(self) -> bool:
        return not self.context

    def add_turn(
        self,
        role: str,
        content: str,
        faqs_shown: Optional[str] = None,
        offers_ticket: bool = False,
        max_turns: int = DEFAULT_MAX_TURNS
    ) -> None:
        """Append a turn and keep only the most recent ``max_turns``."""
        self.context.append(
            ContextTurn(
                role=role,
                content=content,
                faqs_shown=faqs_shown,
                offers_ticket=offers_ticket
            )
        )
        if len(self.context) > max_turns:
            del self.context[:len(self.context) - max_turns]

    def add_exchange(
        self,
        user_message: str,
        reply: str,
        faqs_shown: Optional[str] = None,
        offers_ticket: bool = False,
        max_turns: int = DEFAULT_MAX_TURNS
    ) -> None:
        self.add_turn("user", user_message, max_turns=max_turns)
        self.add_turn(
            "assistant",
            reply,
            faqs_shown=faqs_shown,
            offers_ticket=offers_ticket,
            max_turns=max_turns
        )

    def recent_context(self, count: int) -> List[ContextTurn]:
        if count <= 0:
            return []
        return self.context[-count:]

    def faqs_shown_for(self, category: str) -> bool:
        return any(turn.faqs_shown == category for turn in self.context)

    # ===========================
    # Mode transitions
    # ===========================

    def start_ticket(self, draft: TicketDraft) -> None:
        self.ticket = draft
        self.mode = ChatMode.awaiting_ticket_step(TicketStep.TITLE)

    def advance_ticket(self, step: TicketStep) -> None:
        if self.ticket is None:
            raise ValueError("No ticket draft in progress")
        self.mode = ChatMode.awaiting_ticket_step(step)

    def enter_menu(
        self,
        kind: MenuKind,
        selected_page: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> None:
        self.ticket = None
        self.mode = ChatMode.awaiting_menu_selection(kind, selected_page, now)

    def reset_mode(self) -> None:
        self.ticket = None
        self.mode = ChatMode.idle()

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, json_str: str) -> 'ChatState':
        return cls.model_validate_json(json_str)


__all__ = [
    'ChatModeKind',
    'TicketStep',
    'MenuKind',
    'ChatMode',
    'ContextTurn',
    'TicketDraft',
    'ChatState',
    'DEFAULT_MAX_TURNS',
]
