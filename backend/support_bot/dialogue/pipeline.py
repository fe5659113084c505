"""
Inbound pipeline results.

Each stage either handles a message (and says what to send back) or
passes it through to the next stage.

Version: 1.0.0
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..state.chat_state import MenuKind


class Outcome(str, Enum):
    HANDLED = "handled"
    PASS_THROUGH = "pass_through"


@dataclass
class Reply:
    """
    What to send back to the chat.

    A card reply carries the plain-text menu to send instead when the
    card cannot be delivered, and the menu mode the chat moves to then.
    """
    text: Optional[str] = None
    card: Optional[Dict[str, Any]] = None
    fallback_text: Optional[str] = None
    fallback_menu: Optional[MenuKind] = None
    selected_page: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.card


@dataclass
class StageResult:
    """
    Outcome of one pipeline stage.

    ``stage`` names what produced the reply (``ticket``, ``menu``,
    ``cache``, ``llm`` ...) for analytics.
    """
    outcome: Outcome
    reply: Optional[Reply] = None
    stage: Optional[str] = None

    @classmethod
    def handled(cls, reply: Optional[Reply] = None, stage: Optional[str] = None) -> 'StageResult':
        return cls(Outcome.HANDLED, reply, stage)

    @classmethod
    def text(cls, text: str, stage: Optional[str] = None) -> 'StageResult':
        return cls(Outcome.HANDLED, Reply(text=text), stage)

    @classmethod
    def pass_through(cls) -> 'StageResult':
        return cls(Outcome.PASS_THROUGH)

    @property
    def is_handled(self) -> bool:
        return self.outcome == Outcome.HANDLED


__all__ = [
    'Outcome',
    'Reply',
    'StageResult',
]
