"""
Agents module for the PM-Next support bot
"""

from .support_agent import SupportBotAgent, MIN_IDLE_MESSAGE_LENGTH

__all__ = [
    "SupportBotAgent",
    "MIN_IDLE_MESSAGE_LENGTH",
]
