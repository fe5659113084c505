"""
API module for the PM-Next support bot.
"""
from .routes import health, knowledge, tickets, webhook

__all__ = [
    "health",
    "knowledge",
    "tickets",
    "webhook",
]
