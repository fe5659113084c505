"""
API routes module initialization.
"""
from . import health, knowledge, tickets, webhook

__all__ = ["health", "knowledge", "tickets", "webhook"]
