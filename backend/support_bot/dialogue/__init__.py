"""
Dialogue package.
Message classification, FAQ menus, knowledge lookup, ticket intake and the
knowledge-base updater that together decide how the bot replies.

Version: 1.0.0
"""
from .pipeline import Outcome, Reply, StageResult
from .events import CardAction, InboundMessage
from .knowledge import KnowledgeBase, KnowledgeMatch
from .response_cache import ResponseCache
from .tickets import TicketLifecycleManager
from .kb_updater import KnowledgeBaseUpdater, KnowledgeUpdateError
from .orchestrator import DialogueOrchestrator
from .analytics import BotAnalytics

__all__ = [
    'Outcome',
    'Reply',
    'StageResult',
    'CardAction',
    'InboundMessage',
    'KnowledgeBase',
    'KnowledgeMatch',
    'ResponseCache',
    'TicketLifecycleManager',
    'KnowledgeBaseUpdater',
    'KnowledgeUpdateError',
    'DialogueOrchestrator',
    'BotAnalytics',
]
