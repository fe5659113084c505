"""
Webhook event de-duplication.
Lark redelivers events it considers unacknowledged; each event id is
processed at most once while it is remembered.

Version: 1.0.0
"""
import logging
from collections import OrderedDict
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class EventDeduplicator:
    """
    Bounded memory of recently seen event ids.

    When more than ``max_events`` ids are remembered the oldest are
    forgotten until only ``trim_to`` remain.
    """

    def __init__(self, max_events: int = 1000, trim_to: int = 500):
        if trim_to > max_events:
            raise ValueError("trim_to must not exceed max_events")
        self.max_events = max_events
        self.trim_to = trim_to
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self.duplicates_skipped = 0

    def is_duplicate(self, event_id: Optional[str]) -> bool:
        """
        Record ``event_id`` and report whether it was already seen.

        Events without an id can't be de-duplicated and always pass.
        """
        if not event_id:
            return False

        if event_id in self._seen:
            self.duplicates_skipped += 1
            logger.info(f"Skipping duplicate event {event_id}")
            return True

        self._seen[event_id] = None
        if len(self._seen) > self.max_events:
            while len(self._seen) > self.trim_to:
                self._seen.popitem(last=False)
            logger.debug(f"Trimmed event memory to {self.trim_to} ids")

        return False

    def __len__(self) -> int:
        return len(self._seen)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "remembered_events": len(self._seen),
            "max_events": self.max_events,
            "duplicates_skipped": self.duplicates_skipped
        }


__all__ = ['EventDeduplicator']
