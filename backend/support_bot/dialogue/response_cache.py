"""
Response cache for canonical questions.

Only messages matching one of a short allowlist of question shapes are
cacheable, and the cache key is the matching pattern rather than the
message, so every message of one shape shares one answer.

Version: 1.0.0
"""
import logging
import re
import time
from typing import Any, Callable, Dict, Optional, Pattern, Tuple

from cachetools import TTLCache

logger = logging.getLogger(__name__)


CACHEABLE_PATTERNS: Tuple[Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE) for p in (
        r"how.*add.*candidate",
        r"how.*create.*job",
        r"how.*schedule.*interview",
        r"where.*find",
        r"what.*pm.?next",
        r"login.*problem",
        r"upload.*error",
    )
)

DEFAULT_CACHE_TTL = 24 * 60 * 60


class ResponseCache:
    """
    Pattern-keyed answer cache with a fixed expiry.

    Args:
        ttl_seconds: Age after which an entry is treated as absent
        timer: Monotonic clock in seconds; tests pass a fake one
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_CACHE_TTL,
        timer: Callable[[], float] = time.monotonic
    ):
        self.ttl_seconds = ttl_seconds
        self._cache: TTLCache = TTLCache(
            maxsize=len(CACHEABLE_PATTERNS),
            ttl=ttl_seconds,
            timer=timer
        )
        self.hits = 0
        self.misses = 0

    @staticmethod
    def cache_key(message: str) -> Optional[str]:
        """Pattern source the message falls under, if any."""
        normalized = (message or "").lower().strip()
        for pattern in CACHEABLE_PATTERNS:
            if pattern.search(normalized):
                return pattern.pattern
        return None

    def get(self, message: str) -> Optional[str]:
        key = self.cache_key(message)
        if key is None:
            return None

        response = self._cache.get(key)
        if response is None:
            self.misses += 1
            return None

        self.hits += 1
        logger.debug(f"Using cached response for pattern {key!r}")
        return response

    def set(self, message: str, response: str) -> bool:
        """Store ``response`` when the message is cacheable."""
        key = self.cache_key(message)
        if key is None or not response:
            return False

        self._cache[key] = response
        logger.debug(f"Cached response for pattern {key!r}")
        return True

    def clear(self) -> None:
        self._cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "entries": len(self._cache),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 3) if total else 0.0,
            "ttl_seconds": self.ttl_seconds
        }


__all__ = ['CACHEABLE_PATTERNS', 'DEFAULT_CACHE_TTL', 'ResponseCache']
