"""
In-process usage analytics for the /analytics endpoint.

Version: 1.0.0
"""
import logging
import time
from collections import Counter
from typing import Any, Callable, Dict, Optional

from ..utils.telemetry import track_error, track_response_time

logger = logging.getLogger(__name__)


QUESTION_KEY_LENGTH = 50
TOP_QUESTIONS = 10


class BotAnalytics:
    """
    Request counters kept since process start.

    Lost on restart; Prometheus metrics carry the long-term view.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.started_at = clock()
        self.total_requests = 0
        self.cache_hits = 0
        self.error_count = 0
        self.average_response_time_ms = 0.0
        self.common_questions: Counter = Counter()

    def track_request(self, message: str, response_time_ms: float, from_cache: bool = False) -> None:
        self.total_requests += 1
        if from_cache:
            self.cache_hits += 1

        self.average_response_time_ms += (
            (response_time_ms - self.average_response_time_ms) / self.total_requests
        )
        self.common_questions[(message or "").lower()[:QUESTION_KEY_LENGTH]] += 1

        track_response_time(response_time_ms / 1000.0, from_cache=from_cache)
        logger.debug(
            f"Analytics: {self.total_requests} requests, {self.cache_hits} cache hits, "
            f"avg {self.average_response_time_ms:.0f}ms"
        )

    def track_error(self, kind: str = "unknown") -> None:
        self.error_count += 1
        track_error(kind)

    def summary(self, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        total = self.total_requests
        summary = {
            "total_requests": total,
            "cache_hits": self.cache_hits,
            "cache_hit_rate": round(self.cache_hits / total * 100, 1) if total else 0.0,
            "average_response_time_ms": round(self.average_response_time_ms),
            "error_count": self.error_count,
            "error_rate": round(self.error_count / total * 100, 1) if total else 0.0,
            "top_questions": [
                {"question": question, "count": count}
                for question, count in self.common_questions.most_common(TOP_QUESTIONS)
            ],
            "uptime_seconds": round(self._clock() - self.started_at, 1)
        }
        if extra:
            summary.update(extra)
        return summary


__all__ = ['BotAnalytics']
