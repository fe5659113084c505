"""
Telemetry and monitoring utilities.
Prometheus metrics for the HTTP surface and the bot pipeline.

Version: 1.0.0
"""
import logging
import time

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)

# Metrics definitions
request_count = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

bot_messages = Counter(
    'bot_messages_total',
    'Inbound chat messages by the stage that answered them',
    ['stage']
)

bot_response_time = Histogram(
    'bot_response_time_seconds',
    'Time from message receipt to reply',
    ['from_cache']
)

bot_errors = Counter(
    'bot_errors_total',
    'Errors while answering chat messages',
    ['kind']
)

tickets_created = Counter(
    'support_tickets_created_total',
    'Support tickets created',
    ['category']
)

knowledge_updates = Counter(
    'knowledge_updates_total',
    'Knowledge entries learned from resolved tickets'
)

duplicate_events = Counter(
    'lark_duplicate_events_total',
    'Webhook events dropped as duplicates'
)

active_chats = Gauge(
    'active_chats_count',
    'Chats with unexpired state'
)


def setup_telemetry(app: FastAPI) -> None:
    """
    Add the /metrics endpoint and request metrics middleware.

    Args:
        app: FastAPI application instance
    """
    logger.info("Setting up telemetry...")

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.middleware("http")
    async def track_requests(request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        request_count.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).inc()
        request_duration.labels(
            method=request.method,
            endpoint=request.url.path
        ).observe(duration)

        return response

    logger.info("Telemetry setup complete")


def track_bot_message(stage: str) -> None:
    bot_messages.labels(stage=stage).inc()


def track_response_time(duration: float, from_cache: bool = False) -> None:
    bot_response_time.labels(from_cache=str(from_cache)).observe(duration)


def track_error(kind: str) -> None:
    bot_errors.labels(kind=kind).inc()


def track_ticket_created(category: str) -> None:
    tickets_created.labels(category=category or "general").inc()


def track_knowledge_update() -> None:
    knowledge_updates.inc()


def track_duplicate_event() -> None:
    duplicate_events.inc()


def update_active_chats(count: int) -> None:
    active_chats.set(count)


__all__ = [
    'setup_telemetry',
    'track_bot_message',
    'track_response_time',
    'track_error',
    'track_ticket_created',
    'track_knowledge_update',
    'track_duplicate_event',
    'update_active_chats',
]
