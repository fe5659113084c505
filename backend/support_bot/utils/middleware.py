"""
HTTP middleware.
Request ids, per-request completion logs carrying the Lark event context
and a JSON error boundary.

Version: 1.0.0
"""
import logging
import time
import uuid
from typing import Any, Callable, Dict

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..config import settings

logger = logging.getLogger(__name__)


WEBHOOK_PATHS = frozenset({"/lark/events", "/webhook"})

# Lark redelivers an event that is not acknowledged within 3 seconds
LARK_ACK_DEADLINE_SECONDS = 3.0
SLOW_REQUEST_SECONDS = 1.0

LARK_CONTEXT_FIELDS = ("lark_event_id", "lark_event_type", "lark_chat_id")


def is_webhook_request(request: Request) -> bool:
    return request.url.path in WEBHOOK_PATHS


def lark_context(request: Request) -> Dict[str, Any]:
    """Lark fields the webhook route recorded on ``request.state``."""
    return {
        field: getattr(request.state, field)
        for field in LARK_CONTEXT_FIELDS
        if getattr(request.state, field, None) is not None
    }


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Assign a request id, time the request and log its completion.

    Webhook requests are logged with the Lark event id, type and chat and
    warned about when they come close to Lark's acknowledgement deadline.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        webhook = is_webhook_request(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration:.4f}"

        log_context = {
            "request_id": request_id,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_seconds": duration,
            "webhook": webhook,
            **lark_context(request)
        }

        if webhook:
            event = log_context.get("lark_event_type") or "no event"
            logger.info(
                f"Webhook {response.status_code} ({event}) in {duration:.3f}s [{request_id}]",
                extra=log_context
            )
            if duration > LARK_ACK_DEADLINE_SECONDS * 0.8:
                logger.warning(
                    f"Webhook ack took {duration:.2f}s; Lark may redeliver "
                    f"{log_context.get('lark_event_id', 'the event')}",
                    extra=log_context
                )
        else:
            logger.debug(
                f"{request.method} {request.url.path} {response.status_code} "
                f"in {duration:.3f}s [{request_id}]",
                extra=log_context
            )
            if duration > SLOW_REQUEST_SECONDS:
                logger.warning(
                    f"Slow request: {request.method} {request.url.path} took {duration:.2f}s",
                    extra=log_context
                )

        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Turn unhandled exceptions into JSON 500s.

    Webhook failures answer in the webhook's own ``{"success": false}``
    shape so Lark's delivery log shows the request id.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except Exception as e:
            request_id = getattr(request.state, "request_id", "unknown")
            logger.error(
                f"✗ Unhandled exception in request {request_id}: {e}",
                extra={"request_id": request_id, "path": request.url.path, **lark_context(request)},
                exc_info=True
            )

            message = str(e) if settings.debug else "An unexpected error occurred"
            if is_webhook_request(request):
                content = {"success": False, "error": message, "request_id": request_id}
            else:
                content = {"error": "Internal server error", "message": message, "request_id": request_id}

            return JSONResponse(status_code=500, content=content)


__all__ = [
    'RequestContextMiddleware',
    'ErrorHandlingMiddleware',
    'WEBHOOK_PATHS',
    'is_webhook_request',
    'lark_context',
]
