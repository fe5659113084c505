"""
Health check and analytics API routes.
"""
import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Request

from ...agents.support_agent import SupportBotAgent
from ...clients.call_wrapper import get_breaker_metrics
from ...config import settings
from ...database import check_db_connection, get_database_info
from ...models.schemas import HealthResponse
from ..dependencies import get_agent

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Basic health check endpoint.

    Returns:
        Status plus knowledge base and chat state summaries
    """
    details = {}
    knowledge_base = getattr(request.app.state, "knowledge_base", None)
    if knowledge_base is not None:
        details["knowledge_base"] = knowledge_base.stats()

    agent = getattr(request.app.state, "agent", None)
    if agent is not None:
        details["state_store"] = await agent.state_store.get_stats()

    return HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        version=settings.version,
        details=details
    )


@router.get("/health/ready", response_model=HealthResponse)
async def readiness_check(request: Request):
    """
    Readiness check for all services.

    Returns:
        Detailed service health status
    """
    services = {}
    overall_status = "healthy"

    database_ok = await asyncio.get_event_loop().run_in_executor(
        None, lambda: check_db_connection(max_retries=1)
    )
    services["database"] = "healthy" if database_ok else "unhealthy"
    if not database_ok:
        overall_status = "degraded"

    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        services["agent"] = "not_initialized"
        overall_status = "unhealthy"
    else:
        services["agent"] = "healthy"
        store_health = await agent.state_store.health_check()
        services["state_store"] = "healthy" if store_health.get("healthy") else "unhealthy"
        if services["state_store"] != "healthy":
            overall_status = "degraded"

    knowledge_base = getattr(request.app.state, "knowledge_base", None)
    if knowledge_base is not None and knowledge_base.is_loaded:
        services["knowledge_base"] = "healthy"
    else:
        services["knowledge_base"] = "not_loaded"
        overall_status = "degraded"

    lark = getattr(request.app.state, "lark_client", None)
    services["lark"] = "configured" if lark is not None and lark.configured else "not_configured"

    llm = getattr(request.app.state, "llm_client", None)
    services["llm"] = "configured" if llm is not None and llm.configured else "not_configured"

    breakers = get_breaker_metrics()
    open_breakers = [name for name, breaker in breakers.items() if breaker["state"] == "open"]
    if open_breakers:
        logger.warning(f"Circuit open for: {', '.join(open_breakers)}")
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.utcnow(),
        version=settings.version,
        services=services,
        details={
            "database": get_database_info(),
            "circuit_breakers": breakers
        }
    )


@router.get("/health/live")
async def liveness_check():
    """
    Simple liveness check.

    Returns:
        Basic alive status
    """
    return {"status": "alive", "timestamp": datetime.utcnow().isoformat()}


@router.get("/analytics")
async def analytics(request: Request, agent: SupportBotAgent = Depends(get_agent)):
    """Request counts, cache hit rate, response time and common questions."""
    extra = {
        "response_cache": agent.orchestrator.response_cache.get_stats(),
        "active_chats": (await agent.state_store.get_stats()).get("active_chats"),
        "timestamp": datetime.utcnow().isoformat()
    }

    llm = getattr(request.app.state, "llm_client", None)
    if llm is not None:
        extra["llm"] = llm.get_status()

    return agent.analytics.summary(extra)
