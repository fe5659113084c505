"""
FastAPI application entry point.
Wires the Lark webhook, ticket and knowledge admin routes, health checks
and the background chat state cleanup.

Version: 1.0.0
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import asyncio
from typing import Any, Dict

from .config import settings
from .config.integration_settings import integration_settings
from .api.routes import health, knowledge, tickets, webhook
from .agents.support_agent import SupportBotAgent
from .clients.lark_client import LarkClient
from .clients.llm_client import LLMClient
from .dialogue.analytics import BotAnalytics
from .dialogue.kb_updater import KnowledgeBaseUpdater
from .dialogue.knowledge import KnowledgeBase
from .dialogue.orchestrator import DialogueOrchestrator
from .dialogue.response_cache import ResponseCache
from .dialogue.tickets import TicketLifecycleManager
from .services.knowledge_service import KnowledgeService
from .services.ticket_service import TicketService
from .state import EventDeduplicator, create_state_store
from .utils.telemetry import setup_telemetry, update_active_chats
from .utils.middleware import (
    RequestContextMiddleware,
    ErrorHandlingMiddleware
)
from .database import init_db, cleanup_db, check_db_connection, check_tables_exist

# Configure structured logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else getattr(logging, settings.log_level),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

logger = logging.getLogger(__name__)


async def periodic_cleanup_task(app: FastAPI, shutdown_event: asyncio.Event) -> None:
    """
    Background task for periodic cleanup.
    Drops expired chat state and refreshes the active chat gauge.
    """
    logger.info("Starting periodic cleanup task")

    cleanup_interval = settings.state_cleanup_interval_seconds

    while not shutdown_event.is_set():
        try:
            # Wait for cleanup interval or shutdown
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=cleanup_interval
            )
            break

        except asyncio.TimeoutError:
            pass

        try:
            agent = getattr(app.state, "agent", None)
            if agent is None:
                continue

            cleaned = await agent.cleanup_expired()
            if cleaned > 0:
                logger.info(f"Periodic cleanup: removed {cleaned} expired chats")

            stats = await agent.state_store.get_stats()
            update_active_chats(stats.get("active_chats", 0))
            logger.debug(f"Chat state stats: {stats}")

        except Exception as e:
            logger.error(f"Error in periodic cleanup task: {e}", exc_info=True)


def _create_state_store():
    if settings.state_store_type.value == "redis":
        return create_state_store(
            "redis",
            redis_url=settings.redis_url,
            key_prefix=settings.redis_state_key_prefix,
            default_ttl=settings.chat_state_ttl_seconds
        )
    return create_state_store(
        "in_memory",
        max_chats=settings.state_max_chats,
        default_ttl=settings.chat_state_ttl_seconds
    )


async def build_components(app: FastAPI) -> None:
    """
    Create every long-lived component and attach it to ``app.state``.

    Args:
        app: FastAPI application instance
    """
    ticket_service = TicketService()
    knowledge_service = KnowledgeService()

    # Knowledge base
    knowledge_base = KnowledgeBase(path=settings.knowledge_base_path)
    try:
        entries = await knowledge_service.list_active_entries()
    except Exception as e:
        logger.warning(f"✗ Could not load stored knowledge entries: {e}")
        entries = []
    knowledge_base.load(entries)

    # Outbound clients
    lark_client = LarkClient()
    await lark_client.initialize()

    llm_client = LLMClient()
    await llm_client.initialize()

    response_cache = ResponseCache(ttl_seconds=settings.response_cache_ttl_seconds)

    # Dialogue
    ticket_manager = TicketLifecycleManager(
        ticket_service=ticket_service,
        messenger=lark_client,
        support_group_id=integration_settings.lark_support_group_id,
        support_email=settings.support_email,
        support_chat_link=settings.support_chat_link,
        context_snapshot_turns=settings.context_max_turns
    )
    orchestrator = DialogueOrchestrator(
        knowledge_base=knowledge_base,
        response_cache=response_cache,
        llm=llm_client,
        tickets=ticket_manager,
        confidence_threshold=settings.knowledge_confidence_threshold,
        menu_timeout_seconds=settings.menu_timeout_seconds,
        history_turns=settings.context_history_turns,
        max_turns=settings.context_max_turns
    )
    kb_updater = KnowledgeBaseUpdater(
        ticket_service=ticket_service,
        knowledge_service=knowledge_service,
        knowledge_base=knowledge_base,
        llm=llm_client,
        messenger=lark_client,
        support_group_id=integration_settings.lark_support_group_id,
        lookback_days=settings.ticket_lookback_days,
        support_staff_ids=integration_settings.lark_support_staff_ids,
        on_reload=response_cache.clear
    )

    state_store = _create_state_store()
    agent = SupportBotAgent(
        state_store=state_store,
        orchestrator=orchestrator,
        kb_updater=kb_updater,
        messenger=lark_client,
        analytics=BotAnalytics(),
        bot_ids=[integration_settings.lark_bot_open_id, integration_settings.lark_app_id],
        state_ttl=settings.chat_state_ttl_seconds
    )

    app.state.ticket_service = ticket_service
    app.state.knowledge_service = knowledge_service
    app.state.knowledge_base = knowledge_base
    app.state.lark_client = lark_client
    app.state.llm_client = llm_client
    app.state.kb_updater = kb_updater
    app.state.event_dedupe = EventDeduplicator(
        max_events=settings.dedupe_max_events,
        trim_to=settings.dedupe_trim_to
    )
    app.state.agent = agent


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle events.
    Initialize resources on startup, cleanup on shutdown.
    """
    # === STARTUP ===
    shutdown_event = asyncio.Event()
    cleanup_task = None

    try:
        logger.info("=" * 60)
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"Environment: {settings.environment.value}")
        logger.info(f"Debug mode: {settings.debug}")
        logger.info("=" * 60)

        # Initialize database
        logger.info("Initializing database...")
        init_db()

        if not check_db_connection():
            raise RuntimeError("Database connection check failed")

        if not check_tables_exist():
            logger.warning("Some database tables are missing, attempting to create...")
            init_db()

            if not check_tables_exist():
                raise RuntimeError("Failed to create required database tables")

        logger.info("✓ Database initialized and verified")

        for problem in integration_settings.validate_integrations():
            logger.warning(f"✗ {problem}")

        logger.info("Initializing support bot...")
        await build_components(app)
        logger.info("✓ Support bot initialized")

        # Test chat state store
        agent = app.state.agent
        try:
            store_health = await agent.state_store.health_check()
            if store_health.get('healthy'):
                logger.info(f"✓ Chat state store: {type(agent.state_store).__name__}")
            else:
                logger.warning(f"✗ Chat state store health check failed: {store_health}")
        except Exception as e:
            logger.warning(f"✗ Chat state store health check error: {e}")

        await perform_startup_checks(app)

        logger.info("Starting background cleanup task...")
        cleanup_task = asyncio.create_task(periodic_cleanup_task(app, shutdown_event))

        logger.info("=" * 60)
        logger.info("✓ Application started successfully")
        logger.info(f"Webhook: http://{settings.api_host}:{settings.api_port}/lark/events")
        logger.info(f"Health check: http://{settings.api_host}:{settings.api_port}/health")
        logger.info("=" * 60)

    except Exception as e:
        logger.error(f"Failed to start application: {e}", exc_info=True)
        raise

    yield  # === APPLICATION RUNS HERE ===

    # === SHUTDOWN ===
    logger.info("=" * 60)
    logger.info("Shutting down application...")
    logger.info("=" * 60)

    shutdown_event.set()

    if cleanup_task and not cleanup_task.done():
        logger.info("Waiting for cleanup task to complete...")
        try:
            await asyncio.wait_for(cleanup_task, timeout=5.0)
            logger.info("✓ Cleanup task completed")
        except asyncio.TimeoutError:
            logger.warning("Cleanup task did not complete in time, cancelling...")
            cleanup_task.cancel()
            try:
                await cleanup_task
            except asyncio.CancelledError:
                logger.info("✓ Cleanup task cancelled")

    if hasattr(app.state, 'agent'):
        try:
            await app.state.agent.cleanup()
        except Exception as e:
            logger.error(f"Error during agent cleanup: {e}")

    for name in ('lark_client', 'llm_client'):
        client = getattr(app.state, name, None)
        if client is None:
            continue
        try:
            await client.cleanup()
        except Exception as e:
            logger.error(f"Error closing {name}: {e}")

    try:
        logger.info("Cleaning up database connections...")
        cleanup_db()
        logger.info("✓ Database cleanup complete")
    except Exception as e:
        logger.error(f"Error during database cleanup: {e}")

    logger.info("=" * 60)
    logger.info("✓ Application shutdown complete")
    logger.info("=" * 60)


async def perform_startup_checks(app: FastAPI) -> None:
    """
    Perform critical health checks on startup.

    Args:
        app: FastAPI application instance

    Raises:
        RuntimeError: If critical components are not ready
    """
    checks = []
    critical_failures = []

    try:
        if check_db_connection():
            checks.append("Database: ✓")

            if check_tables_exist():
                checks.append("Tables: ✓")
            else:
                checks.append("Tables: ✗")
                critical_failures.append("Database tables missing")
        else:
            checks.append("Database: ✗")
            critical_failures.append("Database connection failed")
    except Exception as e:
        logger.error(f"Database check failed: {e}")
        checks.append("Database: ✗")
        critical_failures.append(f"Database error: {e}")

    knowledge_base = getattr(app.state, 'knowledge_base', None)
    if knowledge_base is not None and knowledge_base.is_loaded:
        checks.append(f"Knowledge Base: ✓ ({len(knowledge_base.document)} chars)")
    else:
        checks.append("Knowledge Base: ✗")
        critical_failures.append(f"Knowledge base not loaded from {settings.knowledge_base_path}")

    lark = getattr(app.state, 'lark_client', None)
    checks.append(f"Lark: {'✓' if lark is not None and lark.configured else '✗ (not configured)'}")

    llm = getattr(app.state, 'llm_client', None)
    checks.append(f"LLM: {'✓' if llm is not None and llm.configured else '✗ (knowledge base answers only)'}")

    if hasattr(app.state, 'agent'):
        checks.append(f"Chat State Store: {type(app.state.agent.state_store).__name__}")
    else:
        critical_failures.append("Agent not initialized")

    logger.info("Startup checks:")
    for check in checks:
        logger.info(f"  {check}")

    if critical_failures:
        raise RuntimeError(f"Critical startup failures: {'; '.join(critical_failures)}")


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware and routes."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="PM-Next Lark support bot: FAQ menus, ticket intake and a self-updating knowledge base",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"]
    )

    # Order matters - applied in reverse
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestContextMiddleware)

    if settings.enable_telemetry:
        setup_telemetry(app)

    app.include_router(webhook.router, tags=["Lark"])
    app.include_router(tickets.router, prefix="/tickets", tags=["Tickets"])
    app.include_router(knowledge.router, tags=["Knowledge"])
    app.include_router(health.router, tags=["Health"])

    @app.get("/", tags=["Root"])
    async def root(request: Request) -> Dict[str, Any]:
        """API information and component status."""
        agent = getattr(request.app.state, "agent", None)
        state_stats: Dict[str, Any] = {}
        if agent is not None:
            try:
                state_stats = await agent.state_store.get_stats()
            except Exception as e:
                logger.warning(f"Failed to get chat state stats: {e}")

        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment.value,
            "status": "operational",
            "endpoints": {
                "webhook": "/lark/events",
                "tickets": "/tickets",
                "health": "/health",
                "analytics": "/analytics",
                "metrics": "/metrics" if settings.enable_telemetry else "disabled"
            },
            "chat_state": state_stats
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions gracefully."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            f"Unhandled exception in request {request_id}: {exc}",
            exc_info=True,
            extra={
                "path": request.url.path,
                "method": request.method,
                "client": request.client.host if request.client else "unknown"
            }
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": str(exc) if settings.debug else "An unexpected error occurred",
                "request_id": request_id
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "support_bot.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
