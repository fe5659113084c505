"""
Database configuration and session management.
Supports SQLite for development and PostgreSQL for production.

Version: 1.0.0
"""
from sqlalchemy import create_engine, text, inspect, event
from sqlalchemy.orm import declarative_base, sessionmaker, Session, scoped_session
from sqlalchemy.pool import StaticPool, QueuePool
from sqlalchemy.exc import (
    DisconnectionError,
    OperationalError
)
import logging
import os
import time
import threading
from typing import Optional, Dict, Any, Callable
from pathlib import Path

from .config import settings

logger = logging.getLogger(__name__)

# Create declarative base
Base = declarative_base()

REQUIRED_TABLES = ['support_tickets', 'knowledge_entries']

# Global engine and session factory
_engine = None
_SessionLocal = None
_init_lock = threading.RLock()
_initialized = False


def _enable_sqlite_wal_mode(dbapi_connection, connection_record):
    """Enable WAL mode for SQLite for better concurrency."""
    try:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA temp_store=MEMORY")
        cursor.close()
        logger.debug("SQLite WAL mode enabled")
    except Exception as e:
        logger.warning(f"Failed to enable SQLite optimizations: {e}")


def _ping_connection(dbapi_connection, connection_record, connection_proxy):
    """Ping connection on checkout to ensure it's alive."""
    try:
        dbapi_connection.cursor().execute("SELECT 1")
    except Exception as e:
        logger.warning(f"Connection ping failed, invalidating connection: {e}")
        raise DisconnectionError("Connection lost")


def create_database_engine() -> None:
    """
    Create database engine based on configuration.
    Thread-safe with initialization lock.
    """
    global _engine, _SessionLocal

    if _engine is not None:
        return

    with _init_lock:
        if _engine is not None:
            return

        try:
            logger.info("Creating database engine...")

            if settings.database_is_sqlite:
                db_path = settings.database_url.replace('sqlite:///', '')
                in_memory = db_path in ('', ':memory:')

                if not in_memory and not os.path.isabs(db_path):
                    db_dir = os.path.dirname(db_path)
                    if db_dir:
                        Path(db_dir).mkdir(parents=True, exist_ok=True)

                _engine = create_engine(
                    settings.database_url,
                    connect_args={
                        "check_same_thread": False,
                        "timeout": 20
                    },
                    poolclass=StaticPool,
                    echo=settings.database_echo
                )

                if not in_memory:
                    event.listen(_engine, "connect", _enable_sqlite_wal_mode)

                logger.info(f"SQLite database engine created: {db_path or ':memory:'}")

            elif settings.database_is_postgresql:
                _engine = create_engine(
                    settings.database_url,
                    poolclass=QueuePool,
                    pool_size=settings.database_pool_size,
                    max_overflow=settings.database_pool_overflow,
                    pool_timeout=settings.database_pool_timeout,
                    pool_recycle=settings.database_pool_recycle,
                    pool_pre_ping=True,
                    echo=settings.database_echo,
                    connect_args={
                        "application_name": settings.app_name,
                        "connect_timeout": 10,
                        "options": "-c timezone=UTC"
                    },
                    pool_use_lifo=True
                )

                logger.info(
                    f"PostgreSQL database engine created "
                    f"(pool_size={settings.database_pool_size}, "
                    f"max_overflow={settings.database_pool_overflow})"
                )

            else:
                _engine = create_engine(
                    settings.database_url,
                    pool_pre_ping=True,
                    echo=settings.database_echo
                )
                logger.info("Generic database engine created")

            event.listen(_engine, "checkout", _ping_connection)

            _SessionLocal = scoped_session(
                sessionmaker(
                    autocommit=False,
                    autoflush=False,
                    bind=_engine,
                    expire_on_commit=False
                )
            )

            logger.info("✓ Database engine created successfully")

        except Exception as e:
            logger.error(f"Failed to create database engine: {e}", exc_info=True)
            _engine = None
            _SessionLocal = None
            raise


def get_engine():
    """Get the database engine, creating it if necessary."""
    if _engine is None:
        create_database_engine()
    return _engine


def get_session_factory() -> Callable[[], Session]:
    """Get the session factory used by the persistence services."""
    if _SessionLocal is None:
        create_database_engine()

    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    return _SessionLocal


def init_db() -> None:
    """
    Initialize database tables.
    Thread-safe with proper locking.
    """
    global _initialized

    with _init_lock:
        try:
            logger.info("Initializing database...")

            engine = get_engine()
            if engine is None:
                raise RuntimeError("Failed to create database engine")

            # Import all models to register with Base
            from .models import ticket, knowledge  # noqa: F401

            logger.info("Creating database tables...")
            start_time = time.time()
            Base.metadata.create_all(bind=engine, checkfirst=True)
            creation_time = time.time() - start_time
            logger.info(f"✓ Database tables created in {creation_time:.2f}s")

            table_names = inspect(engine).get_table_names()
            missing_tables = [table for table in REQUIRED_TABLES if table not in table_names]

            if missing_tables:
                raise RuntimeError(f"Failed to create required tables: {missing_tables}")

            logger.info(f"Database tables: {table_names}")

            _initialized = True
            logger.info("✓ Database initialization complete")

        except Exception as e:
            logger.error(f"Database initialization failed: {e}", exc_info=True)
            _initialized = False
            raise


def cleanup_db() -> None:
    """Dispose of the engine and drop the session registry."""
    global _engine, _SessionLocal, _initialized

    with _init_lock:
        try:
            logger.info("Cleaning up database connections...")

            if _SessionLocal:
                try:
                    _SessionLocal.remove()
                except Exception as e:
                    logger.error(f"Error cleaning up sessions: {e}")
                finally:
                    _SessionLocal = None

            if _engine:
                try:
                    _engine.dispose()
                    logger.info("✓ Database engine disposed")
                except Exception as e:
                    logger.error(f"Error disposing engine: {e}")
                finally:
                    _engine = None

            _initialized = False
            logger.info("✓ Database cleanup complete")

        except Exception as e:
            logger.error(f"Database cleanup error: {e}")


def check_db_connection(max_retries: int = 3, retry_delay: float = 1.0) -> bool:
    """
    Check database connection with retry logic.

    Args:
        max_retries: Maximum retry attempts
        retry_delay: Delay between retries in seconds

    Returns:
        True if connection is healthy
    """
    if _engine is None:
        logger.error("Database engine not initialized")
        return False

    for attempt in range(max_retries):
        try:
            with _engine.connect() as connection:
                result = connection.execute(text("SELECT 1"))
                if result.fetchone()[0] == 1:
                    logger.debug("Database connection check passed")
                    return True

        except (DisconnectionError, OperationalError) as e:
            logger.warning(
                f"Database connection check failed "
                f"(attempt {attempt + 1}/{max_retries}): {e}"
            )

            if attempt < max_retries - 1:
                time.sleep(retry_delay)
                retry_delay *= 2

        except Exception as e:
            logger.error(f"Unexpected database connection error: {e}")
            break

    logger.error("Database connection check failed after all retries")
    return False


def check_tables_exist() -> bool:
    """
    Check if required tables exist.

    Returns:
        True if all required tables exist
    """
    if _engine is None:
        logger.error("Database engine not initialized")
        return False

    try:
        table_names = inspect(_engine).get_table_names()
        missing_tables = [table for table in REQUIRED_TABLES if table not in table_names]

        if missing_tables:
            logger.error(f"Missing tables: {missing_tables}")
            return False

        return True

    except Exception as e:
        logger.error(f"Error checking tables: {e}")
        return False


def get_database_info() -> Dict[str, Any]:
    """
    Get database information for monitoring.

    Returns:
        Dictionary with database information
    """
    if _engine is None:
        return {"status": "not_initialized"}

    info = {
        "status": "connected",
        "type": "postgresql" if settings.database_is_postgresql else "sqlite",
        "initialized": _initialized
    }

    pool = _engine.pool
    if hasattr(pool, 'checkedout') and not isinstance(pool, StaticPool):
        info.update({
            "pool_size": pool.size(),
            "checked_in": pool.checkedin(),
            "checked_out": pool.checkedout()
        })

    return info


__all__ = [
    'Base',
    'REQUIRED_TABLES',
    'create_database_engine',
    'get_engine',
    'get_session_factory',
    'init_db',
    'cleanup_db',
    'check_db_connection',
    'check_tables_exist',
    'get_database_info',
]
