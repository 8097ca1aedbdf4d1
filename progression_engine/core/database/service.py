"""
Database Service - Core Infrastructure Layer

Purpose
-------
Centralized async database engine and session management. Provides atomic
transactions, pessimistic locking helpers and conflict detection for all
progression writes.

Responsibilities
----------------
- Initialize and manage a single AsyncEngine instance with connection pooling
- Provide async context managers for read-only sessions and atomic transactions
- Enforce transaction discipline: automatic commit on success, rollback on exception
- Translate lost-update races (stale version, duplicate key) into
  ``PersistenceConflictError`` so callers can retry the whole operation
- Support pessimistic row locking via ``with_for_update=True``
- Configure statement timeouts for PostgreSQL connections
- Provide idempotent initialization with async lock protection

Non-Responsibilities
--------------------
- Retry policies (handled by DatabaseRetryPolicy)
- Migrations (``create_schema`` exists for bootstrap and tests only)
- Domain logic or event emission

Architecture Notes
------------------
**Transaction Model**:
- ``get_transaction()`` is the primary interface for all state mutations
- Automatic commit on success, rollback on any exception
- Never manually call ``session.commit()`` inside service code
- Rows carry a ``version`` column; a concurrent commit of the same row makes
  the loser's UPDATE match zero rows, which surfaces as a conflict

**Connection Pooling**:
- AsyncAdaptedQueuePool for server databases (configurable pool_size and max_overflow)
- NullPool for SQLite and testing environments

Usage Example
-------------
>>> async with DatabaseService.get_transaction("UserProgression") as session:
>>>     progression = await session.get(
>>>         UserProgression, progression_id, with_for_update=True
>>>     )
>>>     progression.total_xp += 10
>>>     # Automatic commit on exit

Read-only access:

>>> async with DatabaseService.get_session() as session:
>>>     result = await session.execute(select(VocabularyItem).where(...))
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional, Type

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, Pool

from progression_engine.core.config.config import Config
from progression_engine.core.database.base import Base
from progression_engine.core.logging.logger import get_logger
from progression_engine.modules.shared.exceptions import PersistenceConflictError

logger = get_logger(__name__)


# ============================================================================
# Exceptions
# ============================================================================


class DatabaseInitializationError(RuntimeError):
    """Raised when database engine initialization fails."""


class DatabaseNotInitializedError(RuntimeError):
    """Raised when database operations are attempted before initialization."""


# ============================================================================
# Configuration Snapshot
# ============================================================================


@dataclass(frozen=True)
class _DatabaseConfigSnapshot:
    """
    Immutable snapshot of database configuration.

    Prevents repeated Config lookups and provides a stable configuration
    view for the lifetime of the engine.
    """

    url: str
    echo: bool
    pool_class: Type[Pool]
    pool_size: int
    max_overflow: int
    pool_recycle: int
    pool_timeout: int
    statement_timeout_ms: int

    @property
    def is_postgres(self) -> bool:
        return self.url.startswith(("postgresql://", "postgresql+asyncpg://"))

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def url_scheme(self) -> str:
        return self.url.split(":", 1)[0] if ":" in self.url else "unknown"


# ============================================================================
# DatabaseService
# ============================================================================


class DatabaseService:
    """
    Centralized async database engine and session management.

    Public API
    ----------
    **Lifecycle**:
    - initialize() -> Initialize engine and session factory
    - shutdown() -> Dispose engine and cleanup resources
    - create_schema() / drop_schema() -> Bootstrap tables (tests, local dev)

    **Session Management**:
    - get_session() -> Read-only access
    - get_transaction() -> Atomic write transaction (preferred)

    **Utilities**:
    - health_check() -> Fast database reachability check
    """

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _config_snapshot: Optional[_DatabaseConfigSnapshot] = None
    _init_lock: asyncio.Lock = asyncio.Lock()

    # ========================================================================
    # Initialization & Shutdown
    # ========================================================================

    @classmethod
    def _build_config_snapshot(
        cls, url_override: Optional[str] = None
    ) -> _DatabaseConfigSnapshot:
        """
        Build an immutable configuration snapshot from Config.

        Raises
        ------
        DatabaseInitializationError
            If DATABASE_URL is missing or invalid.
        """
        database_url = url_override or getattr(Config, "DATABASE_URL", None)
        if not database_url or not isinstance(database_url, str):
            logger.error("DATABASE_URL is not configured or invalid")
            raise DatabaseInitializationError(
                "DATABASE_URL must be configured as a non-empty string"
            )

        is_testing = Config.is_testing()
        is_sqlite = database_url.startswith("sqlite")

        pool_class: Type[Pool] = (
            NullPool if (is_testing or is_sqlite) else AsyncAdaptedQueuePool
        )

        snapshot = _DatabaseConfigSnapshot(
            url=database_url,
            echo=bool(getattr(Config, "DATABASE_ECHO", False)),
            pool_class=pool_class,
            pool_size=int(getattr(Config, "DATABASE_POOL_SIZE", 10)),
            max_overflow=int(getattr(Config, "DATABASE_MAX_OVERFLOW", 10)),
            pool_recycle=int(getattr(Config, "DATABASE_POOL_RECYCLE", 1800)),
            pool_timeout=int(getattr(Config, "DATABASE_POOL_TIMEOUT", 30)),
            statement_timeout_ms=int(
                getattr(Config, "DATABASE_STATEMENT_TIMEOUT_MS", 30_000)
            ),
        )

        logger.debug(
            "Database configuration snapshot created",
            extra={
                "url_scheme": snapshot.url_scheme,
                "pool_class": pool_class.__name__,
                "pool_size": snapshot.pool_size,
                "is_testing": is_testing,
            },
        )

        return snapshot

    @classmethod
    async def initialize(cls, url: Optional[str] = None) -> None:
        """
        Initialize the database engine and session factory.

        Idempotent: returns immediately when already initialized.

        Parameters
        ----------
        url : Optional[str]
            Overrides ``Config.DATABASE_URL`` (used by tests and tools).

        Raises
        ------
        DatabaseInitializationError
            If configuration is invalid or engine creation fails.
        """
        async with cls._init_lock:
            if cls._engine is not None:
                logger.debug("DatabaseService already initialized; skipping")
                return

            logger.info("Initializing DatabaseService")

            try:
                config = cls._build_config_snapshot(url)
                cls._config_snapshot = config

                engine_kwargs: dict[str, Any] = {
                    "echo": config.echo,
                    "poolclass": config.pool_class,
                }

                if config.pool_class is AsyncAdaptedQueuePool:
                    engine_kwargs.update(
                        {
                            "pool_size": config.pool_size,
                            "max_overflow": config.max_overflow,
                            "pool_recycle": config.pool_recycle,
                            "pool_timeout": config.pool_timeout,
                            "pool_pre_ping": True,
                        }
                    )

                if config.is_sqlite:
                    # Writers wait for each other instead of failing immediately
                    engine_kwargs["connect_args"] = {"timeout": 30}

                cls._engine = create_async_engine(config.url, **engine_kwargs)
                cls._session_factory = async_sessionmaker(
                    bind=cls._engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                )

                logger.info(
                    "DatabaseService initialized successfully",
                    extra={
                        "url_scheme": config.url_scheme,
                        "pool_class": config.pool_class.__name__,
                    },
                )

            except Exception as exc:
                logger.error(
                    "DatabaseService initialization failed",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "config_error": isinstance(exc, DatabaseInitializationError),
                    },
                    exc_info=True,
                )
                raise DatabaseInitializationError(
                    f"Database initialization failed: {exc}"
                ) from exc

    @classmethod
    async def shutdown(cls) -> None:
        """
        Dispose the engine and reset internal state.

        Safe to call multiple times.
        """
        async with cls._init_lock:
            if cls._engine is None:
                logger.debug("DatabaseService not initialized; nothing to shutdown")
                return

            logger.info("Shutting down DatabaseService")

            try:
                await cls._engine.dispose()
                logger.info("DatabaseService shutdown complete")
            finally:
                cls._engine = None
                cls._session_factory = None
                cls._config_snapshot = None

    @classmethod
    async def create_schema(cls) -> None:
        """Create all tables known to the ORM metadata."""
        cls._ensure_initialized()
        assert cls._engine is not None

        # Importing the models registers their tables on Base.metadata
        import progression_engine.database.models  # noqa: F401

        async with cls._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema created")

    @classmethod
    async def drop_schema(cls) -> None:
        """Drop all tables known to the ORM metadata."""
        cls._ensure_initialized()
        assert cls._engine is not None

        async with cls._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.info("Database schema dropped")

    # ========================================================================
    # Health Check
    # ========================================================================

    @classmethod
    async def health_check(cls) -> bool:
        """
        Execute ``SELECT 1``; returns False instead of raising on failure.
        """
        if cls._engine is None:
            logger.warning("Health check called on uninitialized DatabaseService")
            return False

        start = time.perf_counter()
        try:
            async with cls._engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            return True

        except (OperationalError, DBAPIError) as exc:
            logger.warning(
                "Database health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return False

        finally:
            logger.debug(
                "Database health check completed",
                extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
            )

    # ========================================================================
    # Session & Transaction Context Managers
    # ========================================================================

    @classmethod
    def _ensure_initialized(cls) -> None:
        """
        Raises
        ------
        DatabaseNotInitializedError
            If engine or session factory is not initialized.
        """
        if cls._session_factory is None or cls._engine is None:
            logger.error("DatabaseService operation attempted before initialization")
            raise DatabaseNotInitializedError(
                "DatabaseService must be initialized before use. "
                "Call DatabaseService.initialize() during startup."
            )

    @classmethod
    def _get_config_snapshot(cls) -> _DatabaseConfigSnapshot:
        if cls._config_snapshot is None:
            raise DatabaseNotInitializedError("DatabaseService is not initialized")
        return cls._config_snapshot

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        """
        Create a database session without automatic commit.

        Use for read-only operations. The session is closed on exit.

        Raises
        ------
        DatabaseNotInitializedError
            If DatabaseService has not been initialized.
        """
        cls._ensure_initialized()
        assert cls._session_factory is not None

        start = time.perf_counter()
        async with cls._session_factory() as session:
            config = cls._get_config_snapshot()

            try:
                if config.is_postgres:
                    await session.execute(
                        text(
                            f"SET LOCAL statement_timeout = "
                            f"{config.statement_timeout_ms}"
                        )
                    )

                logger.debug("Database session opened (read-only)")
                yield session

            finally:
                await session.close()
                logger.debug(
                    "Database session closed",
                    extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
                )

    @classmethod
    @asynccontextmanager
    async def get_transaction(
        cls, resource: str = "record"
    ) -> AsyncGenerator[AsyncSession, None]:
        """
        Create a database session wrapped in an atomic transaction.

        This is the **primary interface for all state mutations**.

        Behavior
        --------
        **On Success**: commits the transaction.

        **On Exception**: rolls back and re-raises. A stale row version or a
        duplicate-key race is re-raised as ``PersistenceConflictError``.

        Parameters
        ----------
        resource : str
            Name of the record being written, used in conflict errors.

        Raises
        ------
        DatabaseNotInitializedError
            If DatabaseService has not been initialized.
        PersistenceConflictError
            If a concurrent transaction updated the same row first.
        """
        cls._ensure_initialized()
        assert cls._session_factory is not None

        start = time.perf_counter()
        async with cls._session_factory() as session:
            config = cls._get_config_snapshot()

            try:
                if config.is_postgres:
                    await session.execute(
                        text(
                            f"SET LOCAL statement_timeout = "
                            f"{config.statement_timeout_ms}"
                        )
                    )

                logger.debug("Database transaction started")
                yield session

                await session.commit()
                logger.debug(
                    "Database transaction committed",
                    extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
                )

            except (StaleDataError, IntegrityError) as exc:
                await session.rollback()
                logger.warning(
                    "Concurrent write conflict; rolled back",
                    extra={
                        "resource": resource,
                        "error_type": type(exc).__name__,
                        "duration_ms": (time.perf_counter() - start) * 1000.0,
                    },
                )
                raise PersistenceConflictError(resource, type(exc).__name__) from exc

            except OperationalError as exc:
                await session.rollback()
                logger.error(
                    "OperationalError in transaction; rolled back",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "duration_ms": (time.perf_counter() - start) * 1000.0,
                    },
                    exc_info=True,
                )
                raise

            except Exception as exc:
                await session.rollback()
                logger.debug(
                    "Transaction rolled back",
                    extra={
                        "error_type": type(exc).__name__,
                        "duration_ms": (time.perf_counter() - start) * 1000.0,
                    },
                )
                raise

            finally:
                await session.close()
