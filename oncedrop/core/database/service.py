"""
Database Service - Core Infrastructure Layer

Purpose
-------
Async database engine and session management for the world database the
reward rule persists into. Provides atomic transactions, pessimistic locking,
a fail-fast circuit breaker and a liveness check.

Responsibilities
----------------
- Own a single AsyncEngine with a pool suited to the dialect
- Provide async context managers for read sessions and atomic transactions
- Enforce transaction discipline: commit on success, rollback on exception
- Reject transactions while the circuit breaker is open
- Create tables on demand (idempotent, `checkfirst`)

Non-Responsibilities
--------------------
- Query shapes and row semantics (handled by repositories)
- Deciding how to degrade on failure (handled by the calling service)

Architecture Notes
------------------
**Transaction Model**:
- `get_transaction()` is the primary interface for all state mutations
- Never call `session.commit()` inside repository code
- Use pessimistic locks: `await session.get(Model, pk, with_for_update=True)`

**Connection Pooling**:
- AsyncAdaptedQueuePool for server databases
- NullPool for SQLite and testing environments

**Instances**:
- One DatabaseService per module registration. Tests build their own
  against a temporary database.

Usage Example
-------------
>>> database = DatabaseService("sqlite+aiosqlite:///world.db")
>>> await database.initialize()
>>> async with database.get_transaction() as session:
...     row = await session.get(OnceDropState, "geddon_17782_once", with_for_update=True)
...     row.dropped = True
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional, Type

from sqlalchemy import Table, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool, Pool

from oncedrop.core.config.config import Config
from oncedrop.core.database.base import Base
from oncedrop.core.database.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from oncedrop.core.logging.logger import get_logger

logger = get_logger(__name__)


class DatabaseInitializationError(RuntimeError):
    """Raised when database engine initialization fails."""


class DatabaseNotInitializedError(RuntimeError):
    """Raised when database operations are attempted before initialization."""


@dataclass(frozen=True)
class _DatabaseConfigSnapshot:
    """Immutable view of database configuration for the engine's lifetime."""

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
    def url_scheme(self) -> str:
        return self.url.split(":", 1)[0] if ":" in self.url else "unknown"


class DatabaseService:
    """
    Async engine and session management.

    Public API
    ----------
    **Lifecycle**: initialize(), shutdown()
    **Sessions**: get_session() (read), get_transaction() (atomic write)
    **Schema**: create_tables()
    **Utilities**: health_check(), dialect_name, circuit_breaker
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        echo: Optional[bool] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self._url = url
        self._echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._config_snapshot: Optional[_DatabaseConfigSnapshot] = None
        self._init_lock = asyncio.Lock()
        self._circuit_breaker = circuit_breaker or CircuitBreaker()

    # ========================================================================
    # Initialization & Shutdown
    # ========================================================================

    def _build_config_snapshot(self) -> _DatabaseConfigSnapshot:
        database_url = self._url if self._url is not None else Config.DATABASE_URL
        if not database_url or not isinstance(database_url, str):
            raise DatabaseInitializationError(
                "DATABASE_URL must be configured as a non-empty string"
            )

        use_null_pool = Config.is_testing() or database_url.startswith("sqlite")
        return _DatabaseConfigSnapshot(
            url=database_url,
            echo=Config.DATABASE_ECHO if self._echo is None else self._echo,
            pool_class=NullPool if use_null_pool else AsyncAdaptedQueuePool,
            pool_size=Config.DATABASE_POOL_SIZE,
            max_overflow=Config.DATABASE_MAX_OVERFLOW,
            pool_recycle=Config.DATABASE_POOL_RECYCLE,
            pool_timeout=Config.DATABASE_POOL_TIMEOUT,
            statement_timeout_ms=Config.DATABASE_STATEMENT_TIMEOUT_MS,
        )

    async def initialize(self) -> None:
        """
        Create the engine and session factory. Idempotent.

        Raises
        ------
        DatabaseInitializationError
            If configuration is invalid or engine creation fails.
        """
        async with self._init_lock:
            if self._engine is not None:
                return

            try:
                config = self._build_config_snapshot()

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

                self._engine = create_async_engine(config.url, **engine_kwargs)
                self._session_factory = async_sessionmaker(
                    bind=self._engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                )
                self._config_snapshot = config

            except Exception as exc:
                logger.error(
                    "DatabaseService initialization failed",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )
                raise DatabaseInitializationError(
                    f"Database initialization failed: {exc}"
                ) from exc

            logger.info(
                "DatabaseService initialized",
                extra={
                    "url_scheme": config.url_scheme,
                    "pool_class": config.pool_class.__name__,
                },
            )

    async def shutdown(self) -> None:
        """Dispose the engine. Safe to call multiple times."""
        async with self._init_lock:
            if self._engine is None:
                return
            try:
                await self._engine.dispose()
                logger.info("DatabaseService shutdown complete")
            finally:
                self._engine = None
                self._session_factory = None
                self._config_snapshot = None

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    @property
    def dialect_name(self) -> str:
        self._ensure_initialized()
        assert self._engine is not None
        return self._engine.dialect.name

    # ========================================================================
    # Health Check
    # ========================================================================

    async def health_check(self) -> bool:
        """`SELECT 1` liveness check. Never raises."""
        if self._engine is None:
            logger.warning("Health check called on uninitialized DatabaseService")
            return False

        start = time.perf_counter()
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (OperationalError, DBAPIError, OSError) as exc:
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
    # Schema
    # ========================================================================

    async def create_tables(self, *tables: Table) -> None:
        """
        Create the given tables (or every table on `Base.metadata`) if absent.
        """
        self._ensure_initialized()
        assert self._engine is not None

        if not await self._circuit_breaker.allow_request():
            raise CircuitBreakerOpenError("Database circuit breaker is open")

        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(
                    Base.metadata.create_all,
                    tables=list(tables) or None,
                    checkfirst=True,
                )
        except Exception:
            await self._circuit_breaker.record_failure()
            raise
        await self._circuit_breaker.record_success()

    # ========================================================================
    # Session & Transaction Context Managers
    # ========================================================================

    def _ensure_initialized(self) -> None:
        if self._session_factory is None or self._engine is None:
            raise DatabaseNotInitializedError(
                "DatabaseService must be initialized before use. "
                "Call DatabaseService.initialize() during startup."
            )

    async def _apply_statement_timeout(self, session: AsyncSession) -> None:
        config = self._config_snapshot
        if config is not None and config.is_postgres:
            await session.execute(
                text(f"SET LOCAL statement_timeout = {config.statement_timeout_ms}")
            )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session without automatic commit, for reads.

        Raises
        ------
        DatabaseNotInitializedError
            If the service has not been initialized.
        CircuitBreakerOpenError
            If the datastore is currently considered unavailable.
        """
        self._ensure_initialized()
        assert self._session_factory is not None

        if not await self._circuit_breaker.allow_request():
            raise CircuitBreakerOpenError("Database circuit breaker is open")

        async with self._session_factory() as session:
            try:
                await self._apply_statement_timeout(session)
                yield session
            except (OperationalError, DBAPIError, OSError):
                await self._circuit_breaker.record_failure()
                raise
            else:
                await self._circuit_breaker.record_success()

    @asynccontextmanager
    async def get_transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session wrapped in an atomic transaction.

        On success the transaction commits; on any exception it rolls back and
        the original exception is re-raised. Connection-level failures count
        against the circuit breaker.
        """
        self._ensure_initialized()
        assert self._session_factory is not None

        if not await self._circuit_breaker.allow_request():
            logger.warning("Transaction rejected by circuit breaker (fail-fast)")
            raise CircuitBreakerOpenError(
                "Database circuit breaker is open. "
                "The database may be unavailable or experiencing issues."
            )

        start = time.perf_counter()
        async with self._session_factory() as session:
            try:
                await self._apply_statement_timeout(session)
                yield session
                await session.commit()
            except (OperationalError, DBAPIError, OSError) as exc:
                await session.rollback()
                await self._circuit_breaker.record_failure()
                logger.error(
                    "Database error in transaction; rolled back",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "duration_ms": (time.perf_counter() - start) * 1000.0,
                    },
                )
                raise
            except Exception:
                await session.rollback()
                raise
            else:
                await self._circuit_breaker.record_success()
                logger.debug(
                    "Database transaction committed",
                    extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
                )
