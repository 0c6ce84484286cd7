"""
Database subsystem.

Provides the async SQLAlchemy engine, session management and the
circuit breaker guarding it, plus the ORM base for model definitions.
"""

from oncedrop.core.database.base import Base
from oncedrop.core.database.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
)
from oncedrop.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
    "CircuitBreaker",
    "CircuitBreakerOpenError",
    "CircuitState",
]
