"""
Base Repository Pattern

Purpose
-------
Generic repository abstraction following SQLAlchemy 2.0 async patterns.
Repositories encapsulate data access and nothing else.

Design Notes
------------
This base repository provides:
- Primary-key reads with and without a pessimistic lock
- Structured logging for every read

What this class does NOT do:
- Manage transactions (DatabaseService handles that)
- Contain business logic
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, Optional, Type, TypeVar

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """
    Type Parameters:
        T: The SQLAlchemy model class this repository manages
    """

    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    async def get(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        """Get a single record by primary key (no lock)."""
        instance = await session.get(self.model_class, id_value)
        self.log.debug(
            f"Repository.get: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "id": id_value,
                "found": instance is not None,
            },
        )
        return instance

    async def get_for_update(self, session: AsyncSession, id_value: Any) -> Optional[T]:
        """
        Get a single record by primary key with SELECT FOR UPDATE.

        Must be called inside `DatabaseService.get_transaction()`. Dialects
        without row locks (SQLite) simply read the row.
        """
        instance = await session.get(self.model_class, id_value, with_for_update=True)
        self.log.debug(
            f"Repository.get_for_update: {self.model_class.__name__}",
            extra={
                "model": self.model_class.__name__,
                "id": id_value,
                "found": instance is not None,
            },
        )
        return instance
