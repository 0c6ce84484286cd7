"""
Once-Drop Repository

Purpose
-------
Narrow read/upsert interface over the `once_drop_state` table. The award state
machine only ever talks to storage through this class.

Responsibilities
----------------
- Create the table and the default ungranted row (idempotent, every startup)
- Load the persisted record, reading a missing row as "ungranted"
- Reset, record a grant, record collection metadata
- Sanitize actor names at the storage boundary
- Translate every storage failure into `DatabaseError`

Non-Responsibilities
--------------------
- Serializing concurrent callers (the state machine owns the lock)
- Deciding how to degrade on failure (the state machine does)

Architecture Notes
------------------
- Every write runs in `DatabaseService.get_transaction()` and reads the row
  with `SELECT ... FOR UPDATE`. A row missing at write time is re-created.
- The default row is inserted with the dialect's insert-ignore:
  `ON CONFLICT DO NOTHING` on PostgreSQL and SQLite, `INSERT IGNORE` on MySQL.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional, TYPE_CHECKING

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from oncedrop.core.database.circuit_breaker import CircuitBreakerOpenError
from oncedrop.core.database.service import DatabaseNotInitializedError
from oncedrop.core.exceptions import DatabaseError, ErrorSeverity, should_alert
from oncedrop.core.logging.logger import get_logger
from oncedrop.database.models.once_drop import OnceDropState
from oncedrop.modules.once_drop.record import RewardRecord, sanitize_actor_name
from oncedrop.modules.shared.base_repository import BaseRepository

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from oncedrop.core.database.service import DatabaseService

logger = get_logger(__name__)

_STORAGE_ERRORS = (
    SQLAlchemyError,
    CircuitBreakerOpenError,
    DatabaseNotInitializedError,
    OSError,
)


class OnceDropRepository(BaseRepository[OnceDropState]):
    """Data access for the once-only reward slot."""

    def __init__(
        self, database: DatabaseService, log: Optional[Logger] = None
    ) -> None:
        super().__init__(OnceDropState, log or logger)
        self._db = database

    @contextmanager
    def _translate(self, operation: str, key: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        except _STORAGE_ERRORS as exc:
            # An open breaker is the expected fail-fast state, already logged on trip.
            error = DatabaseError(
                operation,
                exc,
                severity=ErrorSeverity.WARNING
                if isinstance(exc, CircuitBreakerOpenError)
                else None,
            )
            self.log.log(
                logging.ERROR if should_alert(error) else logging.WARNING,
                f"OnceDropRepository.{operation} failed",
                extra={"operation": operation, "record_key": key, "error": error.to_dict()},
            )
            raise error from exc
        else:
            self.log.debug(
                f"OnceDropRepository.{operation} completed",
                extra={
                    "operation": operation,
                    "record_key": key,
                    "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                },
            )

    def _insert_default_row(self, dialect: str, key: str):
        values = {"keyname": key, "dropped": False, "last_drop_time": 0, "last_killer": None}
        if dialect == "postgresql":
            return postgresql_insert(OnceDropState).values(**values).on_conflict_do_nothing(
                index_elements=["keyname"]
            )
        if dialect == "sqlite":
            return sqlite_insert(OnceDropState).values(**values).on_conflict_do_nothing(
                index_elements=["keyname"]
            )
        if dialect in ("mysql", "mariadb"):
            return insert(OnceDropState).values(**values).prefix_with("IGNORE")
        return None

    async def _locked_row(self, session: AsyncSession, key: str) -> OnceDropState:
        row = await self.get_for_update(session, key)
        if row is None:
            self.log.warning(
                "once_drop_state row missing at write time; re-creating",
                extra={"record_key": key},
            )
            row = OnceDropState(keyname=key, dropped=False, last_drop_time=0, last_killer=None)
            session.add(row)
        return row

    # ------------------------------------------------------------------ #
    # Schema
    # ------------------------------------------------------------------ #

    async def ensure_schema(self, key: str) -> None:
        """Create the table and the ungranted default row if absent."""
        with self._translate("ensure_schema", key):
            await self._db.create_tables(OnceDropState.__table__)
            statement = self._insert_default_row(self._db.dialect_name, key)
            async with self._db.get_transaction() as session:
                if statement is not None:
                    await session.execute(statement)
                elif await self.get(session, key) is None:
                    session.add(OnceDropState(keyname=key))

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    async def load(self, key: str) -> RewardRecord:
        """Return the persisted record; a missing row reads as ungranted."""
        with self._translate("load", key):
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(OnceDropState).where(OnceDropState.keyname == key).limit(1)
                )
                row = result.scalar_one_or_none()

        if row is None:
            self.log.warning(
                "once_drop_state row missing; treating as ungranted",
                extra={"record_key": key},
            )
            return RewardRecord.ungranted(key)

        return RewardRecord(
            key=row.keyname,
            granted=bool(row.dropped),
            granted_at_epoch_seconds=int(row.last_drop_time or 0),
            last_actor=row.last_killer,
        )

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def reset_to_ungranted(self, key: str) -> None:
        with self._translate("reset_to_ungranted", key):
            async with self._db.get_transaction() as session:
                row = await self._locked_row(session, key)
                row.dropped = False
                row.last_drop_time = 0
                row.last_killer = None

    async def record_grant(self, key: str, actor_name: Optional[str], timestamp: int) -> None:
        """Mark granted; metadata is last-writer-wins."""
        with self._translate("record_grant", key):
            async with self._db.get_transaction() as session:
                row = await self._locked_row(session, key)
                row.dropped = True
                row.last_drop_time = int(timestamp)
                row.last_killer = sanitize_actor_name(actor_name)

    async def record_collection_metadata(
        self, key: str, actor_name: Optional[str], timestamp: int
    ) -> None:
        """Update who and when, leaving `dropped` untouched."""
        with self._translate("record_collection_metadata", key):
            async with self._db.get_transaction() as session:
                row = await self._locked_row(session, key)
                row.last_drop_time = int(timestamp)
                row.last_killer = sanitize_actor_name(actor_name)
