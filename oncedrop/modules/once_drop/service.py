"""
Once-Drop Service - the award state machine

Purpose
-------
Decide, exactly once per world by default, whether a defeat of the configured
encounter produces the configured reward, and keep that decision durable.

States
------
    UNKNOWN --initialize--> UNGRANTED --grant--> GRANTED
       ^                        ^                   |
       +------ initialize ------+------ reset ------+

UNKNOWN rejects every event. GRANTED is terminal unless `allow_repeat` is set
or an explicit reset runs.

Responsibilities
----------------
- Own the cached "already granted" flag and keep it in step with storage
- Serialize flag check, probability roll, flag flip and durable write under
  one `asyncio.Lock` so concurrent defeats can never both be granted
- Record collection metadata under the same lock
- Degrade on storage failure: fail open at initialize, keep a grant that
  could not be persisted and write it on the next write under the lock,
  never raise into the host's event dispatch
- Revoke a grant the adapter could not place

Non-Responsibilities
--------------------
- Placing the item and announcing it (OnceDropEventAdapter)
- SQL and sessions (OnceDropRepository)
- Parsing configuration (load_settings)
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple

from oncedrop.core.exceptions import DatabaseError, is_transient_error
from oncedrop.core.logging.logger import get_logger
from oncedrop.modules.once_drop.constants import (
    EVENT_COLLECTED,
    EVENT_GRANTED,
    EVENT_RESET,
    EVENT_REVOKED,
)
from oncedrop.modules.once_drop.record import sanitize_actor_name
from oncedrop.modules.once_drop.roll import RandomSource, roll_succeeds
from oncedrop.modules.once_drop.settings import OnceDropSettings
from oncedrop.modules.shared.base_service import BaseService

if TYPE_CHECKING:
    from logging import Logger

    from oncedrop.core.config.manager import ConfigManager
    from oncedrop.core.event.bus import EventBus
    from oncedrop.modules.once_drop.interfaces import LootContainer
    from oncedrop.modules.once_drop.repository import OnceDropRepository


class AwardState(str, Enum):
    UNKNOWN = "unknown"
    UNGRANTED = "ungranted"
    GRANTED = "granted"


class GrantDecision(str, Enum):
    """Outcome of a defeat: only GRANTED means the caller places the item."""

    SKIP = "skip"
    DENIED = "denied"
    GRANTED = "granted"


@dataclass(frozen=True, slots=True)
class AwardStatus:
    state: AwardState
    already_granted: bool
    settings: OnceDropSettings
    grant_persisted: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "already_granted": self.already_granted,
            "grant_persisted": self.grant_persisted,
            **self.settings.to_log_dict(),
        }


def _epoch_seconds() -> int:
    return int(time.time())


class OnceDropService(BaseService):
    """
    One instance per module registration; tests build their own.

    `rng` and `clock` are injectable so rolls and timestamps are reproducible.
    """

    def __init__(
        self,
        repository: OnceDropRepository,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Optional[Logger] = None,
        *,
        rng: Optional[RandomSource] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger or get_logger(__name__))
        self._repository = repository
        self._rng = rng
        self._clock = clock or _epoch_seconds
        self._lock = asyncio.Lock()
        self._settings = OnceDropSettings()
        self._state = AwardState.UNKNOWN
        self._already_granted = False
        # (record_key, actor, timestamp) of a grant whose durable write failed.
        self._unpersisted_grant: Optional[Tuple[str, Optional[str], int]] = None

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def settings(self) -> OnceDropSettings:
        return self._settings

    @property
    def state(self) -> AwardState:
        return self._state

    @property
    def already_granted(self) -> bool:
        return self._already_granted

    @property
    def has_unpersisted_grant(self) -> bool:
        return self._unpersisted_grant is not None

    def status(self) -> AwardStatus:
        return AwardStatus(
            state=self._state,
            already_granted=self._already_granted,
            settings=self._settings,
            grant_persisted=self._unpersisted_grant is None,
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def initialize(self, settings: OnceDropSettings) -> None:
        """
        Ensure storage, optionally reset, then load the cached flag.

        Runs on every configuration load. Events arriving while it runs are
        rejected. A storage failure leaves the flag ungranted (fail open).
        """
        self._state = AwardState.UNKNOWN
        async with self._lock:
            self._settings = settings
            key = settings.record_key
            if settings.reset_on_startup:
                self._unpersisted_grant = None
            pending = self._unpersisted_grant
            granted = False
            try:
                await self._repository.ensure_schema(key)
                if settings.reset_on_startup:
                    await self._repository.reset_to_ungranted(key)
                    self.log.info(
                        "ResetOnStartup=1 -> cleared once-per-server memory",
                        extra={"record_key": key},
                    )
                if pending is not None:
                    await self._persist_grant(*pending)
                record = await self._repository.load(key)
                granted = record.granted
            except DatabaseError as exc:
                self.log.warning(
                    "Once-drop state unavailable; continuing as ungranted",
                    extra={
                        "record_key": key,
                        "error": str(exc),
                        "error_type": type(exc.original_error).__name__,
                    },
                )

            # A grant this process made outlives a failed write and a reload.
            if pending is not None and pending[0] == key:
                granted = True
            self._already_granted = granted
            self._state = AwardState.GRANTED if granted else AwardState.UNGRANTED

        self.log_operation(
            "initialize",
            record_key=settings.record_key,
            already_granted=self._already_granted,
        )

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    async def _persist_grant(self, key: str, actor_name: Optional[str], timestamp: int) -> None:
        """Write the granted row. On failure the grant stays queued and the error propagates."""
        try:
            await self._repository.record_grant(key, actor_name, timestamp)
        except DatabaseError as exc:
            if is_transient_error(exc):
                self._unpersisted_grant = (key, actor_name, timestamp)
            raise
        if self._unpersisted_grant is not None:
            self._unpersisted_grant = None
            self.log.info("Once-drop grant reconciled with storage", extra={"record_key": key})

    async def _retry_unpersisted_grant(self) -> None:
        assert self._unpersisted_grant is not None
        try:
            await self._persist_grant(*self._unpersisted_grant)
        except DatabaseError as exc:
            self.log.warning(
                "Once-drop grant still not persisted",
                extra={"record_key": self._unpersisted_grant[0], "error": str(exc)},
            )

    def _prefilter(
        self, settings: OnceDropSettings, target_id: int, loot: Optional[LootContainer]
    ) -> Optional[GrantDecision]:
        if self._state is AwardState.UNKNOWN:
            return GrantDecision.DENIED
        if not settings.enabled or target_id != settings.target_id:
            return GrantDecision.SKIP
        if loot is not None and loot.contains(settings.item_id):
            return GrantDecision.SKIP
        return None

    async def try_grant_on_defeat(
        self,
        target_id: int,
        actor_name: Optional[str],
        loot: Optional[LootContainer] = None,
    ) -> GrantDecision:
        """
        Decide whether this defeat produces the reward.

        SKIP: disabled, wrong target, or the item is already in this loot.
        DENIED: not initialized, already granted, or the roll failed.
        GRANTED: the flag is flipped and persisted (best effort); the caller
        must now place and announce the item.
        """
        # Unlocked pass so ordinary kills never contend for the lock.
        early = self._prefilter(self._settings, target_id, loot)
        if early is not None:
            return early

        async with self._lock:
            settings = self._settings
            early = self._prefilter(settings, target_id, loot)
            if early is not None:
                return early

            if not settings.allow_repeat and self._already_granted:
                if self._unpersisted_grant is not None:
                    await self._retry_unpersisted_grant()
                return GrantDecision.DENIED

            if not roll_succeeds(settings.chance_percent, self._rng):
                return GrantDecision.DENIED

            self._already_granted = True
            self._state = AwardState.GRANTED
            timestamp = self._clock()
            persisted = True
            try:
                await self._persist_grant(settings.record_key, actor_name, timestamp)
            except DatabaseError as exc:
                persisted = False
                self.log_error(
                    "record_grant",
                    exc,
                    record_key=settings.record_key,
                    note="grant stands; durable record is stale until the next write",
                )

        await self.emit_event(
            EVENT_GRANTED,
            {
                "record_key": settings.record_key,
                "item_id": settings.item_id,
                "target_id": target_id,
                "actor": sanitize_actor_name(actor_name),
                "timestamp": timestamp,
                "persisted": persisted,
                "allow_repeat": settings.allow_repeat,
            },
        )
        return GrantDecision.GRANTED

    async def confirm_on_collection(
        self, actor_name: Optional[str], timestamp: Optional[int] = None
    ) -> bool:
        """
        Record who collected the reward. Never raises.

        Returns False when skipped (not initialized, no actor) or when the
        write failed. `granted` is never changed here.
        """
        if self._state is AwardState.UNKNOWN:
            return False
        if not actor_name:
            self.log.debug("Collection without a resolvable collector; metadata skipped")
            return False

        # A granted row must carry a real time.
        when = int(timestamp) if timestamp is not None and timestamp > 0 else self._clock()
        async with self._lock:
            key = self._settings.record_key
            try:
                if self._unpersisted_grant is not None and self._unpersisted_grant[0] == key:
                    await self._persist_grant(key, actor_name, when)
                else:
                    await self._repository.record_collection_metadata(key, actor_name, when)
            except DatabaseError as exc:
                self.log.warning(
                    "Collection metadata not recorded",
                    extra={"record_key": key, "error": str(exc)},
                )
                return False

        await self.emit_event(
            EVENT_COLLECTED,
            {"record_key": key, "actor": sanitize_actor_name(actor_name), "timestamp": when},
        )
        return True

    async def reset(self) -> bool:
        """
        Administrative reset to ungranted.

        The in-memory flag is cleared even if storage is down; returns
        whether the durable record was cleared too.
        """
        async with self._lock:
            key = self._settings.record_key
            persisted = await self._clear("reset", key)

        self.log_operation("reset", record_key=key, persisted=persisted)
        await self.emit_event(EVENT_RESET, {"record_key": key, "persisted": persisted})
        return persisted

    async def revoke_unplaced_grant(self) -> bool:
        """
        Undo a GRANTED decision whose item never reached the loot.

        With repeats allowed the flag gates nothing and the durable record
        keeps its earlier grants, so only the event is emitted. Returns
        whether the durable record agrees with memory afterwards.
        """
        async with self._lock:
            key = self._settings.record_key
            persisted = True
            if not self._settings.allow_repeat:
                persisted = await self._clear("revoke_unplaced_grant", key)

        self.log.warning(
            "Once-drop grant revoked; item was not placed",
            extra={"record_key": key, "persisted": persisted},
        )
        await self.emit_event(EVENT_REVOKED, {"record_key": key, "persisted": persisted})
        return persisted

    async def _clear(self, operation: str, key: str) -> bool:
        """Back to ungranted in memory and, if storage allows, on disk. Lock held."""
        self._unpersisted_grant = None
        persisted = True
        try:
            await self._repository.reset_to_ungranted(key)
        except DatabaseError as exc:
            persisted = False
            self.log_error(operation, exc, record_key=key)
        self._already_granted = False
        if self._state is not AwardState.UNKNOWN:
            self._state = AwardState.UNGRANTED
        return persisted
