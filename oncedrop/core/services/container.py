"""
Service Container
=================

Purpose
-------
Module-registration boundary for the once-drop rule. Builds and owns the
repository, the award state machine and the event adapter, wires them to the
shared ConfigManager / EventBus / DatabaseService, and drives their lifecycle.

Responsibilities
----------------
- Construct every once-drop collaborator with explicit dependencies
- initialize(): bring up the database, load settings, initialize the state
  machine, subscribe the adapter, log the configuration summary
- reload(): re-read configuration and re-run initialize on the state machine
- shutdown(): unsubscribe, let in-flight grants place their item, dispose
  the database engine

Non-Responsibilities
--------------------
- Host event dispatch (the host publishes on the EventBus)
- Any award decision (OnceDropService)

Architecture Notes
------------------
- Nothing here is global: tests build isolated containers against their own
  database and bus.
- A database that cannot be brought up is not fatal; the state machine then
  fails open for the life of the process.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from oncedrop.core.database.service import DatabaseInitializationError
from oncedrop.core.logging.logger import get_logger
from oncedrop.modules.once_drop.adapter import OnceDropEventAdapter
from oncedrop.modules.once_drop.repository import OnceDropRepository
from oncedrop.modules.once_drop.service import AwardStatus, OnceDropService
from oncedrop.modules.once_drop.settings import load_settings

if TYPE_CHECKING:
    from logging import Logger

    from oncedrop.core.config.manager import ConfigManager
    from oncedrop.core.database.service import DatabaseService
    from oncedrop.core.event.bus import EventBus
    from oncedrop.modules.once_drop.interfaces import Broadcaster, NameResolver
    from oncedrop.modules.once_drop.roll import RandomSource


class ServiceContainer:
    """
    Usage:
        container = ServiceContainer(config_manager, event_bus, database,
                                     broadcaster=world_chat)
        await container.initialize()
        await event_bus.publish("combat.entity_defeated", {...})
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        database: DatabaseService,
        *,
        broadcaster: Broadcaster,
        name_resolver: Optional[NameResolver] = None,
        rng: Optional[RandomSource] = None,
        clock: Optional[Callable[[], int]] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        self._config_manager = config_manager
        self._event_bus = event_bus
        self._database = database
        self._logger = logger or get_logger(__name__)

        self._repository = OnceDropRepository(
            database, get_logger(f"{OnceDropRepository.__module__}.OnceDropRepository")
        )
        self._once_drop = OnceDropService(
            repository=self._repository,
            config_manager=config_manager,
            event_bus=event_bus,
            logger=get_logger(f"{OnceDropService.__module__}.OnceDropService"),
            rng=rng,
            clock=clock,
        )
        self._adapter = OnceDropEventAdapter(
            self._once_drop, broadcaster, name_resolver=name_resolver
        )

        self._initialized = False
        self._init_duration: Optional[float] = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def initialize(self) -> None:
        if self._initialized:
            self._logger.warning("ServiceContainer already initialized")
            return

        start = time.perf_counter()
        self._logger.info("Once-drop module initialization starting...")

        try:
            await self._database.initialize()
        except DatabaseInitializationError as exc:
            self._logger.warning(
                "Database unavailable; once-drop state will fail open",
                extra={"error": str(exc)},
            )

        await self._load_and_initialize()
        self._adapter.register(self._event_bus)

        self._initialized = True
        self._init_duration = time.perf_counter() - start
        self._logger.info(
            "Once-drop module initialized",
            extra={"total_time_seconds": round(self._init_duration, 3)},
        )

    async def _load_and_initialize(self) -> None:
        settings = load_settings(self._config_manager)
        await self._once_drop.initialize(settings)
        self._adapter.log_configuration_summary()

    async def reload(self) -> None:
        """Re-read configuration files and re-initialize the state machine."""
        if not self._initialized:
            raise RuntimeError("ServiceContainer not initialized. Call initialize() first.")
        self._config_manager.reload()
        await self._load_and_initialize()

    async def shutdown(self) -> None:
        if not self._initialized:
            return
        self._logger.info("Shutting down once-drop module...")
        self._adapter.unregister(self._event_bus)
        await self._adapter.drain()
        await self._event_bus.drain()
        await self._database.shutdown()
        self._initialized = False
        self._logger.info("Once-drop module shut down")

    async def health_check(self) -> Dict[str, Any]:
        status: AwardStatus = self._once_drop.status()
        return {
            "initialized": self._initialized,
            "database_healthy": await self._database.health_check(),
            "circuit_state": self._database.circuit_breaker.state.value,
            "award_state": status.state.value,
            "already_granted": status.already_granted,
            "grant_persisted": status.grant_persisted,
            "init_time_seconds": (
                round(self._init_duration, 3) if self._init_duration is not None else None
            ),
        }

    # ========================================================================
    # Accessors
    # ========================================================================

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def once_drop(self) -> OnceDropService:
        return self._once_drop

    @property
    def adapter(self) -> OnceDropEventAdapter:
        return self._adapter

    @property
    def repository(self) -> OnceDropRepository:
        return self._repository
