"""
Once-Drop Event Adapter

Purpose
-------
Boundary between the host's event dispatch and the award state machine.
Implements `OnceDropListener`: the host (or the EventBus) calls `on_defeat`
and `on_collected`; the adapter translates them into state machine calls and
performs the side effects a GRANTED decision requires.

Responsibilities
----------------
- Skip defeats without a killer, a target or a loot container
- Call `try_grant_on_defeat` once per defeat; on GRANTED place the item in
  the kill's loot, announce it server-wide and log the grant
- Revoke the grant when the loot container refuses the item
- Match collections to a granted kill by item id and source container, call
  `confirm_on_collection` once per match and announce the collector
- Log the resolved configuration once per load
- Subscribe itself to `combat.entity_defeated` / `loot.item_collected`

Non-Responsibilities
--------------------
- Deciding anything about the grant (OnceDropService)
- Delivering chat (the Broadcaster)

Architecture Notes
------------------
Grant and placement run as one shielded task. A caller that is cancelled or
times out stops waiting, but a flipped flag always reaches the loot.
`drain()` awaits those tasks on shutdown.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import OrderedDict
from typing import Any, Optional, Set

from oncedrop.core.event.bus import EventBus
from oncedrop.core.event.types import EventPayload, ListenerPriority
from oncedrop.core.logging.logger import LogContext, get_logger
from oncedrop.modules.once_drop.constants import (
    EVENT_ENTITY_DEFEATED,
    EVENT_ITEM_COLLECTED,
    PENDING_CONTAINER_LIMIT,
    UNKNOWN_KILLER_NAME,
    UNKNOWN_TARGET_NAME,
)
from oncedrop.modules.once_drop.interfaces import (
    Actor,
    Broadcaster,
    CollectionEvent,
    DefeatEvent,
    DefeatedTarget,
    NameResolver,
)
from oncedrop.modules.once_drop.service import GrantDecision, OnceDropService

logger = get_logger(__name__)

DEFEAT_LISTENER_ID = "once_drop.on_defeat"
COLLECTED_LISTENER_ID = "once_drop.on_collected"


def format_announcement(killer_name: Optional[str], target_name: str, item_name: str) -> str:
    who = killer_name or UNKNOWN_KILLER_NAME
    return f"{who} has defeated {target_name} and claimed the legendary {item_name}!"


def format_collection_announcement(collector_name: Optional[str], item_name: str) -> str:
    who = collector_name or UNKNOWN_KILLER_NAME
    return f"{who} now carries the legendary {item_name}!"


class OnceDropEventAdapter:
    def __init__(
        self,
        service: OnceDropService,
        broadcaster: Broadcaster,
        *,
        name_resolver: Optional[NameResolver] = None,
        pending_limit: int = PENDING_CONTAINER_LIMIT,
    ) -> None:
        self._service = service
        self._broadcaster = broadcaster
        self._name_resolver = name_resolver
        # Loot containers holding the reward and not yet collected, oldest first.
        self._pending: "OrderedDict[Any, None]" = OrderedDict()
        self._pending_limit = max(1, pending_limit)
        self._inflight: Set[asyncio.Task] = set()

    @property
    def pending_containers(self) -> frozenset:
        return frozenset(self._pending)

    def _remember_container(self, container_id: Any) -> None:
        self._pending[container_id] = None
        self._pending.move_to_end(container_id)
        while len(self._pending) > self._pending_limit:
            evicted, _ = self._pending.popitem(last=False)
            logger.debug(
                "Forgetting uncollected once-drop container",
                extra={"container_id": str(evicted)},
            )

    # ------------------------------------------------------------------ #
    # OnceDropListener
    # ------------------------------------------------------------------ #

    async def on_defeat(self, event: DefeatEvent) -> GrantDecision:
        killer, target = event.killer, event.target
        if killer is None or target is None or target.loot is None:
            return GrantDecision.SKIP

        task = asyncio.ensure_future(self._grant_and_place(killer, target))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _grant_and_place(self, killer: Actor, target: DefeatedTarget) -> GrantDecision:
        async with LogContext(actor=killer.name, target_id=target.entry, operation="defeat"):
            decision = await self._service.try_grant_on_defeat(
                target.entry, killer.name, target.loot
            )
            if decision is not GrantDecision.GRANTED:
                return decision

            settings = self._service.settings
            try:
                target.loot.add_item(settings.item_id)
            except Exception as exc:
                logger.error(
                    "Could not place once-drop item into loot",
                    extra={
                        "item_id": settings.item_id,
                        "target_guid": str(target.guid),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                await self._service.revoke_unplaced_grant()
                return GrantDecision.DENIED

            self._remember_container(target.guid)
            await self._broadcast(
                format_announcement(
                    killer.name, self.resolve_target_name(target), settings.item_name
                )
            )

            logger.info(
                "Added item %s to %s's corpse loot%s",
                settings.item_id,
                target.name,
                " (AllowRepeat=1)" if settings.allow_repeat else "",
                extra={"item_id": settings.item_id, "target_guid": str(target.guid)},
            )
            return decision

    async def on_collected(self, event: CollectionEvent) -> bool:
        settings = self._service.settings
        if event.item_id != settings.item_id:
            return False
        if event.source_container_id not in self._pending:
            return False
        del self._pending[event.source_container_id]

        collector_name = event.collector.name if event.collector is not None else None
        async with LogContext(actor=collector_name, operation="collect"):
            confirmed = await self._service.confirm_on_collection(collector_name)
            if settings.announce_collection:
                await self._broadcast(
                    format_collection_announcement(collector_name, settings.item_name)
                )
            if confirmed:
                logger.info(
                    "Once-drop reward collected",
                    extra={"item_id": event.item_id, "collector": collector_name},
                )
            return confirmed

    async def drain(self) -> None:
        """Await grants still placing their item."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Announcement & summary
    # ------------------------------------------------------------------ #

    def _resolve_name(self, target_id: int) -> Optional[str]:
        if self._name_resolver is None:
            return None
        return self._name_resolver(target_id)

    def resolve_target_name(self, target: Optional[DefeatedTarget]) -> str:
        if target is not None and target.name:
            return target.name
        return self._resolve_name(self._service.settings.target_id) or UNKNOWN_TARGET_NAME

    async def _broadcast(self, text: str) -> None:
        try:
            result = self._broadcaster.system_message(text)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.error(
                "Once-drop announcement failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
                exc_info=True,
            )

    def log_configuration_summary(self) -> None:
        status = self._service.status()
        settings = status.settings
        npc_name = self._resolve_name(settings.target_id) or "Unknown"
        logger.info(
            "Enable=%d NpcEntry=%d(%s) Chance=%.3f%% AllowRepeat=%d ResetOnStartup=%d AlreadyDropped=%s",
            int(settings.enabled),
            settings.target_id,
            npc_name,
            settings.chance_percent,
            int(settings.allow_repeat),
            int(settings.reset_on_startup),
            str(status.already_granted).lower(),
            extra=status.to_dict(),
        )

    # ------------------------------------------------------------------ #
    # EventBus wiring
    # ------------------------------------------------------------------ #

    async def _handle_defeat_payload(self, payload: EventPayload) -> GrantDecision:
        return await self.on_defeat(
            DefeatEvent(killer=payload.get("killer"), target=payload.get("target"))
        )

    async def _handle_collected_payload(self, payload: EventPayload) -> bool:
        return await self.on_collected(
            CollectionEvent(
                collector=payload.get("collector"),
                item_id=int(payload.get("item_id") or 0),
                source_container_id=payload.get("source_container_id"),
            )
        )

    def register(self, bus: EventBus) -> None:
        """Subscribe to host events. Safe to call again on reload."""
        bus.subscribe(
            EVENT_ENTITY_DEFEATED,
            self._handle_defeat_payload,
            priority=ListenerPriority.NORMAL,
            identifier=DEFEAT_LISTENER_ID,
        )
        bus.subscribe(
            EVENT_ITEM_COLLECTED,
            self._handle_collected_payload,
            priority=ListenerPriority.NORMAL,
            identifier=COLLECTED_LISTENER_ID,
        )

    def unregister(self, bus: EventBus) -> None:
        bus.unsubscribe(EVENT_ENTITY_DEFEATED, DEFEAT_LISTENER_ID)
        bus.unsubscribe(EVENT_ITEM_COLLECTED, COLLECTED_LISTENER_ID)
