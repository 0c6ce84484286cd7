"""
EventBus: async pub/sub with tiered concurrency.

Purpose
-------
Decouples the host's event dispatch from the modules reacting to it. The host
publishes `combat.entity_defeated` / `loot.item_collected`; the once-drop
adapter subscribes. The once-drop service publishes its own domain events
(`once_drop.granted`, ...) for audit and announcement listeners.

Responsibilities
----------------
- Register/unregister listeners with priorities
- Publish events to all matching listeners (exact + `prefix.*` wildcard)
- Execute listeners by tier:
  * CRITICAL / HIGH: sequential, ordered, awaited with timeout
  * NORMAL: concurrent (gather), awaited
  * LOW: fire-and-forget background tasks
- Error isolation (one failing listener never blocks others or the publisher)

Design Decisions
----------------
- **Instance-based**: each module registration and each test owns its bus
- **Single event loop**: registry mutations are atomic between awaits
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Dict, List, Optional, Set

from oncedrop.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)
from oncedrop.core.logging.logger import get_logger

logger = get_logger(__name__)


class EventBus:
    """
    Examples
    --------
    >>> bus = EventBus()
    >>> bus.subscribe("combat.entity_defeated", on_defeat, priority=ListenerPriority.HIGH)
    >>> await bus.publish("combat.entity_defeated", {"killer": player, "target": creature})
    """

    def __init__(
        self,
        *,
        critical_timeout_seconds: float = 5.0,
        high_timeout_seconds: float = 5.0,
    ) -> None:
        self._listeners: Dict[str, List[EventListener]] = {}
        self._critical_timeout = float(critical_timeout_seconds)
        self._high_timeout = float(high_timeout_seconds)
        self._background: Set[asyncio.Task[Any]] = set()
        self._published: Dict[str, int] = {}
        self._errors: Dict[str, int] = {}

    # ------------------------------------------------------------------ #
    # Subscription API
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate_callback_signature(callback: CallbackType) -> None:
        """Ensure the callback accepts exactly one positional parameter."""
        try:
            sig = inspect.signature(callback)
        except (TypeError, ValueError):
            return

        params = list(sig.parameters.values())
        if any(param.kind is inspect.Parameter.VAR_POSITIONAL for param in params):
            return
        if len(params) != 1:
            callback_name = getattr(callback, "__qualname__", repr(callback))
            raise ValueError(
                f"Event listener must accept exactly 1 parameter (EventPayload), "
                f"got {len(params)} parameters for '{callback_name}'"
            )

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> str:
        """
        Subscribe a callback to an event name or `prefix.*` pattern.

        Returns the listener identifier. Subscribing the same identifier
        twice to the same event is a no-op.
        """
        self._validate_callback_signature(callback)
        listener = EventListener.from_callback(
            event_name=event_name,
            callback=callback,
            priority=priority,
            identifier=identifier,
            once=once,
        )

        bucket = self._listeners.setdefault(event_name, [])
        if any(existing.identifier == listener.identifier for existing in bucket):
            logger.warning(
                "EventBus: duplicate listener prevented",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
            return listener.identifier

        bucket.append(listener)
        bucket.sort(key=lambda item: item.priority.value)
        logger.debug(
            "EventBus: subscribed listener",
            extra={
                "event_name": event_name,
                "listener_id": listener.identifier,
                "priority": listener.priority.name,
            },
        )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        bucket = self._listeners.get(event_name, [])
        remaining = [item for item in bucket if item.identifier != identifier]
        if len(remaining) == len(bucket):
            return False
        if remaining:
            self._listeners[event_name] = remaining
        else:
            self._listeners.pop(event_name, None)
        return True

    def clear(self) -> None:
        self._listeners.clear()

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        if event_name is None:
            return sum(len(bucket) for bucket in self._listeners.values())
        return len(self._match(event_name))

    # ------------------------------------------------------------------ #
    # Publish API
    # ------------------------------------------------------------------ #

    def _match(self, event_name: str) -> List[EventListener]:
        matched: List[EventListener] = list(self._listeners.get(event_name, []))
        for pattern, bucket in self._listeners.items():
            if pattern.endswith(".*") and event_name.startswith(pattern[:-1]):
                matched.extend(bucket)
        matched.sort(key=lambda item: item.priority.value)
        return matched

    def _extract(self, event_name: str) -> List[EventListener]:
        listeners = self._match(event_name)
        for listener in listeners:
            if listener.once:
                for pattern in list(self._listeners):
                    self.unsubscribe(pattern, listener.identifier)
        return listeners

    async def _invoke(self, event_name: str, listener: EventListener, payload: EventPayload) -> Any:
        try:
            result = listener.callback(payload)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as exc:
            self._errors[event_name] = self._errors.get(event_name, 0) + 1
            logger.error(
                "EventBus listener error",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "priority": listener.priority.name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return None

    async def _invoke_with_timeout(
        self,
        event_name: str,
        listener: EventListener,
        payload: EventPayload,
        timeout: float,
    ) -> Any:
        try:
            return await asyncio.wait_for(
                self._invoke(event_name, listener, payload), timeout=timeout
            )
        except asyncio.TimeoutError:
            self._errors[event_name] = self._errors.get(event_name, 0) + 1
            logger.error(
                "EventBus listener timed out",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "timeout_seconds": timeout,
                },
            )
            return None

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """
        Publish an event to all subscribed listeners.

        Returns results from CRITICAL/HIGH/NORMAL listeners in execution order.
        LOW-tier listeners are scheduled in the background and not awaited.
        """
        self._published[event_name] = self._published.get(event_name, 0) + 1
        listeners = self._extract(event_name)
        if not listeners:
            logger.debug("EventBus: no listeners for event", extra={"event_name": event_name})
            return []

        results: list[Any] = []
        normal: List[EventListener] = []

        for listener in listeners:
            if listener.priority is ListenerPriority.CRITICAL:
                results.append(
                    await self._invoke_with_timeout(
                        event_name, listener, data, self._critical_timeout
                    )
                )
            elif listener.priority is ListenerPriority.HIGH:
                results.append(
                    await self._invoke_with_timeout(
                        event_name, listener, data, self._high_timeout
                    )
                )
            elif listener.priority is ListenerPriority.NORMAL:
                normal.append(listener)
            else:
                task = asyncio.create_task(self._invoke(event_name, listener, data))
                self._background.add(task)
                task.add_done_callback(self._background.discard)

        if normal:
            results.extend(
                await asyncio.gather(
                    *(self._invoke(event_name, listener, data) for listener in normal)
                )
            )

        return results

    async def drain(self) -> None:
        """Await any in-flight LOW-priority listeners."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def get_metrics_summary(self) -> dict[str, Any]:
        return {
            "total_events_published": sum(self._published.values()),
            "events_by_type": dict(self._published),
            "total_errors": sum(self._errors.values()),
            "errors_by_event": dict(self._errors),
            "total_listeners": self.get_listener_count(),
        }
