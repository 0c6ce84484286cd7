"""
Capability interfaces the once-drop module consumes from the host, and the
listener interface the host drives it through.

The host engine owns combat, loot containers and chat delivery. This module
only needs the narrow slices below; anything structurally matching them
works, no inheritance required.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, Union, runtime_checkable


@runtime_checkable
class Actor(Protocol):
    """A player able to defeat targets and collect loot."""

    @property
    def name(self) -> str: ...


@runtime_checkable
class LootContainer(Protocol):
    """The loot being built for one specific kill."""

    def add_item(self, item_id: int) -> None: ...

    def contains(self, item_id: int) -> bool:
        """True if `item_id` is in the regular or quest item lists."""
        ...


@runtime_checkable
class DefeatedTarget(Protocol):
    @property
    def entry(self) -> int:
        """Template id shared by every spawn of the encounter."""
        ...

    @property
    def guid(self) -> Any:
        """Identity of this spawn; doubles as its loot container id."""
        ...

    @property
    def name(self) -> str: ...

    @property
    def loot(self) -> LootContainer: ...


@runtime_checkable
class Broadcaster(Protocol):
    """Server-wide system chat."""

    def system_message(self, text: str) -> Union[None, Awaitable[None]]: ...


# Looks up an encounter's display name by template id (None when unknown).
NameResolver = Callable[[int], Optional[str]]


@dataclass(frozen=True, slots=True)
class DefeatEvent:
    killer: Optional[Actor]
    target: Optional[DefeatedTarget]


@dataclass(frozen=True, slots=True)
class CollectionEvent:
    collector: Optional[Actor]
    item_id: int
    source_container_id: Any


@runtime_checkable
class OnceDropListener(Protocol):
    """What the host calls; registered instead of subclassing a script base."""

    async def on_defeat(self, event: DefeatEvent) -> Any: ...

    async def on_collected(self, event: CollectionEvent) -> Any: ...
