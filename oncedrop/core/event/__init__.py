"""
Event system.

Instance-based EventBus; the module registration boundary owns one and the
host publishes its gameplay events into it.
"""

from oncedrop.core.event.bus import EventBus
from oncedrop.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)

__all__ = [
    "EventBus",
    "EventPayload",
    "ListenerPriority",
    "EventListener",
    "CallbackType",
]
