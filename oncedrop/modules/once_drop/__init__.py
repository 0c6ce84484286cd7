"""
Once-only rare reward for a configured encounter.
"""

from oncedrop.modules.once_drop.adapter import (
    OnceDropEventAdapter,
    format_announcement,
    format_collection_announcement,
)
from oncedrop.modules.once_drop.interfaces import (
    Actor,
    Broadcaster,
    CollectionEvent,
    DefeatEvent,
    DefeatedTarget,
    LootContainer,
    NameResolver,
    OnceDropListener,
)
from oncedrop.modules.once_drop.record import RewardRecord, sanitize_actor_name
from oncedrop.modules.once_drop.repository import OnceDropRepository
from oncedrop.modules.once_drop.roll import roll_succeeds
from oncedrop.modules.once_drop.service import (
    AwardState,
    AwardStatus,
    GrantDecision,
    OnceDropService,
)
from oncedrop.modules.once_drop.settings import OnceDropSettings, load_settings

__all__ = [
    "Actor",
    "AwardState",
    "AwardStatus",
    "Broadcaster",
    "CollectionEvent",
    "DefeatEvent",
    "DefeatedTarget",
    "GrantDecision",
    "LootContainer",
    "NameResolver",
    "OnceDropEventAdapter",
    "OnceDropListener",
    "OnceDropRepository",
    "OnceDropService",
    "OnceDropSettings",
    "RewardRecord",
    "format_announcement",
    "format_collection_announcement",
    "load_settings",
    "roll_succeeds",
    "sanitize_actor_name",
]
