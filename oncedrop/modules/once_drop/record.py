"""
RewardRecord: the in-memory view of the persisted once-only slot.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from oncedrop.modules.once_drop.constants import (
    ACTOR_NAME_MAX_LENGTH,
    ACTOR_NAME_QUOTE_CHARS,
    ACTOR_NAME_QUOTE_REPLACEMENT,
)


@dataclass(frozen=True, slots=True)
class RewardRecord:
    key: str
    granted: bool = False
    granted_at_epoch_seconds: int = 0
    last_actor: Optional[str] = None

    @classmethod
    def ungranted(cls, key: str) -> RewardRecord:
        """The state a missing row is read as."""
        return cls(key=key)


def sanitize_actor_name(name: Optional[str]) -> Optional[str]:
    """
    Make a display name safe to store.

    Quote characters are replaced and the result is capped at 63 characters.
    None or an empty name yields None (stored as NULL).

    >>> sanitize_actor_name("O'Neil")
    'O_Neil'
    """
    if not name:
        return None
    cleaned = name[:ACTOR_NAME_MAX_LENGTH]
    for quote in ACTOR_NAME_QUOTE_CHARS:
        cleaned = cleaned.replace(quote, ACTOR_NAME_QUOTE_REPLACEMENT)
    return cleaned
