"""
Once-drop settings: an immutable snapshot resolved from ConfigManager.

Every out-of-range or unparseable value is recovered locally (clamped or
defaulted) with a warning; loading settings never fails.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, TypeVar

from oncedrop.core.config.errors import ConfigValidationError
from oncedrop.core.config.manager import ConfigManager
from oncedrop.core.logging.logger import get_logger
from oncedrop.modules.once_drop.constants import (
    CONF_ALLOW_REPEAT,
    CONF_ANNOUNCE_COLLECTION,
    CONF_CHANCE,
    CONF_ENABLE,
    CONF_ITEM_ID,
    CONF_ITEM_NAME,
    CONF_NPC_ENTRY,
    CONF_RECORD_KEY,
    CONF_RESET,
    DEFAULT_CHANCE_PERCENT,
    DEFAULT_ITEM_ID,
    DEFAULT_ITEM_NAME,
    DEFAULT_RECORD_KEY,
    DEFAULT_TARGET_ID,
    UINT32_MAX,
)
from oncedrop.database.models.once_drop import KEYNAME_MAX_LENGTH

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class OnceDropSettings:
    """Resolved configuration for one reward / one encounter."""

    enabled: bool = True
    target_id: int = DEFAULT_TARGET_ID
    chance_percent: float = DEFAULT_CHANCE_PERCENT
    allow_repeat: bool = False
    reset_on_startup: bool = False
    item_id: int = DEFAULT_ITEM_ID
    item_name: str = DEFAULT_ITEM_NAME
    record_key: str = DEFAULT_RECORD_KEY
    announce_collection: bool = True

    def to_log_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "target_id": self.target_id,
            "chance_percent": self.chance_percent,
            "allow_repeat": self.allow_repeat,
            "reset_on_startup": self.reset_on_startup,
            "item_id": self.item_id,
            "record_key": self.record_key,
            "announce_collection": self.announce_collection,
        }


def clamp_chance(value: float) -> float:
    """Clamp a percentage to [0, 100]; NaN falls back to the default."""
    if math.isnan(value):
        return DEFAULT_CHANCE_PERCENT
    return min(100.0, max(0.0, value))


def coerce_uint32_id(value: int, default: int) -> int:
    """Zero or anything outside uint32 falls back to `default`."""
    if value <= 0 or value > UINT32_MAX:
        return default
    return value


def _read(key: str, reader: Callable[[str, T], T], default: T) -> T:
    try:
        return reader(key, default)
    except ConfigValidationError as exc:
        logger.warning(
            "Invalid once_drop option; using default",
            extra={"config_key": key, "error": str(exc), "default": default},
        )
        return default


def load_settings(config_manager: ConfigManager) -> OnceDropSettings:
    """
    Resolve an `OnceDropSettings` snapshot.

    - `npc_entry == 0` (or outside uint32) becomes the preset encounter.
    - `chance` is clamped to [0, 100].
    - `item_id` follows the same rule as `npc_entry`.
    - `record_key` is trimmed and capped to the column length; blank falls
      back to the default key.
    """
    raw_target = _read(CONF_NPC_ENTRY, config_manager.get_int, DEFAULT_TARGET_ID)
    target_id = coerce_uint32_id(raw_target, DEFAULT_TARGET_ID)
    if target_id != raw_target:
        logger.warning(
            "once_drop.npc_entry out of range; using preset encounter",
            extra={"configured": raw_target, "resolved": target_id},
        )

    raw_chance = _read(CONF_CHANCE, config_manager.get_float, DEFAULT_CHANCE_PERCENT)
    chance = clamp_chance(raw_chance)
    if chance != raw_chance:
        logger.warning(
            "once_drop.chance clamped",
            extra={"configured": raw_chance, "resolved": chance},
        )

    item_id = coerce_uint32_id(
        _read(CONF_ITEM_ID, config_manager.get_int, DEFAULT_ITEM_ID), DEFAULT_ITEM_ID
    )

    item_name = str(config_manager.get(CONF_ITEM_NAME, DEFAULT_ITEM_NAME) or "").strip()
    record_key = str(config_manager.get(CONF_RECORD_KEY, DEFAULT_RECORD_KEY) or "").strip()

    return OnceDropSettings(
        enabled=_read(CONF_ENABLE, config_manager.get_bool, True),
        target_id=target_id,
        chance_percent=chance,
        allow_repeat=_read(CONF_ALLOW_REPEAT, config_manager.get_bool, False),
        reset_on_startup=_read(CONF_RESET, config_manager.get_bool, False),
        item_id=item_id,
        item_name=item_name or DEFAULT_ITEM_NAME,
        record_key=(record_key or DEFAULT_RECORD_KEY)[:KEYNAME_MAX_LENGTH],
        announce_collection=_read(CONF_ANNOUNCE_COLLECTION, config_manager.get_bool, True),
    )
