"""
Once-drop constants: defaults, config keys and event names.
"""

# Baron Geddon; the preset encounter when no valid target is configured.
DEFAULT_TARGET_ID = 12056
# Talisman of Binding Shard.
DEFAULT_ITEM_ID = 17782
DEFAULT_ITEM_NAME = "Talisman of Binding Shard"
DEFAULT_RECORD_KEY = "geddon_17782_once"
DEFAULT_CHANCE_PERCENT = 1.0

UINT32_MAX = 0xFFFFFFFF

# Rolls are drawn in hundredths of a percent: 10000 == 100.00%.
ROLL_SCALE = 10_000

ACTOR_NAME_MAX_LENGTH = 63
ACTOR_NAME_QUOTE_CHARS = ("'", '"')
ACTOR_NAME_QUOTE_REPLACEMENT = "_"

# Config keys (YAML section `once_drop`)
CONF_SECTION = "once_drop"
CONF_ENABLE = "once_drop.enable"
CONF_NPC_ENTRY = "once_drop.npc_entry"
CONF_CHANCE = "once_drop.chance"
CONF_ALLOW_REPEAT = "once_drop.allow_repeat"
CONF_RESET = "once_drop.reset_on_startup"
CONF_ITEM_ID = "once_drop.item_id"
CONF_ITEM_NAME = "once_drop.item_name"
CONF_RECORD_KEY = "once_drop.record_key"
CONF_ANNOUNCE_COLLECTION = "once_drop.announce_collection"

# Host events consumed
EVENT_ENTITY_DEFEATED = "combat.entity_defeated"
EVENT_ITEM_COLLECTED = "loot.item_collected"

# Domain events emitted
EVENT_GRANTED = "once_drop.granted"
EVENT_COLLECTED = "once_drop.collected"
EVENT_RESET = "once_drop.reset"
EVENT_REVOKED = "once_drop.revoked"

UNKNOWN_KILLER_NAME = "Someone"
UNKNOWN_TARGET_NAME = "their foe"

# Granted-but-uncollected loot containers remembered for collection matching.
PENDING_CONTAINER_LIMIT = 256
