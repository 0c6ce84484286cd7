"""
Unit tests for once-drop settings resolution.
"""

from pathlib import Path

import pytest

from oncedrop.core.config.manager import ConfigManager
from oncedrop.modules.once_drop.settings import (
    OnceDropSettings,
    clamp_chance,
    coerce_uint32_id,
    load_settings,
)

pytestmark = pytest.mark.unit

REPO_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


def settings_with(config_dir, **overrides):
    manager = ConfigManager(
        config_dir, overrides={f"once_drop.{k}": v for k, v in overrides.items()}
    )
    return load_settings(manager)


class TestDefaults:
    def test_missing_section_yields_defaults(self, config_dir):
        settings = settings_with(config_dir)
        assert settings == OnceDropSettings()
        assert settings.enabled is True
        assert settings.target_id == 12056
        assert settings.chance_percent == 1.0
        assert settings.allow_repeat is False
        assert settings.reset_on_startup is False
        assert settings.item_id == 17782
        assert settings.item_name == "Talisman of Binding Shard"
        assert settings.record_key == "geddon_17782_once"

    def test_shipped_yaml_matches_defaults(self):
        settings = load_settings(ConfigManager(REPO_CONFIG_DIR))
        assert settings == OnceDropSettings()

    def test_settings_are_immutable(self):
        settings = OnceDropSettings()
        with pytest.raises(AttributeError):
            settings.chance_percent = 50.0  # type: ignore[misc]


class TestTargetCoercion:
    @pytest.mark.parametrize("value", [0, -1, 2**32, "0"])
    def test_invalid_target_becomes_preset(self, config_dir, value):
        assert settings_with(config_dir, npc_entry=value).target_id == 12056

    def test_configured_target_is_kept(self, config_dir):
        assert settings_with(config_dir, npc_entry=11502).target_id == 11502

    def test_unparseable_target_falls_back(self, config_dir):
        assert settings_with(config_dir, npc_entry="geddon").target_id == 12056

    def test_coerce_uint32_upper_bound(self):
        assert coerce_uint32_id(0xFFFFFFFF, 1) == 0xFFFFFFFF
        assert coerce_uint32_id(0x100000000, 1) == 1


class TestChance:
    @pytest.mark.parametrize(
        "value,expected",
        [(150, 100.0), (-3, 0.0), ("2.5", 2.5), ("2.5%", 2.5), (0, 0.0), (100, 100.0)],
    )
    def test_chance_is_parsed_and_clamped(self, config_dir, value, expected):
        assert settings_with(config_dir, chance=value).chance_percent == expected

    @pytest.mark.parametrize("value", ["often", "nan", True])
    def test_bad_chance_falls_back_to_default(self, config_dir, value):
        assert settings_with(config_dir, chance=value).chance_percent == 1.0

    def test_clamp_handles_nan(self):
        assert clamp_chance(float("nan")) == 1.0
        assert clamp_chance(float("inf")) == 100.0


class TestFlags:
    @pytest.mark.parametrize(
        "raw,expected",
        [("yes", True), ("on", True), ("1", True), ("no", False), ("off", False), (0, False)],
    )
    def test_boolean_spellings(self, config_dir, raw, expected):
        settings = settings_with(config_dir, allow_repeat=raw, reset_on_startup=raw)
        assert settings.allow_repeat is expected
        assert settings.reset_on_startup is expected

    def test_unparseable_boolean_uses_option_default(self, config_dir):
        settings = settings_with(config_dir, enable="maybe", allow_repeat="perhaps")
        assert settings.enabled is True
        assert settings.allow_repeat is False


class TestRewardIdentity:
    def test_blank_record_key_falls_back(self, config_dir):
        assert settings_with(config_dir, record_key="   ").record_key == "geddon_17782_once"

    def test_long_record_key_is_capped_to_column(self, config_dir):
        assert len(settings_with(config_dir, record_key="k" * 100).record_key) == 64

    def test_custom_item(self, config_dir):
        settings = settings_with(config_dir, item_id=19019, item_name="Thunderfury")
        assert settings.item_id == 19019
        assert settings.item_name == "Thunderfury"


class TestYamlSource:
    def test_values_are_read_from_yaml(self, config_dir):
        (config_dir / "once_drop.yaml").write_text(
            "once_drop:\n"
            "  enable: off\n"
            "  npc_entry: 11502\n"
            "  chance: 12.5\n"
            "  allow_repeat: yes\n",
            encoding="utf-8",
        )
        settings = load_settings(ConfigManager(config_dir))
        assert settings.enabled is False
        assert settings.target_id == 11502
        assert settings.chance_percent == 12.5
        assert settings.allow_repeat is True
