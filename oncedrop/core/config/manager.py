"""
ConfigManager: hierarchical, YAML-backed game configuration access.

Purpose
-------
- Provide dot-notation access (`"once_drop.chance"`) to gameplay tunables.
- Back configuration with YAML files from the config directory.
- Allow in-memory overrides on top of YAML (tests, admin tooling).
- Support reload requests without restarting the process.

Responsibilities
----------------
- Discover and deep-merge every `*.yaml` / `*.yml` file under the directory.
- Serve reads from an in-memory snapshot.
- Coerce raw values to bool/int/float with the same vocabulary as `Config`.

Non-Responsibilities
--------------------
- Clamping or defaulting gameplay values (done by the consumer that owns
  the semantics, e.g. `load_settings`).
- Process-level settings (handled by `Config`).

Key Design Decisions
--------------------
- Instance-based so each module registration and each test owns an isolated
  view of configuration.
- A malformed YAML file is logged and skipped; the remaining files still load.
- Overrides always win over YAML, and survive `reload()`.
"""

from __future__ import annotations

import copy
import math
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional

import yaml

from oncedrop.core.config.config import Config
from oncedrop.core.config.errors import ConfigLoadError, ConfigValidationError
from oncedrop.core.logging.logger import get_logger

logger = get_logger(__name__)

_MISSING = object()

_TRUE_VALUES = {"true", "yes", "1", "on"}
_FALSE_VALUES = {"false", "no", "0", "off"}


class ConfigManager:
    """
    Game configuration with YAML defaults and in-memory overrides.

    Usage
    -----
    >>> manager = ConfigManager(config_dir=Path("config"))
    >>> manager.load()
    >>> manager.get("once_drop.chance", 1.0)
    1.0
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        *,
        overrides: Optional[Mapping[str, Any]] = None,
        strict: bool = False,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir is not None else Config.CONFIG_DIR
        self._strict = strict
        self._defaults: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}
        self._cache: Dict[str, Any] = {}
        self._loaded = False
        self._load_count = 0

        for key, value in (overrides or {}).items():
            self._assign(self._overrides, key, value)

    # =========================================================================
    # YAML LOADING
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: Mapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, Mapping) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)
            elif isinstance(value, Mapping):
                target[key] = copy.deepcopy(dict(value))
            else:
                target[key] = value

    @staticmethod
    def _assign(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
        parts = dotted_key.split(".")
        node = target
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

    def _load_yaml_configs(self) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}

        if not self._config_dir.exists():
            if self._strict:
                raise ConfigLoadError(f"Config directory not found: {self._config_dir}")
            logger.warning(
                "Config directory not found; using built-in defaults only",
                extra={"config_dir": str(self._config_dir)},
            )
            return merged

        yaml_files = sorted(
            list(self._config_dir.rglob("*.yaml")) + list(self._config_dir.rglob("*.yml"))
        )
        if not yaml_files:
            logger.info(
                "No YAML config files discovered; using built-in defaults only",
                extra={"config_dir": str(self._config_dir)},
            )
            return merged

        loaded_count = 0
        for yaml_file in yaml_files:
            relative = str(yaml_file.relative_to(self._config_dir))
            try:
                with yaml_file.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except (OSError, yaml.YAMLError) as exc:
                logger.warning(
                    "Failed to load YAML config",
                    extra={
                        "file": relative,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                continue

            if isinstance(data, dict):
                self._deep_merge_dict(merged, data)
                loaded_count += 1
                logger.debug("Loaded YAML config", extra={"file": relative})
            elif data is not None:
                logger.warning(
                    "Ignoring non-dict YAML root object",
                    extra={"file": relative, "root_type": type(data).__name__},
                )

        logger.info(
            "YAML configs loaded",
            extra={
                "yaml_file_count": loaded_count,
                "top_level_keys": sorted(merged.keys()),
            },
        )
        return merged

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def load(self) -> None:
        """(Re)build the in-memory snapshot from YAML plus overrides."""
        self._defaults = self._load_yaml_configs()
        cache: Dict[str, Any] = copy.deepcopy(self._defaults)
        self._deep_merge_dict(cache, self._overrides)
        self._cache = cache
        self._loaded = True
        self._load_count += 1

    def reload(self) -> None:
        """Re-read YAML from disk; overrides are kept."""
        logger.info("Reloading configuration", extra={"config_dir": str(self._config_dir)})
        self.load()

    @property
    def load_count(self) -> int:
        return self._load_count

    def set_override(self, key: str, value: Any) -> None:
        """Set an in-memory override; visible immediately and kept on reload."""
        self._assign(self._overrides, key, value)
        self._assign(self._cache, key, value)

    # =========================================================================
    # READS
    # =========================================================================

    def _lookup(self, key: str) -> Any:
        if not self._loaded:
            self.load()
        node: Any = self._cache
        for part in key.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return _MISSING
            node = node[part]
        return node

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value at the dot-notation `key` or `default`."""
        value = self._lookup(key)
        if value is _MISSING:
            return default
        return copy.deepcopy(value)

    def has(self, key: str) -> bool:
        return self._lookup(key) is not _MISSING

    def get_bool(self, key: str, default: bool) -> bool:
        """
        Return a boolean, accepting true/false, yes/no, 1/0, on/off.

        Raises
        ------
        ConfigValidationError
            If the stored value is not a recognised boolean.
        """
        value = self._lookup(key)
        if value is _MISSING or value is None:
            return default
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)) and value in (0, 1):
            return bool(value)
        normalized = str(value).lower().strip()
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False
        raise ConfigValidationError(key, value, "boolean")

    def get_int(self, key: str, default: int) -> int:
        value = self._lookup(key)
        if value is _MISSING or value is None:
            return default
        if isinstance(value, bool):
            raise ConfigValidationError(key, value, "integer")
        try:
            if isinstance(value, float):
                if not value.is_integer():
                    raise ValueError(value)
                return int(value)
            return int(str(value).strip())
        except ValueError as exc:
            raise ConfigValidationError(key, value, "integer") from exc

    def get_float(self, key: str, default: float) -> float:
        value = self._lookup(key)
        if value is _MISSING or value is None:
            return default
        if isinstance(value, bool):
            raise ConfigValidationError(key, value, "number")
        try:
            result = float(str(value).strip().rstrip("%"))
        except ValueError as exc:
            raise ConfigValidationError(key, value, "number") from exc
        if math.isnan(result):
            raise ConfigValidationError(key, value, "number")
        return result


__all__ = ["ConfigManager"]
