"""
Configuration subsystem.

- `Config`: static, environment-driven process settings.
- `ConfigManager` (in `oncedrop.core.config.manager`): YAML-backed gameplay
  configuration with dot-notation reads. Not re-exported here because the
  logging subsystem imports `Config` from this package during bootstrap.
"""

from oncedrop.core.config.config import Config, Environment
from oncedrop.core.config.errors import (
    ConfigError,
    ConfigLoadError,
    ConfigValidationError,
)

__all__ = [
    "Config",
    "Environment",
    "ConfigError",
    "ConfigLoadError",
    "ConfigValidationError",
]
