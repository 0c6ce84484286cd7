"""
Configuration exceptions.

Hierarchy
---------
ConfigError (base)
├── ConfigValidationError (type/bounds validation failures)
└── ConfigLoadError (YAML directory or file cannot be read)
"""


class ConfigError(Exception):
    """
    Base exception for all configuration-related errors.

    Example
    -------
    >>> try:
    ...     manager.load()
    ... except ConfigError as e:
    ...     logger.error(f"Config operation failed: {e}")
    """


class ConfigValidationError(ConfigError):
    """
    Raised when a configuration value cannot be coerced to its declared type.

    Callers that must never fail (the once_drop settings loader) catch this and
    fall back to the option default.
    """

    def __init__(self, key: str, value: object, expected: str) -> None:
        self.key = key
        self.value = value
        self.expected = expected
        super().__init__(f"{key}={value!r} is not a valid {expected}")


class ConfigLoadError(ConfigError):
    """Raised in strict mode when the YAML config directory cannot be read."""


__all__ = [
    "ConfigError",
    "ConfigValidationError",
    "ConfigLoadError",
]
