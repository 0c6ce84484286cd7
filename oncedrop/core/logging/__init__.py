"""
Logging infrastructure.

Exports the structured logging subsystem and the per-event log context.
"""

from oncedrop.core.logging.logger import (
    LogContext,
    LoggerConfig,
    get_logger,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "setup_logging",
    "shutdown_logging",
    "get_logger",
    "LogContext",
    "LoggerConfig",
]
