"""
Logging infrastructure.

Exports the structured logging setup, context helpers and configuration.
"""

from progression_engine.core.logging.logger import (
    LogContext,
    LoggerConfig,
    get_log_context,
    get_logger,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "setup_logging",
    "shutdown_logging",
    "get_logger",
    "LogContext",
    "get_log_context",
    "LoggerConfig",
]
