"""
Logging subsystem for the progression engine.

Purpose
-------
Provide an async-safe logging setup that every module shares:

- Structured JSON logs for aggregation (production).
- Coloured human-readable console output (development).
- LogContext-based propagation of operation context via ContextVars.
- Correlation IDs for end-to-end traceability of one engine call.
- Non-blocking output via a QueueHandler + QueueListener pair.
- Optional daily rotating JSON file for local backup.

Responsibilities
----------------
- Initialize and configure the root logger once.
- Enrich all records with user_id, operation, component and correlation_id.
- Merge ``extra={...}`` fields into JSON output.
- Provide helpers: get_logger(), LogContext, get_log_context().

Dependencies
------------
- progression_engine.core.config.config.Config
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from progression_engine.core.config.config import Config


# ============================================================================
# Operation Context (ContextVars)
# ============================================================================

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context",
    default={},
)


# ============================================================================
# Config
# ============================================================================


@dataclass(frozen=True, slots=True)
class LoggerConfig:
    """Configuration for the logging subsystem."""

    CONSOLE_FORMAT: str = "%(asctime)s | %(levelname)-8s | %(name)-40s | %(message)s"
    DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    DAILY_BASENAME: str = "progression_daily.json.log"
    DAILY_BACKUP_COUNT: int = 1

    QUEUE_MAX_SIZE: int = 10_000

    @property
    def environment(self) -> str:
        return str(getattr(Config, "ENVIRONMENT", "development")).lower()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def logs_dir(self) -> Path:
        return Path(Config.LOGS_DIR).resolve()

    @property
    def log_level(self) -> int:
        level_name = getattr(Config, "LOG_LEVEL", "INFO")
        if not isinstance(level_name, str):
            level_name = "INFO"
        return getattr(logging, level_name.upper(), logging.INFO)

    @property
    def use_json(self) -> bool:
        json_flag = getattr(Config, "LOG_JSON", None)
        if json_flag is None:
            return self.is_production
        return bool(json_flag)

    @property
    def use_colors(self) -> bool:
        if self.is_production or self.use_json:
            return False
        return sys.stdout.isatty()

    @property
    def log_to_file(self) -> bool:
        return bool(getattr(Config, "LOG_TO_FILE", True))


LOGGER_CONFIG = LoggerConfig()


# ============================================================================
# Filters & Formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """Copy the active LogContext onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context: Dict[str, Any] = _request_context.get({})

        # Values passed through ``extra`` win over the ambient context
        defaults = {
            "user_id": context.get("user_id", "N/A"),
            "correlation_id": context.get("correlation_id") or "N/A",
            "component": context.get("component") or record.name.split(".", 1)[0],
            "operation": context.get("operation") or "N/A",
        }
        for key, value in defaults.items():
            if not hasattr(record, key):
                setattr(record, key, value)

        return True


class ColoredFormatter(logging.Formatter):
    COLORS: Dict[str, str] = {
        "DEBUG": "\033[90m",
        "INFO": "\033[94m",
        "WARNING": "\033[93m",
        "ERROR": "\033[91m",
        "CRITICAL": "\033[91m\033[1m",
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        original = record.levelname
        prefix = self.COLORS.get(original, "")
        reset = self.COLORS["RESET"] if prefix else ""

        if prefix:
            record.levelname = f"{prefix}{original}{reset}"

        try:
            return super().format(record)
        finally:
            record.levelname = original


class JSONFormatter(logging.Formatter):
    STANDARD_ATTRS = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
        "asctime",
    }

    CONTEXT_ATTRS = {
        "user_id",
        "correlation_id",
        "component",
        "operation",
    }

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        created_dt = datetime.fromtimestamp(record.created, tz=timezone.utc)

        log_data: Dict[str, Any] = {
            "timestamp": created_dt.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for attr in self.CONTEXT_ATTRS:
            value = getattr(record, attr, None)
            if value not in (None, "N/A"):
                log_data[attr] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {
            key: val
            for key, val in record.__dict__.items()
            if key not in self.STANDARD_ATTRS
            and key not in self.CONTEXT_ATTRS
            and not key.startswith("_")
        }
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, ensure_ascii=False, default=str)


# ============================================================================
# Global Setup
# ============================================================================

_queue_listener: Optional[QueueListener] = None


def _build_console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(LOGGER_CONFIG.log_level)

    if LOGGER_CONFIG.use_json:
        handler.setFormatter(JSONFormatter())
    elif LOGGER_CONFIG.use_colors:
        handler.setFormatter(
            ColoredFormatter(
                fmt=LOGGER_CONFIG.CONSOLE_FORMAT,
                datefmt=LOGGER_CONFIG.DATE_FORMAT,
            )
        )
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt=LOGGER_CONFIG.CONSOLE_FORMAT,
                datefmt=LOGGER_CONFIG.DATE_FORMAT,
            )
        )

    return handler


def _build_daily_file_handler() -> logging.Handler:
    LOGGER_CONFIG.logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = LOGGER_CONFIG.logs_dir / LOGGER_CONFIG.DAILY_BASENAME

    handler = TimedRotatingFileHandler(
        filename=str(log_file),
        when="midnight",
        interval=1,
        backupCount=LOGGER_CONFIG.DAILY_BACKUP_COUNT,
        encoding="utf-8",
        utc=True,
    )
    handler.setLevel(LOGGER_CONFIG.log_level)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging() -> None:
    """Install the queue-based handler stack on the root logger (idempotent)."""
    global _queue_listener

    root = logging.getLogger()
    if getattr(root, "_progression_logging_initialized", False):
        return

    root.setLevel(LOGGER_CONFIG.log_level)
    root.handlers.clear()
    root.filters.clear()

    handlers: List[logging.Handler] = [_build_console_handler()]
    if LOGGER_CONFIG.log_to_file:
        handlers.append(_build_daily_file_handler())

    log_queue: "queue.Queue[logging.LogRecord]" = queue.Queue(
        LOGGER_CONFIG.QUEUE_MAX_SIZE
    )
    _queue_listener = QueueListener(log_queue, *handlers, respect_handler_level=True)
    _queue_listener.start()

    queue_handler = QueueHandler(log_queue)
    queue_handler.setLevel(LOGGER_CONFIG.log_level)
    # Filters run on the producing side so ContextVars are still visible
    queue_handler.addFilter(ContextFilter())
    root.addHandler(queue_handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    setattr(root, "_progression_logging_initialized", True)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": LOGGER_CONFIG.environment,
            "log_level": logging.getLevelName(LOGGER_CONFIG.log_level),
            "json": LOGGER_CONFIG.use_json,
            "log_to_file": LOGGER_CONFIG.log_to_file,
        },
    )


def shutdown_logging() -> None:
    """Flush and detach the handler stack."""
    global _queue_listener

    root = logging.getLogger()
    if not getattr(root, "_progression_logging_initialized", False):
        return

    if _queue_listener:
        _queue_listener.stop()
        _queue_listener = None

    for handler in list(root.handlers):
        handler.flush()
        handler.close()
        root.removeHandler(handler)

    setattr(root, "_progression_logging_initialized", False)


# ============================================================================
# Public API
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Bind operation context to every log record emitted inside the block.

    Works as both a sync and an async context manager. Values not passed are
    inherited from an enclosing context, so nested operations share one
    correlation id.

    Usage
    -----
    >>> async with LogContext(user_id=42, operation="award_xp"):
    ...     logger.info("Awarding XP")
    """

    def __init__(
        self,
        user_id: Optional[int] = None,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        outer: Dict[str, Any] = _request_context.get({})
        self.context: Dict[str, Any] = {
            **outer,
            "user_id": str(user_id) if user_id is not None else outer.get("user_id", "N/A"),
            "component": component or outer.get("component"),
            "operation": operation or outer.get("operation"),
            "correlation_id": (
                correlation_id
                or outer.get("correlation_id")
                or self._generate_correlation_id()
            ),
            **extra,
        }
        self._token: Optional[Token[Dict[str, Any]]] = None

    @staticmethod
    def _generate_correlation_id() -> str:
        return str(uuid.uuid4())[:8]

    def __enter__(self) -> "LogContext":
        self._token = _request_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _request_context.reset(self._token)

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def get_log_context() -> Dict[str, Any]:
    return dict(_request_context.get({}))


# Initialize logging automatically
setup_logging()
