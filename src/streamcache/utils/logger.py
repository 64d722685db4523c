# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Logging utilities for streamcache.

Records go through Python's standard :mod:`logging` machinery.  The package
installs a single handler on the root logger the first time
:func:`get_logger` is called, with either a colored plain-text formatter or a
structured JSON formatter serialized through ``orjson``.

The engine reports terminal fetch failures at ``ERROR`` level; applications
that forward errors to an external collector only need to attach a handler.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
import os
from typing import Any, ClassVar, Final

import orjson as oj


RESET: Final[str] = "\033[0m"

DEBUG_COLOR: Final[str] = "\033[36m"
INFO_COLOR: Final[str] = "\033[32m"
WARNING_COLOR: Final[str] = "\033[33m"
ERROR_COLOR: Final[str] = "\033[1;31m"
CRITICAL_COLOR: Final[str] = "\033[1;35m"
LOGGER_COLOR: Final[str] = "\033[94m"

DEFAULT_LOGGER_NAME: Final[str] = "streamcache"
ENV_LOG_LEVEL: Final[str] = "STREAMCACHE_LOG_LEVEL"
ENV_LOG_JSON: Final[str] = "STREAMCACHE_LOG_JSON"
ENV_NO_COLOR: Final[str] = "NO_COLOR"
DEFAULT_FORMAT: Final[str] = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DEFAULT_DATEFMT: Final[str] = "%Y-%m-%d %H:%M:%S"

JsonSerializer = Callable[[dict[str, Any]], str]

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys() | {"message", "asctime", "context"}
)


class ColoredFormatter(logging.Formatter):
    """Plain-text formatter that colors the level and logger name."""

    LEVEL_COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": DEBUG_COLOR,
        "INFO": INFO_COLOR,
        "WARNING": WARNING_COLOR,
        "ERROR": ERROR_COLOR,
        "CRITICAL": CRITICAL_COLOR,
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname, name = record.levelname, record.name
        record.levelname = f"{self.LEVEL_COLORS.get(levelname, '')}{levelname}{RESET}"
        record.name = f"{LOGGER_COLOR}{name}{RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname, record.name = levelname, name


class StreamCacheHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """Handler installed by :func:`setup_logger`; used to detect prior setup."""


class StructuredJSONFormatter(logging.Formatter):
    """Serialize log records into one JSON document per line."""

    def __init__(self, serializer: JsonSerializer | None = None, *, datefmt: str | None = None) -> None:
        super().__init__(datefmt=datefmt)
        self._serializer = serializer or _orjson_serializer

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        context: dict[str, Any] = {}
        explicit = getattr(record, "context", None)
        if isinstance(explicit, dict):
            context.update(explicit)
        for key, value in record.__dict__.items():
            if key not in _RECORD_KEYS and key not in context:
                context[key] = value
        if context:
            payload["context"] = context

        return self._serializer(payload)


def _orjson_serializer(payload: dict[str, Any]) -> str:
    return oj.dumps(payload, default=str).decode()


def _read_bool_env(key: str) -> bool:
    value = os.getenv(key)
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv(ENV_LOG_LEVEL)
        if not level:
            return logging.INFO
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _has_handler(root: logging.Logger) -> bool:
    return any(isinstance(handler, StreamCacheHandler) for handler in root.handlers)


def setup_logger(
    *,
    level: int | str | None = None,
    use_json: bool | None = None,
    use_color: bool | None = None,
    json_serializer: JsonSerializer | None = None,
    fmt: str | None = None,
    datefmt: str | None = DEFAULT_DATEFMT,
    force: bool = False,
) -> None:
    """Configure the root logger.

    Args:
        level: Log level. Falls back to ``STREAMCACHE_LOG_LEVEL`` then ``INFO``.
        use_json: Emit JSON lines. Defaults to ``STREAMCACHE_LOG_JSON``.
        use_color: Color plain-text output. Defaults to on unless ``NO_COLOR``
            is set or JSON output is selected.
        json_serializer: Replacement for the default orjson serializer.
        fmt: Format string for plain-text output.
        datefmt: Date format for both formatters.
        force: Replace a handler installed by an earlier call.
    """
    root = logging.getLogger()
    if _has_handler(root) and not force:
        return

    for handler in list(root.handlers):
        if isinstance(handler, StreamCacheHandler):
            root.removeHandler(handler)
            handler.close()

    resolved_level = _resolve_level(level)
    root.setLevel(resolved_level)

    resolved_json = use_json if use_json is not None else _read_bool_env(ENV_LOG_JSON)
    if use_color is not None:
        resolved_color = use_color
    else:
        resolved_color = not resolved_json and not os.getenv(ENV_NO_COLOR)

    formatter: logging.Formatter
    if resolved_json:
        formatter = StructuredJSONFormatter(json_serializer, datefmt=datefmt)
    elif resolved_color:
        formatter = ColoredFormatter(fmt or DEFAULT_FORMAT, datefmt=datefmt)
    else:
        formatter = logging.Formatter(fmt or DEFAULT_FORMAT, datefmt=datefmt)

    handler = StreamCacheHandler()
    handler.setLevel(resolved_level)
    handler.setFormatter(formatter)
    root.addHandler(handler)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a package logger, configuring the root logger on first use."""
    if not _has_handler(logging.getLogger()):
        setup_logger()
    return logging.getLogger(name or DEFAULT_LOGGER_NAME)


__all__ = [
    "DEFAULT_LOGGER_NAME",
    "ColoredFormatter",
    "StreamCacheHandler",
    "StructuredJSONFormatter",
    "get_logger",
    "setup_logger",
]
