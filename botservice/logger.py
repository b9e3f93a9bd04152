"""Structured logging with key/value fields and JSON output."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "level": record.levelname.lower(),
            "ts": record.created,
            "msg": record.getMessage(),
        }
        entry.update(getattr(record, "fields", {}))
        return json.dumps(entry, default=str)


def _base_logger(name: str) -> logging.Logger:
    base = logging.getLogger(name)
    if not base.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_JSONFormatter())
        base.addHandler(handler)
    base.setLevel(logging.DEBUG)
    return base


def _convert_fields(args: tuple[Any, ...]) -> dict[str, Any]:
    """Pair up alternating keys and values, skipping pairs whose key is not a string."""
    return {key: value for key, value in zip(args[::2], args[1::2]) if isinstance(key, str)}


class Logger:
    """Leveled logger taking alternating key/value pairs as structured fields."""

    def __init__(self, level: int = logging.INFO, name: str = "botservice") -> None:
        self.level = level
        self._logger = _base_logger(name)

    def _log(self, level: int, msg: str, args: tuple[Any, ...]) -> None:
        if level < self.level:
            return
        self._logger.log(level, msg, extra={"fields": _convert_fields(args)})

    def debug(self, msg: str, *args: Any) -> None:
        self._log(logging.DEBUG, msg, args)

    def info(self, msg: str, *args: Any) -> None:
        self._log(logging.INFO, msg, args)

    def warn(self, msg: str, *args: Any) -> None:
        self._log(logging.WARNING, msg, args)

    def error(self, msg: str, *args: Any) -> None:
        self._log(logging.ERROR, msg, args)

    def fatal(self, msg: str, *args: Any) -> None:
        """Log at the highest level and terminate with exit status 1."""
        self._log(logging.CRITICAL, msg, args)
        raise SystemExit(1)


def new_logger(level: str) -> Logger:
    """Create a logger for a level name; unknown names fall back to info."""
    return Logger(_LEVELS.get(level, logging.INFO))