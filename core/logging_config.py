"""Logging helpers for storage operations."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

from core.time import utc_now_isoformat

_STORAGE_HANDLER_ATTR = "_is_storage_stream_handler"
STORAGE_LOGGER_NAME = "bounded_contexts.storage"


def setup_storage_logging(level: int = logging.INFO, logger_name: Optional[str] = None) -> logging.Logger:
    """Attach a stream handler to the storage logger hierarchy if missing."""

    logger = logging.getLogger(logger_name or STORAGE_LOGGER_NAME)
    for handler in logger.handlers:
        if getattr(handler, _STORAGE_HANDLER_ATTR, False):
            break
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        setattr(handler, _STORAGE_HANDLER_ATTR, True)
        logger.addHandler(handler)

    if logger.level == logging.NOTSET or logger.level > level:
        logger.setLevel(level)
    return logger


class StructuredLogger:
    """Helper for emitting structured JSON logs for storage operations."""

    def __init__(self, logger: logging.Logger, defaults: Optional[Mapping[str, Any]] = None):
        self._logger = logger
        self._defaults: Dict[str, Any] = dict(defaults or {})

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def bind(self, **extra: Any) -> "StructuredLogger":
        """Return a new logger with additional default fields."""

        merged = dict(self._defaults)
        merged.update(extra)
        return StructuredLogger(self._logger, merged)

    def _emit(self, level: int, event: str, **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        payload: Dict[str, Any] = {
            "ts": utc_now_isoformat(),
            "event": event,
            "level": logging.getLevelName(level),
        }
        payload.update(self._defaults)
        payload.update(fields)
        message = json.dumps(payload, ensure_ascii=False, default=str)
        self._logger.log(level, message, extra={"event": event})

    def log(self, level: int, event: str, **fields: Any) -> None:
        self._emit(level, event, **fields)

    def debug(self, event: str, **fields: Any) -> None:
        self._emit(logging.DEBUG, event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self._emit(logging.INFO, event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self._emit(logging.WARNING, event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self._emit(logging.ERROR, event, **fields)


def log_storage_error(logger: logging.Logger, message: str, event: str, exc_info: bool = True, **extra_attrs):
    """Log a storage failure with its event identifier.

    Args:
        logger: Logger instance to use.
        message: Error message.
        event: Event identifier for categorization.
        exc_info: Whether to include exception information.
        **extra_attrs: Additional attributes to include in log record.
    """
    extra = {
        'event': event,
        **extra_attrs
    }

    logger.error(message, exc_info=exc_info, extra=extra)


__all__ = [
    "STORAGE_LOGGER_NAME",
    "StructuredLogger",
    "log_storage_error",
    "setup_storage_logging",
]
