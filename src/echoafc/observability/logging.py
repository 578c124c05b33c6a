"""Structured JSON-lines logging for echoafc."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import os
from typing import Any, TextIO


ROOT_LOGGER = "echoafc"
LEVEL_ENV_VAR = "ECHOAFC_LOG_LEVEL"

# Attributes every LogRecord carries; anything else arrived through `extra`.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    return str(value)


class _JsonFormatter(logging.Formatter):
    """One JSON object per record, extra fields inlined."""

    def format(self, record: logging.LogRecord) -> str:
        fields = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        fields.update(
            ts=datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            level=record.levelname,
            logger=record.name,
            thread=record.threadName,
            message=record.getMessage(),
        )
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        return json.dumps(fields, sort_keys=True)


def configure_logging(level: str | None = None, stream: TextIO | None = None) -> logging.Logger:
    """Install the JSON handler on the echoafc logger once.

    The level falls back to $ECHOAFC_LOG_LEVEL, then WARNING, so library use
    stays quiet unless asked. Later calls only adjust the level.
    """

    logger = logging.getLogger(ROOT_LOGGER)
    resolved = (level or os.environ.get(LEVEL_ENV_VAR) or "WARNING").upper()
    if logger.handlers:
        if level is not None:
            logger.setLevel(resolved)
        return logger

    handler = logging.StreamHandler(stream)
    handler.setFormatter(_JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(resolved)
    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def log_event(
    logger: logging.Logger,
    event: str,
    *,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """Log `event` as the message and as an `event` field, plus `fields`."""

    logger.log(level, event, extra={"event": event, **fields})
