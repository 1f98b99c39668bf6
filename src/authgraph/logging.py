"""Console and JSON log formatters plus the ``extra`` helper used by the stores."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from authgraph.settings import Settings

# LogRecord attributes; anything else on a record came from ``extra``.
_STANDARD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime"}


def _utc_timestamp(record: logging.LogRecord) -> str:
    stamp = datetime.fromtimestamp(record.created, tz=UTC).strftime("%Y-%m-%dT%H:%M:%S")
    return f"{stamp}.{int(record.msecs):03d}Z"


class ConsoleLogFormatter(logging.Formatter):
    """``<time> <LEVEL> <logger> <event> key=value ...`` on one line."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s %(levelname)-5s %(name)s %(message)s")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        return _utc_timestamp(record)

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = [
            f"{key}={_format_extra_value(value)}"
            for key, value in sorted(_record_extras(record).items())
        ]
        if extras:
            return f"{base} " + " ".join(extras)
        return base


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record; extras become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": _utc_timestamp(record),
            "level": record.levelname,
            "service": "authgraph",
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_record_extras(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default, separators=(",", ":"))


def setup_logging(settings: Settings) -> None:
    """Configure root logging for the current process.

    Replaces the root handlers with a single ``StreamHandler`` on the current
    ``sys.stderr`` and applies ``settings.log_level``. SQLAlchemy
    loggers are held at WARNING unless ``database_echo`` is enabled.
    """
    root_logger = logging.getLogger()
    level = getattr(logging, settings.log_level)

    handler = logging.StreamHandler()
    handler.setFormatter(_build_formatter(settings.log_format))
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    db_level = logging.INFO if settings.database_echo else logging.WARNING
    for name in ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = True
        logger.setLevel(db_level)


def log_context(
    *,
    user_id: object | None = None,
    item: str | None = None,
    rule: str | None = None,
    parent: str | None = None,
    child: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Drop ``None`` fields and stringify ``user_id`` so every event shares keys."""

    named = {"item": item, "rule": rule, "parent": parent, "child": child}
    ctx: dict[str, Any] = {}
    if user_id is not None:
        ctx["user_id"] = str(user_id)
    ctx.update((key, value) for key, value in named.items() if value is not None)
    ctx.update(extra)
    return ctx


def _format_extra_value(value: Any) -> str:
    if value is None:
        return "null"
    return str(value)


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    extras: dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_ATTRS or key.startswith("_"):
            continue
        extras[key] = value
    return extras


def _json_default(value: Any) -> str:
    return str(value)


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonLogFormatter()
    return ConsoleLogFormatter()


__all__ = [
    "ConsoleLogFormatter",
    "JsonLogFormatter",
    "log_context",
    "setup_logging",
]
