from __future__ import annotations

import json
import logging
import sys
from logging import LogRecord
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace


# attributes every stdlib record carries; anything else was passed via ``extra=``
_STDLIB_RECORD_ATTRS = frozenset(LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

_NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "apscheduler.executors.default")

# context keys promoted to the top of the JSON line so log queries can filter on them
_MEMBERSHIP_CONTEXT_KEYS = ("member_id", "session_id", "record_id", "item_id", "job_id")


class InterceptHandler(logging.Handler):
    """Route standard logging records (uvicorn, SQLAlchemy, APScheduler) into Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = record.msg if isinstance(record.msg, str) else str(record.msg)

        extra = {key: value for key, value in record.__dict__.items() if key not in _STDLIB_RECORD_ATTRS}
        bound_logger = logger.bind(**extra) if extra else logger
        bound_logger.opt(depth=6, exception=record.exc_info).log(level, message)


def _serialize_log(message: "logger.Message", metadata: Dict[str, Any]) -> None:
    record = message.record
    span_context = trace.get_current_span().get_span_context()
    extra = dict(record["extra"])

    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        "service": metadata["service_name"],
        "environment": metadata["environment"],
        "version": metadata["version"],
    }
    for key in _MEMBERSHIP_CONTEXT_KEYS:
        if key in extra:
            payload[key] = extra.pop(key)

    if span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    payload.update(extra)

    if record["exception"] is not None:
        exc_type, exc_value, _ = record["exception"]
        payload["error_type"] = exc_type.__name__ if exc_type else None
        payload["error"] = str(exc_value) if exc_value else None

    sys.stdout.write(json.dumps(payload, default=str) + "\n")


def configure_logging(*, service_name: str, environment: str, version: str, level: str = "INFO") -> None:
    """Configure Loguru + stdlib logging with structured JSON lines on stdout."""

    logger.remove()
    metadata = {"service_name": service_name, "environment": environment, "version": version}
    logger.add(
        lambda message: _serialize_log(message, metadata),
        level=level.upper(),
        backtrace=False,
        diagnose=False,
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
