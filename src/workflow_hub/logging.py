"""Structured logging configuration.

Uses standard library logging with a JSON formatter.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

_RESERVED_LOG_RECORD_ATTRS: set[str] = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}


class JsonFormatter(logging.Formatter):
    """A minimal JSON formatter for logging records."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str) -> None:
    """Configure root logging with structured JSON output."""

    root = logging.getLogger()

    # Remove any existing handlers to avoid duplicate logs when re-configuring.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    logging.getLogger("botocore").setLevel(max(root.level, logging.WARNING))


@contextmanager
def log_span(logger: logging.Logger, name: str, **fields: object) -> Iterator[dict[str, object]]:
    """Emit one record per call with its duration and identifiers.

    The yielded dict can be filled with result fields (counts, ids) that should
    appear on the completion record. Failures are logged with the error class and
    re-raised unchanged.
    """

    result: dict[str, object] = {}
    started = time.perf_counter()
    try:
        yield result
    except Exception as e:
        logger.warning(
            f"{name} failed",
            extra={
                "span": name,
                "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                "error": type(e).__name__,
                "error_message": str(e),
                **fields,
            },
        )
        raise
    logger.info(
        f"{name} completed",
        extra={
            "span": name,
            "duration_ms": round((time.perf_counter() - started) * 1000, 3),
            **fields,
            **result,
        },
    )
