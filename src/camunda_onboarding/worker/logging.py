"""Structured logging configuration.

Standard library logging, one JSON object per line. Correlation fields (task,
topic, instance, business key, worker) are lifted to the top level so log
queries can join a task's lines across threads; any other `extra={...}` field
lands under `"extra"`.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, TextIO

CORRELATION_FIELDS: tuple[str, ...] = (
    "worker_id",
    "topic",
    "task_id",
    "process_instance_id",
    "instance_id",
    "business_key",
)

# Everything a bare LogRecord carries, so only caller-supplied attributes count as extra.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if key in CORRELATION_FIELDS:
                payload[key] = value
            else:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # Task variables may hold values json cannot encode (datetimes).
        return json.dumps(payload, ensure_ascii=False, default=str)


class ContextFilter(logging.Filter):
    """Stamp fixed fields on every record that does not already carry them."""

    def __init__(self, context: Mapping[str, object]) -> None:
        super().__init__()
        self._context = dict(context)

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003 (record)
        for key, value in self._context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def configure_logging(
    level: str,
    *,
    context: Mapping[str, object] | None = None,
    stream: TextIO | None = None,
) -> None:
    """Send JSON lines for every logger to `stream` (stdout by default)."""

    root = logging.getLogger()

    # Remove any existing handlers to avoid duplicate logs when re-configuring.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=stream or sys.stdout)
    handler.setFormatter(JsonFormatter())
    if context:
        handler.addFilter(ContextFilter(context))

    root.addHandler(handler)
    root.setLevel(level.upper())

    # requests logs every connection at DEBUG; long polling makes that noisy.
    logging.getLogger("urllib3").setLevel(max(root.level, logging.INFO))
