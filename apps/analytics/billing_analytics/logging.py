from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from billing_analytics.context import get_correlation_id
from billing_analytics.core.config import get_settings


# Structured ``extra=`` keys copied into the JSON ``fields`` object
_STRUCTURED_FIELDS = (
    "account_id",
    "bundle_id",
    "bundle_count",
    "record_count",
    "table",
    "status",
    "check",
    "mismatch_count",
    "event_name",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "error",
)
_MAX_ERROR_LENGTH = 500


def _stamp_correlation_id(record: logging.LogRecord) -> logging.LogRecord:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


def install_correlation_record_factory() -> None:
    """Stamp the current correlation id on every record at creation time.

    Done in the record factory rather than a handler filter so records seen by
    any handler, including pytest's ``caplog``, carry it.
    """
    previous = logging.getLogRecordFactory()
    if getattr(previous, "_stamps_correlation_id", False):
        return

    def factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        return _stamp_correlation_id(previous(*args, **kwargs))

    factory._stamps_correlation_id = True  # type: ignore[attr-defined]
    logging.setLogRecordFactory(factory)


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = {key: record.__dict__[key] for key in _STRUCTURED_FIELDS if key in record.__dict__}
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_analytics_configured", False):
        return

    if level is None:
        level = get_settings().log_level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    root_logger.handlers.clear()
    root_logger.setLevel(resolved)
    root_logger.addHandler(handler)
    install_correlation_record_factory()
    root_logger._analytics_configured = True  # type: ignore[attr-defined]
