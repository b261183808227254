from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from bizsuite.context import get_log_context


_HTTP_FIELDS = ("method", "path", "status_code", "duration_ms")
_HIERARCHY_FIELDS = ("entity_type", "node_id", "candidate_parent_id", "steps", "cycle_path")
_FIELD_ORDER = (*_HTTP_FIELDS, *_HIERARCHY_FIELDS, "event_name", "error")
_MAX_ERROR_LENGTH = 500


def _attach_request_context(record: logging.LogRecord) -> None:
    for key, value in get_log_context().items():
        if not getattr(record, key, None):
            setattr(record, key, value)


def hierarchy_log_fields(
    entity_type: str,
    node_id: Any,
    candidate_parent_id: Any = None,
    **extra: Any,
) -> dict[str, Any]:
    """``extra=`` mapping for hierarchy log lines, with ids rendered as strings."""
    fields: dict[str, Any] = {"entity_type": entity_type, "node_id": str(node_id)}
    if candidate_parent_id is not None:
        fields["candidate_parent_id"] = str(candidate_parent_id)
    fields.update(extra)
    return fields


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        _attach_request_context(record)
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    _attach_request_context(record)
    return record


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; only known structured fields are kept."""

    def format(self, record: logging.LogRecord) -> str:
        fields = {key: getattr(record, key) for key in _FIELD_ORDER if hasattr(record, key)}
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        return json.dumps(
            {
                "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "correlation_id": getattr(record, "correlation_id", None),
                "tenant_id": getattr(record, "tenant_id", None),
                "fields": fields,
            },
            default=str,
        )


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_bizsuite_configured", False):
        return

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    root_logger._bizsuite_configured = True  # type: ignore[attr-defined]
