"""Structured JSON logging utilities.

- JSON format for log aggregation
- Includes request_id, user_id and tag_id from context variables
- Includes trace_id and span_id when OpenTelemetry is enabled
- Standard fields: timestamp, level, message, module, func, line
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from linket_api.context import request_id_var, tag_id_var, user_id_var
from linket_api.utils.sanitize import sanitize_exc, sanitize_obj, sanitize_str

# LogRecord attributes that are never copied as extra fields
_RESERVED_ATTRS = frozenset({
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
})


class JSONFormatter(logging.Formatter):
    """JSON log formatter with request context.

    Formats log records as JSON with standard fields:
    - timestamp: ISO 8601 UTC
    - level: log level (INFO, ERROR, etc.)
    - message: log message
    - module / func / line: call site
    - request_id, user_id, tag_id: from context variables (if set)
    - trace_id, span_id: from OpenTelemetry log correlation (if enabled)
    - any fields passed through ``extra={...}``
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": sanitize_str(record.getMessage()),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }

        for field, var in (
            ("request_id", request_id_var),
            ("user_id", user_id_var),
            ("tag_id", tag_id_var),
        ):
            value = var.get()
            if value:
                log_data[field] = value

        # Injected by the OTel logging instrumentation ("0" outside a span)
        trace_id = getattr(record, "otelTraceID", None)
        span_id = getattr(record, "otelSpanID", None)
        if trace_id and trace_id != "0":
            log_data["trace_id"] = str(trace_id)
        if span_id and span_id != "0":
            log_data["span_id"] = str(span_id)

        if record.exc_info:
            log_data["exc_info"] = sanitize_exc(record.exc_info)

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("otel")
        }
        log_data.update(sanitize_obj(extras))

        return json.dumps(log_data, default=str)


def configure_json_logging(log_level: str = "INFO") -> None:
    """Configure root logger with JSON formatter.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)
