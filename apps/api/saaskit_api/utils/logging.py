"""Structured JSON logging utilities.

- JSON format for log aggregation
- Standard fields: timestamp, level, message, module, func, line
- request_id / user_id / team_id pulled from context variables
- Every extra field runs through utils.sanitize (passwords, tokens, emails)
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from saaskit_api.context import request_id_var, team_id_var, user_id_var
from saaskit_api.utils.sanitize import is_sensitive_key, sanitize_exc, sanitize_obj, sanitize_str

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

_CONTEXT_FIELDS = (
    ("request_id", request_id_var),
    ("user_id", user_id_var),
    ("team_id", team_id_var),
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter with request context.

    Context fields are omitted (not emitted as empty strings) when unset,
    e.g. for logs written outside a request such as Alembic migrations.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": sanitize_str(record.getMessage()),
            "logger": record.name,
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }

        for field_name, var in _CONTEXT_FIELDS:
            value = var.get()
            if value:
                log_data[field_name] = value

        if record.exc_info:
            log_data["exc_info"] = sanitize_exc(record.exc_info)

        # Extra fields from logger.info(..., extra={...})
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            if is_sensitive_key(key):
                log_data[key] = "[REDACTED]"
            else:
                log_data[key] = sanitize_obj(value)

        return json.dumps(log_data, default=str)


def configure_json_logging(log_level: str = "INFO") -> None:
    """Configure root logger with JSON formatter.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)
