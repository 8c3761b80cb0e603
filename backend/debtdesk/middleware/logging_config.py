"""
Logging setup.

Text output by default; ``LOG_FORMAT=json`` switches to one JSON object per
line carrying timestamp, level, logger, message, request_id, the acting
employee and duration_ms where present.
"""

import json
import logging
from datetime import datetime, timezone

from debtdesk.middleware.request_context import get_employee_code, get_request_id

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None) or get_request_id(),
        }

        employee_code = get_employee_code()
        if employee_code:
            log_entry["employee_code"] = employee_code

        if hasattr(record, "duration_ms"):
            log_entry["duration_ms"] = record.duration_ms

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_json_logging(log_level: str = "INFO"):
    """Replace the root logger's formatter with JSON output."""
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def configure_logging(log_level: str = "INFO", log_format: str = "text"):
    if log_format == "json":
        configure_json_logging(log_level)
        return
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=TEXT_FORMAT,
    )
