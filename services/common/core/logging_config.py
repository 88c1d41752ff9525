"""
Logging Configuration
Custom JSON Logger implementation shared by the provider components.

Provides:
- CustomJsonFormatter: one JSON object per record, extra fields included
- setup_logging: YAML dictConfig loader with ${VAR} substitution
"""

import json
import logging
import logging.config
import os
import string
from datetime import datetime, timezone
from typing import Mapping, Optional

import yaml

from .request_context import get_call_id

_STANDARD_ATTRS = frozenset(
    {
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
)


class CustomJsonFormatter(logging.Formatter):
    """
    JSON Formatter.

    Fields:
      - _time: ISO8601 timestamp (millisecond precision)
      - level: Log level
      - logger: Logger name (e.g. aws_provider.request_executor)
      - message: Log message
      - call_id: Outbound provider call the record belongs to, if any
    """

    def format(self, record: logging.LogRecord) -> str:
        call_id = getattr(record, "call_id", None) or get_call_id()

        log_data = {
            "_time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if call_id:
            log_data["call_id"] = call_id

        # Include extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_") and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(
    config_path: str = "logging.yml",
    environ: Optional[Mapping[str, str]] = None,
    default_level: str = "INFO",
):
    """
    Load the YAML config, substitute environment variables, and initialize logging.
    """
    if not config_path or not os.path.exists(config_path):
        logging.basicConfig(level=default_level)
        return

    with open(config_path, "r", encoding="utf-8") as f:
        # Supports ${LOG_LEVEL} format.
        template = string.Template(f.read())

    mapping = dict(environ if environ is not None else os.environ)
    mapping.setdefault("LOG_LEVEL", default_level)

    content = template.safe_substitute(mapping)
    config = yaml.safe_load(content)
    logging.config.dictConfig(config)
