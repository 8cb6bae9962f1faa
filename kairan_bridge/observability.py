"""Structured JSON logging for the bridge."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "kairan_bridge"


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        # Include extra fields if present
        if hasattr(record, "extra_fields"):
            log_obj.update(record.extra_fields)

        return json.dumps(log_obj, default=str, ensure_ascii=False)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger under the package root logger."""
    return logging.getLogger(name)


def configure_logging(level: str | int = logging.INFO, json_output: bool = True) -> None:
    """Attach a stdout handler to the package root logger.

    Safe to call more than once; the handler is only installed the first time.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
