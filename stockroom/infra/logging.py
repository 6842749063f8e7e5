"""
Structured logging: one JSON object per line with tenant/user/operation context.
"""

from __future__ import annotations

import json
import logging
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CONTEXT_FIELDS = ("tenant_id", "user_id", "operation", "reason")


class StructuredFormatter(logging.Formatter):
    """JSON log formatter that carries authorization context fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            val = getattr(record, key, None)
            if val:
                log_entry[key] = val

        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(level: str | None = None) -> None:
    """Install the JSON formatter on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)
