"""Logging setup: named loggers, optional JSON lines, warn-once dedup."""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Set, Tuple


class StructuredFormatter(logging.Formatter):
    """Emit JSON log lines with request context fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in ("provider", "job_id", "target", "event", "status"):
            val = getattr(record, field, None)
            if val is not None:
                entry[field] = val

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "WARNING", *, json_lines: bool = False) -> None:
    """Configure the root logger with a single stderr handler."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.WARNING))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if json_lines:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("[%(name)s] %(levelname)s: %(message)s"))
    root.addHandler(handler)

    for lib in ("httpx", "httpcore"):
        logging.getLogger(lib).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a named logger under the promptline namespace."""
    return logging.getLogger(f"promptline.{name}")


_seen: Set[Tuple[str, str]] = set()
_seen_lock = threading.Lock()


def warn_once(logger: logging.Logger, message: str, **extra: Any) -> bool:
    """
    Log a user-facing warning the first time this message is seen.
    Returns True if it was emitted.
    """
    key = (logger.name, message)
    with _seen_lock:
        if key in _seen:
            return False
        _seen.add(key)
    logger.warning(message, extra=extra or None)
    return True


def reset_warn_once() -> None:
    with _seen_lock:
        _seen.clear()
