"""
Logging setup for the workflow service.

Imported first by the API, the CLI and the database module. Modules log
through `logging.getLogger("taskflow.<area>")`.

Scheduler and dispatch records are also kept in a bounded in-memory buffer
so an operator can read the latest ticks from `GET /scheduler/log` without
shell access.
"""

import logging
import os
import sys
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_BUFFER_SIZE = int(os.getenv("LOG_BUFFER_SIZE", "2000"))
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

QUIET_LIBRARIES = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine", "apscheduler", "telegram")

log_buffer: Deque[Dict[str, str]] = deque(maxlen=LOG_BUFFER_SIZE)


class BufferHandler(logging.Handler):
    """Stores each record as a small dict: time, level, logger name and message."""

    def emit(self, record: logging.LogRecord):
        try:
            log_buffer.append(
                {
                    "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="seconds"),
                    "level": record.levelname,
                    "logger": record.name,
                    "message": record.getMessage(),
                }
            )
        except Exception:
            self.handleError(record)


def recent_logs(limit: int = 100, level: Optional[str] = None, area: Optional[str] = None) -> List[Dict[str, str]]:
    """Newest-last slice of the buffer, filtered by minimum level and logger prefix."""
    threshold = logging.getLevelName(level.upper()) if level else logging.NOTSET
    if not isinstance(threshold, int):
        raise ValueError(f"Unknown log level '{level}'")

    prefix = f"taskflow.{area}" if area else None
    entries = [
        entry
        for entry in log_buffer
        if logging.getLevelName(entry["level"]) >= threshold
        and (prefix is None or entry["logger"] == prefix or entry["logger"].startswith(prefix + "."))
    ]
    return entries[-limit:]


def setup_logging():
    root = logging.getLogger()
    if any(isinstance(h, BufferHandler) for h in root.handlers):
        return

    if not root.handlers:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(console)
    root.addHandler(BufferHandler())
    root.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)


setup_logging()
