"""Root logger configuration: console, rotating file, and an in-memory buffer.

The buffer keeps the most recent log lines so ``GET /logs`` can show them
without reading the log file.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%dT%H:%M:%S"


class LogBufferHandler(logging.Handler):
    """Keep the last *capacity* formatted records in memory."""

    def __init__(self, capacity: int = 1000) -> None:
        super().__init__()
        self._records: deque[str] = deque(maxlen=max(capacity, 1))
        self._buffer_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return
        with self._buffer_lock:
            self._records.append(line)

    def lines(self) -> list[str]:
        with self._buffer_lock:
            return list(self._records)


def configure_logging(
    level: str = "INFO",
    *,
    log_file: str | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    buffer_capacity: int = 1000,
    fmt: str = DEFAULT_FORMAT,
    datefmt: str = DEFAULT_DATEFMT,
) -> LogBufferHandler:
    """Initialise the root logger and return the in-memory buffer handler."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count))

    buffer = LogBufferHandler(buffer_capacity)
    handlers.append(buffer)

    root = logging.getLogger()
    root.setLevel(numeric_level)

    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(numeric_level)
        root.addHandler(handler)

    # httpx logs every request at INFO; the client already logs what matters.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return buffer
