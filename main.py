from __future__ import annotations

import logging
import socket
import sys

import uvicorn

from klinefeed.app_factory import create_app
from klinefeed.config import settings
from klinefeed.data.database import create_db_engine, initialize_database
from klinefeed.exceptions import ConfigError, PersistenceError
from klinefeed.logging_setup import configure_logging

logger = logging.getLogger(__name__)


def _can_bind(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def _select_available_port(host: str, preferred_port: int, max_tries: int = 20) -> int:
    """Pick the preferred port or the next available one."""
    if _can_bind(host, preferred_port):
        return preferred_port

    for offset in range(1, max_tries + 1):
        candidate = preferred_port + offset
        if _can_bind(host, candidate):
            logger.warning(
                "Port %s is already in use; falling back to port %s.",
                preferred_port,
                candidate,
            )
            return candidate

    raise RuntimeError(
        f"No available port found in range {preferred_port}-{preferred_port + max_tries}."
    )


def main() -> int:
    log_buffer = configure_logging(
        settings.log_level,
        log_file=settings.log_file or None,
        max_bytes=settings.log_max_size * 1024 * 1024,
        backup_count=settings.log_max_backups,
        buffer_capacity=settings.log_max_records,
    )

    try:
        settings.validate_runtime()
    except ConfigError as exc:
        logger.critical("Invalid configuration: %s", exc)
        return 1

    logger.info("Initializing database at %s", settings.sqlalchemy_url)
    db_engine = create_db_engine(settings.sqlalchemy_url)
    try:
        initialize_database(db_engine)
    except PersistenceError as exc:
        logger.critical("Database unavailable: %s", exc)
        return 1

    app = create_app(settings, db_engine=db_engine, log_buffer=log_buffer)

    host = settings.api_host
    port = _select_available_port(host=host, preferred_port=settings.api_port)
    logger.info(
        "Starting %s on %s:%s — symbols=%s intervals=%s",
        settings.app_name, host, port, settings.symbols, settings.intervals,
    )
    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
