"""Database engine construction and startup health check.

Startup sequence
────────────────
1. Ensure the SQLite directory exists (file-backed SQLite only).
2. Build the engine; SQLite connections get per-connection PRAGMAs.
3. Health-check SELECT 1 — failure here is fatal for the process.

Kline tables themselves are created lazily by SqlKlineStore.ensure_table()
(and eagerly for every configured pair at startup), since there is one table
per (symbol, interval) and the set is only known from configuration.
"""
from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from klinefeed.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def _apply_sqlite_pragmas(dbapi_conn, _connection_record) -> None:
    """Apply per-connection SQLite PRAGMAs.

    WAL mode lets the HTTP read path query while a background update is
    writing.  synchronous = NORMAL only fsyncs on checkpoints, acceptable for
    market data that can be re-fetched from upstream.
    """
    cursor = dbapi_conn.cursor()
    pragmas = [
        "PRAGMA journal_mode=WAL",
        "PRAGMA synchronous=NORMAL",
        "PRAGMA cache_size=-65536",   # 64 MB
        "PRAGMA temp_store=MEMORY",
    ]
    for pragma in pragmas:
        cursor.execute(pragma)
    cursor.close()


def create_db_engine(url: str) -> Engine:
    """Build an engine for *url*; SQLite gets thread-safe settings and PRAGMAs."""
    parsed = make_url(url)

    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True, pool_recycle=3600)

    database = parsed.database or ""
    if database in ("", ":memory:"):
        # One shared connection, otherwise every checkout sees an empty database.
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )

    event.listen(engine, "connect", _apply_sqlite_pragmas)
    return engine


def initialize_database(engine: Engine) -> None:
    """Verify connectivity; raises PersistenceError when the DB is unreachable."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Database connection failed: {exc}") from exc

    logger.info("Database ready (%s)", engine.url.render_as_string(hide_password=True))
