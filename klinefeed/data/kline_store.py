"""Persistence gateway for kline records.

One table per (symbol, interval), named ``{symbol}_{interval}`` in lower case:

    CREATE TABLE btcusdt_1h (
        timestamp    DATETIME      NOT NULL PRIMARY KEY,  -- local wall clock
        open_price   NUMERIC(30,8) NOT NULL,
        close_price  NUMERIC(30,8) NOT NULL,
        high_price   NUMERIC(30,8) NOT NULL,
        low_price    NUMERIC(30,8) NOT NULL,
        volume       NUMERIC(30,8) NOT NULL,
        note         TEXT
    );

SQLite has no exact decimal storage (NUMERIC affinity rounds through REAL),
so on SQLite the price columns are TEXT and keep the upstream string as-is.

Every write takes an aware local datetime and every read returns one; the
naive wall-clock column value only exists inside this module, produced and
consumed by the TimeNormalizer.
"""
from __future__ import annotations

import logging
import re
import threading
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Protocol, Sequence

from sqlalchemy import Column, DateTime, MetaData, Numeric, String, Table, Text, inspect, select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from klinefeed.data.models import KlineRecord
from klinefeed.data.timezone import TimeNormalizer
from klinefeed.exceptions import PersistenceError

logger = logging.getLogger(__name__)

MAX_QUERY_LIMIT = 1000

# Rows per multi-row upsert statement; stays under SQLite's 999 bound parameters.
_UPSERT_BATCH_SIZE = 100

_NAME_PART = re.compile(r"^[a-z0-9]+$")

_DECIMAL = Numeric(30, 8, asdecimal=True).with_variant(String(40), "sqlite")

_UPDATE_COLUMNS = ("open_price", "close_price", "high_price", "low_price", "volume", "note")


def table_name(symbol: str, interval: str) -> str:
    sym, tf = symbol.lower(), interval.lower()
    if not _NAME_PART.match(sym) or not _NAME_PART.match(tf):
        raise PersistenceError(f"Invalid table name parts: symbol={symbol!r} interval={interval!r}")
    return f"{sym}_{tf}"


def _as_decimal_string(value: object) -> str:
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


class KlineGateway(Protocol):
    """What the update engine and HTTP layer need from storage."""

    def ensure_table(self, symbol: str, interval: str) -> None: ...

    def upsert(self, symbol: str, interval: str, record: KlineRecord) -> None: ...

    def upsert_many(self, symbol: str, interval: str, records: Sequence[KlineRecord]) -> int: ...

    def query(
        self,
        symbol:   str,
        interval: str,
        start:    datetime | None = None,
        end:      datetime | None = None,
        limit:    int = MAX_QUERY_LIMIT,
    ) -> list[KlineRecord]: ...


class SqlKlineStore:
    """SQLAlchemy Core implementation of KlineGateway."""

    def __init__(self, engine: Engine, normalizer: TimeNormalizer) -> None:
        self.engine     = engine
        self.normalizer = normalizer
        self._metadata  = MetaData()
        self._tables: dict[str, Table] = {}
        self._created: set[str] = set()
        self._lock = threading.Lock()

    def _table(self, symbol: str, interval: str) -> Table:
        name = table_name(symbol, interval)
        with self._lock:
            table = self._tables.get(name)
            if table is None:
                table = Table(
                    name,
                    self._metadata,
                    Column("timestamp",   DateTime, primary_key=True, nullable=False),
                    Column("open_price",  _DECIMAL, nullable=False),
                    Column("close_price", _DECIMAL, nullable=False),
                    Column("high_price",  _DECIMAL, nullable=False),
                    Column("low_price",   _DECIMAL, nullable=False),
                    Column("volume",      _DECIMAL, nullable=False),
                    Column("note",        Text,     nullable=True),
                )
                self._tables[name] = table
            return table

    # ── Schema ────────────────────────────────────────────────────────────────

    def ensure_table(self, symbol: str, interval: str) -> None:
        table = self._table(symbol, interval)
        if table.name in self._created:
            return
        try:
            table.create(self.engine, checkfirst=True)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not create table {table.name}: {exc}") from exc
        self._created.add(table.name)
        logger.info("Table %s ready", table.name)

    def ensure_tables(self, symbols: Iterable[str], intervals: Iterable[str]) -> None:
        intervals = list(intervals)
        for symbol in symbols:
            for interval in intervals:
                self.ensure_table(symbol, interval)

    def _existing_table(self, symbol: str, interval: str) -> Table:
        """Table object for a pair whose table is known to exist.

        Unknown names are checked against the database first, so arbitrary
        symbols from callers never grow the table cache.
        """
        name = table_name(symbol, interval)
        if name not in self._created:
            try:
                exists = inspect(self.engine).has_table(name)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Could not inspect table {name}: {exc}") from exc
            if not exists:
                raise PersistenceError(f"No kline table {name}")
            self._created.add(name)
        return self._table(symbol, interval)

    # ── Writes ────────────────────────────────────────────────────────────────

    def _row(self, record: KlineRecord) -> dict[str, object]:
        return {
            "timestamp":   self.normalizer.to_storage(record.timestamp),
            "open_price":  record.open,
            "close_price": record.close,
            "high_price":  record.high,
            "low_price":   record.low,
            "volume":      record.volume,
            "note":        record.note,
        }

    def _upsert_statement(self, table: Table, rows: list[dict[str, object]]):
        dialect = self.engine.dialect.name
        if dialect in ("sqlite", "postgresql"):
            insert = sqlite_insert if dialect == "sqlite" else pg_insert
            stmt = insert(table).values(rows)
            return stmt.on_conflict_do_update(
                index_elements=[table.c.timestamp],
                set_={col: stmt.excluded[col] for col in _UPDATE_COLUMNS},
            )
        if dialect in ("mysql", "mariadb"):
            stmt = mysql_insert(table).values(rows)
            return stmt.on_duplicate_key_update(
                {col: stmt.inserted[col] for col in _UPDATE_COLUMNS}
            )
        raise PersistenceError(f"Upsert not supported for dialect {dialect!r}")

    def upsert(self, symbol: str, interval: str, record: KlineRecord) -> None:
        """Insert *record*, or overwrite every non-key column on key conflict."""
        table = self._existing_table(symbol, interval)
        row = self._row(record)
        try:
            with self.engine.begin() as conn:
                conn.execute(self._upsert_statement(table, [row]))
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Upsert into {table.name} @ {row['timestamp']} failed: {exc}"
            ) from exc

    def upsert_many(self, symbol: str, interval: str, records: Sequence[KlineRecord]) -> int:
        """Upsert a whole page in one transaction; returns the number of distinct rows.

        Either every row is written or none is.  Duplicate timestamps within
        *records* collapse to the last one.
        """
        if not records:
            return 0
        table = self._existing_table(symbol, interval)
        by_key: dict[datetime, dict[str, object]] = {}
        for record in records:
            row = self._row(record)
            by_key[row["timestamp"]] = row
        rows = list(by_key.values())

        try:
            with self.engine.begin() as conn:
                for i in range(0, len(rows), _UPSERT_BATCH_SIZE):
                    conn.execute(self._upsert_statement(table, rows[i : i + _UPSERT_BATCH_SIZE]))
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Batch upsert of {len(rows)} rows into {table.name} failed: {exc}"
            ) from exc
        return len(rows)

    # ── Reads ─────────────────────────────────────────────────────────────────

    def query(
        self,
        symbol:   str,
        interval: str,
        start:    datetime | None = None,
        end:      datetime | None = None,
        limit:    int = MAX_QUERY_LIMIT,
    ) -> list[KlineRecord]:
        """Return up to *limit* records, newest first; bounds are inclusive."""
        table = self._existing_table(symbol, interval)
        stmt = select(table)
        if start is not None:
            stmt = stmt.where(table.c.timestamp >= self.normalizer.to_storage(start))
        if end is not None:
            stmt = stmt.where(table.c.timestamp <= self.normalizer.to_storage(end))
        stmt = stmt.order_by(table.c.timestamp.desc()).limit(limit)

        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Query on {table.name} failed: {exc}") from exc

        return [
            KlineRecord(
                timestamp = self.normalizer.from_storage(row["timestamp"]),
                open      = _as_decimal_string(row["open_price"]),
                high      = _as_decimal_string(row["high_price"]),
                low       = _as_decimal_string(row["low_price"]),
                close     = _as_decimal_string(row["close_price"]),
                volume    = _as_decimal_string(row["volume"]),
                note      = row["note"],
            )
            for row in rows
        ]
