"""
Remote store client backed by PostgreSQL (psycopg 3, async pool).

Rows use the remote record shape: `is_active`/`is_essential` are 0/1
integers, dates are `timestamptz`, and `billing_cycle`/`category` are
string enums validated on read. A row that fails validation is dropped on
its own; the rest of the fetch proceeds.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import PoolTimeout
from pydantic import ValidationError

from subsync.config import Settings
from subsync.domain.models import BillingPeriod, Category, Record, utcnow
from subsync.infrastructure.db_factory import PoolManager
from subsync.stores.abstract import (
    AbstractRemoteStore,
    MalformedRemoteRecord,
    NetworkUnavailable,
    NotAuthenticated,
    QuotaExceeded,
    RemoteError,
    ServiceUnavailable,
)
from subsync.utils.logging import get_logger

log = get_logger(__name__)

REMOTE_COLUMNS = (
    "id",
    "service_name",
    "custom_name",
    "cost",
    "currency",
    "billing_cycle",
    "next_billing_date",
    "notes",
    "is_active",
    "category",
    "is_essential",
    "created_at",
    "updated_at",
)

# Columns left untouched when an existing row is overwritten.
_IMMUTABLE_COLUMNS = frozenset({"id", "created_at"})

_SCHEMA_TEMPLATE = """
CREATE TABLE IF NOT EXISTS {table} (
    id                TEXT PRIMARY KEY,
    service_name      TEXT NOT NULL,
    custom_name       TEXT,
    cost              DOUBLE PRECISION NOT NULL,
    currency          TEXT NOT NULL DEFAULT 'EUR',
    billing_cycle     TEXT NOT NULL,
    next_billing_date TIMESTAMPTZ NOT NULL,
    notes             TEXT,
    is_active         INTEGER NOT NULL DEFAULT 1,
    category          TEXT NOT NULL,
    is_essential      INTEGER NOT NULL DEFAULT 0,
    created_at        TIMESTAMPTZ NOT NULL,
    updated_at        TIMESTAMPTZ NOT NULL
)
"""

_BILLING_VALUES = frozenset(p.value for p in BillingPeriod)
_CATEGORY_VALUES = frozenset(c.value for c in Category)


def schema_statement(table: str) -> sql.Composed:
    return sql.SQL(_SCHEMA_TEMPLATE).format(table=sql.Identifier(table))


def record_to_row(record: Record) -> Dict[str, Any]:
    """Encode a record into the remote row shape."""
    return {
        "id": record.id,
        "service_name": record.service_name,
        "custom_name": record.custom_name,
        "cost": record.amount,
        "currency": record.currency,
        "billing_cycle": record.billing_period.value,
        "next_billing_date": record.next_occurrence,
        "notes": record.notes,
        "is_active": 1 if record.active else 0,
        "category": record.category.value,
        "is_essential": 1 if record.essential else 0,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def row_to_record(row: Mapping[str, Any]) -> Record:
    """
    Decode a remote row.

    Raises
    ------
    MalformedRemoteRecord
        When a required field is missing or an enum value is not recognized.
        Unknown enum values are never defaulted.
    """
    record_id = row.get("id")
    billing = row.get("billing_cycle")
    category = row.get("category")
    next_date = row.get("next_billing_date")

    if not record_id or not row.get("service_name"):
        raise MalformedRemoteRecord(f"row without id/service_name: {record_id!r}")
    if billing not in _BILLING_VALUES:
        raise MalformedRemoteRecord(f"{record_id}: unknown billing_cycle {billing!r}")
    if category not in _CATEGORY_VALUES:
        raise MalformedRemoteRecord(f"{record_id}: unknown category {category!r}")
    if not isinstance(next_date, datetime):
        raise MalformedRemoteRecord(f"{record_id}: next_billing_date is not a timestamp")
    if row.get("cost") is None:
        raise MalformedRemoteRecord(f"{record_id}: missing cost")

    now = utcnow()
    is_active = row.get("is_active")
    try:
        return Record(
            id=str(record_id),
            service_name=row["service_name"],
            custom_name=row.get("custom_name"),
            amount=float(row["cost"]),
            currency=row.get("currency") or "EUR",
            billing_period=BillingPeriod(billing),
            next_occurrence=next_date,
            notes=row.get("notes"),
            active=True if is_active is None else int(is_active) == 1,
            category=Category(category),
            essential=int(row.get("is_essential") or 0) == 1,
            created_at=row.get("created_at") or now,
            updated_at=row.get("updated_at") or now,
        )
    except (ValidationError, TypeError, ValueError) as exc:
        raise MalformedRemoteRecord(f"{record_id}: {exc}") from exc


def translate_error(exc: BaseException) -> RemoteError:
    """Map a psycopg/pool exception onto the remote error taxonomy by SQLSTATE class."""
    if isinstance(exc, RemoteError):
        return exc
    if isinstance(exc, (PoolTimeout, OSError)):
        return NetworkUnavailable(str(exc))

    sqlstate: Optional[str] = getattr(exc, "sqlstate", None)
    if sqlstate:
        if sqlstate.startswith("08"):
            return NetworkUnavailable(str(exc))
        if sqlstate.startswith("28"):
            return NotAuthenticated(str(exc))
        if sqlstate.startswith("53"):
            return QuotaExceeded(str(exc))
        if sqlstate.startswith("57"):
            return ServiceUnavailable(str(exc))
    elif isinstance(exc, (psycopg.OperationalError, psycopg.InterfaceError)):
        return NetworkUnavailable(str(exc))
    return RemoteError(str(exc))


class PostgresRemoteStore(AbstractRemoteStore):
    """
    `RemoteStore` over one PostgreSQL table.

    Parameters
    ----------
    pool_manager : PoolManager
        Owner of the async connection pool.
    table : str
        Remote table name.
    """

    def __init__(self, pool_manager: PoolManager, table: str = "subscriptions") -> None:
        self._pools = pool_manager
        self._table = sql.Identifier(table)
        self.table_name = table

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostgresRemoteStore":
        return cls(PoolManager.from_settings(settings), table=settings.remote_table)

    @asynccontextmanager
    async def _translated(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except (psycopg.Error, PoolTimeout, OSError) as exc:
            error = translate_error(exc)
            log.warning(
                f"[REMOTE] {operation} failed",
                extra={"operation": operation, "error_type": type(error).__name__, "error": str(exc)},
            )
            raise error from exc

    async def check_availability(self) -> bool:
        try:
            async with self._pools.connection(retry=False) as conn:
                await conn.execute("SELECT 1")
        except (psycopg.Error, PoolTimeout, OSError) as exc:
            log.warning(
                "[REMOTE] Remote store unavailable",
                extra={"error_type": type(translate_error(exc)).__name__, "error": str(exc)},
            )
            return False
        return True

    async def ensure_schema(self) -> None:
        async with self._translated("ensure_schema"):
            async with self._pools.connection() as conn:
                await conn.execute(schema_statement(self.table_name))

    async def fetch_all(self) -> List[Record]:
        query = sql.SQL("SELECT {cols} FROM {table} ORDER BY next_billing_date ASC").format(
            cols=sql.SQL(", ").join(map(sql.Identifier, REMOTE_COLUMNS)),
            table=self._table,
        )
        async with self._translated("fetch_all"):
            async with self._pools.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query)
                    rows = await cur.fetchall()

        records: List[Record] = []
        for row in rows:
            try:
                records.append(row_to_record(row))
            except MalformedRemoteRecord as exc:
                log.warning("[REMOTE] Dropping malformed record", extra={"error": str(exc)})
        log.info("[REMOTE] Fetched records", extra={"count": len(records), "dropped": len(rows) - len(records)})
        return records

    async def upsert(self, record: Record) -> None:
        row = record_to_row(record)
        updatable = [c for c in REMOTE_COLUMNS if c not in _IMMUTABLE_COLUMNS]
        query = sql.SQL(
            "INSERT INTO {table} ({cols}) VALUES ({values}) "
            "ON CONFLICT (id) DO UPDATE SET {updates}"
        ).format(
            table=self._table,
            cols=sql.SQL(", ").join(map(sql.Identifier, REMOTE_COLUMNS)),
            values=sql.SQL(", ").join(map(sql.Placeholder, REMOTE_COLUMNS)),
            updates=sql.SQL(", ").join(
                sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c)) for c in updatable
            ),
        )
        async with self._translated("upsert"):
            async with self._pools.connection() as conn:
                await conn.execute(query, row)
        log.debug("[REMOTE] Upserted record", extra={"record_id": record.id})

    async def delete(self, record_id: str) -> None:
        query = sql.SQL("DELETE FROM {table} WHERE id = %s").format(table=self._table)
        async with self._translated("delete"):
            async with self._pools.connection() as conn:
                cur = await conn.execute(query, (record_id,))
                deleted = cur.rowcount
        if not deleted:
            log.info("[REMOTE] Record already absent", extra={"record_id": record_id})

    async def close(self) -> None:
        await self._pools.close()


__all__ = [
    "PostgresRemoteStore",
    "REMOTE_COLUMNS",
    "record_to_row",
    "row_to_record",
    "schema_statement",
    "translate_error",
]
