"""
Remote table bootstrap for subsync.

Creates the subscriptions table if it does not exist and can optionally seed
deterministic demo rows, so a fresh database is immediately usable by
`subsync refresh`.
"""

from __future__ import annotations

import random
import sys
import uuid
from datetime import UTC, datetime, timedelta
from typing import List

import psycopg
import typer
from psycopg import sql

from subsync.collaborators import DEFAULT_SERVICES
from subsync.config import get_settings
from subsync.domain.models import BillingPeriod, Record
from subsync.infrastructure.db_factory import build_dsn
from subsync.stores.remote import REMOTE_COLUMNS, record_to_row, schema_statement

app = typer.Typer(help="Create the remote subscriptions table and optionally seed demo data.")


def _build_dsn(dsn_override: str | None) -> str:
    if dsn_override:
        return dsn_override
    return build_dsn()


def _demo_records(count: int, seed: int) -> List[Record]:
    rng = random.Random(seed)
    now = datetime.now(UTC).replace(microsecond=0)
    services = list(DEFAULT_SERVICES)
    rng.shuffle(services)

    records: List[Record] = []
    for service in services[:count]:
        period = rng.choice([BillingPeriod.MONTHLY, BillingPeriod.MONTHLY, BillingPeriod.YEARLY])
        amount = service.typical_cost * 12 if period is BillingPeriod.YEARLY else service.typical_cost
        records.append(
            Record(
                id=str(uuid.UUID(int=rng.getrandbits(128), version=4)),
                service_name=service.name,
                amount=round(amount, 2),
                billing_period=period,
                next_occurrence=now + timedelta(days=rng.randint(1, 30)),
                category=service.category,
                created_at=now,
                updated_at=now,
            )
        )
    return records


def _create_table(dsn: str, table: str) -> None:
    with psycopg.connect(dsn) as conn:
        conn.execute(schema_statement(table))
        conn.commit()


def _seed(dsn: str, table: str, records: List[Record]) -> int:
    query = sql.SQL("INSERT INTO {table} ({cols}) VALUES ({values}) ON CONFLICT (id) DO NOTHING").format(
        table=sql.Identifier(table),
        cols=sql.SQL(", ").join(map(sql.Identifier, REMOTE_COLUMNS)),
        values=sql.SQL(", ").join(map(sql.Placeholder, REMOTE_COLUMNS)),
    )
    with psycopg.connect(dsn) as conn:
        with conn.cursor() as cur:
            cur.executemany(query, [record_to_row(r) for r in records])
        conn.commit()
    return len(records)


@app.command()
def main(
    seed_rows: int = typer.Option(
        0,
        "--seed-rows",
        "-r",
        help="Number of demo subscriptions to insert (0 = schema only).",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    table: str | None = typer.Option(
        None,
        "--table",
        help="Table name override (default from settings).",
    ),
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
) -> None:
    """
    Create the remote table and optionally seed it.
    """
    table_name = table or get_settings().remote_table
    conn_dsn = _build_dsn(dsn)

    typer.echo(f"Ensuring table '{table_name}' exists...")
    _create_table(conn_dsn, table_name)

    if seed_rows <= 0:
        typer.echo("Schema ready (no seed rows requested).")
        return

    records = _demo_records(min(seed_rows, len(DEFAULT_SERVICES)), seed)
    inserted = _seed(conn_dsn, table_name, records)
    typer.echo(f"Seeded {inserted} demo subscriptions into '{table_name}'.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
