"""Test doubles and record builders shared by the unit tests."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from subsync.domain.models import Record
from subsync.stores.abstract import NetworkUnavailable, NotFound, RemoteError

BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class Clock:
    """Returns a strictly increasing time, one second per call."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeRemoteStore:
    """
    In-process stand-in for the remote table.

    `available=False` makes every call behave like an unreachable server;
    `fail_writes` makes upserts and deletes raise the given error; `hold`
    blocks writes until the event is set.
    """

    def __init__(self, records: Iterable[Record] = ()) -> None:
        self.rows: Dict[str, Record] = {r.id: r for r in records}
        self.available = True
        self.fail_fetch: Optional[RemoteError] = None
        self.fail_writes: Optional[RemoteError] = None
        self.hold: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []
        self.closed = False

    async def check_availability(self) -> bool:
        await asyncio.sleep(0)
        return self.available

    async def fetch_all(self) -> List[Record]:
        self.calls.append(("fetch_all",))
        if not self.available:
            raise NetworkUnavailable("offline")
        if self.fail_fetch is not None:
            raise self.fail_fetch
        return sorted(self.rows.values(), key=lambda r: r.next_occurrence)

    async def _write_guard(self) -> None:
        if self.hold is not None:
            await self.hold.wait()
        if not self.available:
            raise NetworkUnavailable("offline")
        if self.fail_writes is not None:
            raise self.fail_writes

    async def upsert(self, record: Record) -> None:
        self.calls.append(("upsert", record.id, record.updated_at))
        await self._write_guard()
        self.rows[record.id] = record

    async def delete(self, record_id: str) -> None:
        self.calls.append(("delete", record_id))
        await self._write_guard()
        if record_id not in self.rows:
            raise NotFound(record_id)
        del self.rows[record_id]

    async def close(self) -> None:
        self.closed = True

    def writes(self) -> List[tuple]:
        return [c for c in self.calls if c[0] != "fetch_all"]


def make_record(**overrides: Any) -> Record:
    fields: Dict[str, Any] = {
        "service_name": "Netflix",
        "amount": 12.99,
        "next_occurrence": BASE_TIME + timedelta(days=10),
        "created_at": BASE_TIME - timedelta(days=30),
        "updated_at": BASE_TIME - timedelta(days=1),
    }
    fields.update(overrides)
    return Record(**fields)


