"""
Store interfaces and error taxonomy for subsync.

Concrete local stores implement `RecordStore` (synchronous, whole-snapshot
replace). Concrete remote clients implement `RemoteStore` (async, fallible).
Every failure a store can report is a subclass of `SubsyncError`, so the
coordinator can catch store errors without catching programming errors.
"""

from __future__ import annotations

import abc
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from subsync.domain.models import Record


class SubsyncError(Exception):
    """Base class for all subsync errors."""


class LocalPersistFailure(SubsyncError):
    """The local snapshot could not be written. In-memory state is still valid."""


class RemoteError(SubsyncError):
    """Any remote store failure not covered by a more specific subclass."""


class NetworkUnavailable(RemoteError):
    pass


class ServiceUnavailable(RemoteError):
    pass


class NotAuthenticated(RemoteError):
    pass


class QuotaExceeded(RemoteError):
    pass


class NotFound(RemoteError):
    pass


class MalformedRemoteRecord(SubsyncError):
    """A single remote row could not be decoded; the row is dropped."""


class RecordLimitReached(SubsyncError):
    """The purchase gate refused another active record."""


@runtime_checkable
class RecordStore(Protocol):
    """
    Durable local persistence of the full record set.

    `load` returns None when nothing has been saved yet. `save` overwrites
    the previous snapshot as a whole and raises `LocalPersistFailure`.
    """

    def load(self) -> Optional[List[Record]]:
        ...

    def save(self, records: Sequence[Record]) -> None:
        ...


@runtime_checkable
class RemoteStore(Protocol):
    """
    CRUD + query against the remote database.

    All operations except `check_availability` may raise `RemoteError`
    subclasses. `delete` of an absent id is not an error.
    """

    async def check_availability(self) -> bool:
        ...

    async def fetch_all(self) -> List[Record]:
        ...

    async def upsert(self, record: Record) -> None:
        ...

    async def delete(self, record_id: str) -> None:
        ...


class AbstractRemoteStore(abc.ABC):
    """
    Optional ABC helper for class-based remote clients.

    Subclasses implement the four operations; `close` is a no-op by default.
    """

    @abc.abstractmethod
    async def check_availability(self) -> bool:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    async def fetch_all(self) -> List[Record]:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    async def upsert(self, record: Record) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    async def delete(self, record_id: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    async def close(self) -> None:
        return None


__all__ = [
    "AbstractRemoteStore",
    "LocalPersistFailure",
    "MalformedRemoteRecord",
    "NetworkUnavailable",
    "NotAuthenticated",
    "NotFound",
    "QuotaExceeded",
    "RecordLimitReached",
    "RecordStore",
    "RemoteError",
    "RemoteStore",
    "ServiceUnavailable",
    "SubsyncError",
]
