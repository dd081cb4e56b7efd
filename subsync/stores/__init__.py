"""
Stores package for subsync.

Re-exports the store interfaces, the error taxonomy and the concrete local
and remote stores so downstream code can import from `subsync.stores`.
"""

from subsync.stores.abstract import (
    LocalPersistFailure,
    MalformedRemoteRecord,
    NetworkUnavailable,
    NotAuthenticated,
    NotFound,
    QuotaExceeded,
    RecordLimitReached,
    RecordStore,
    RemoteError,
    RemoteStore,
    ServiceUnavailable,
    SubsyncError,
)
from subsync.stores.local import InMemoryRecordStore, InMemoryUsageLedger, JsonRecordStore, JsonUsageLedger
from subsync.stores.remote import PostgresRemoteStore

__all__ = [
    # Interfaces
    "RecordStore",
    "RemoteStore",
    # Errors
    "LocalPersistFailure",
    "MalformedRemoteRecord",
    "NetworkUnavailable",
    "NotAuthenticated",
    "NotFound",
    "QuotaExceeded",
    "RecordLimitReached",
    "RemoteError",
    "ServiceUnavailable",
    "SubsyncError",
    # Concrete stores
    "InMemoryRecordStore",
    "InMemoryUsageLedger",
    "JsonRecordStore",
    "JsonUsageLedger",
    "PostgresRemoteStore",
]
