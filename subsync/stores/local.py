"""
Local stores: the record snapshot and the usage-answer ledger.

The snapshot is a JSON object holding the serialized record list under a
fixed namespace key. Every save replaces the file as a whole via a temp
file in the same directory and `os.replace`, so readers never observe a
partially written snapshot.

The usage ledger remembers how the user answered weekly usage checks. It
is device-local state and is never synced to the remote store.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Sequence, Set

from pydantic import ValidationError

from subsync.domain.models import Record
from subsync.stores.abstract import LocalPersistFailure
from subsync.utils.files import atomic_write_json
from subsync.utils.logging import get_logger

log = get_logger(__name__)


class JsonRecordStore:
    """
    `RecordStore` backed by one JSON file.

    Parameters
    ----------
    path : Path | str
        Snapshot file location. Parent directories are created on save.
    namespace_key : str
        Top-level key the record list is stored under.
    """

    def __init__(self, path: Path | str, namespace_key: str = "subscriptions") -> None:
        self.path = Path(path)
        self.namespace_key = namespace_key

    def load(self) -> Optional[List[Record]]:
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as f:
                payload = json.load(f)
            raw_records = payload[self.namespace_key]
            records = [Record.model_validate(item) for item in raw_records]
        except (OSError, ValueError, KeyError, TypeError, ValidationError) as exc:
            log.error(
                "[SNAPSHOT] Unreadable snapshot, ignoring it",
                extra={"path": str(self.path), "error": str(exc)},
            )
            return None

        log.info("[SNAPSHOT] Loaded records", extra={"count": len(records), "path": str(self.path)})
        return records

    def save(self, records: Sequence[Record]) -> None:
        payload = {self.namespace_key: [r.model_dump(mode="json") for r in records]}
        try:
            atomic_write_json(self.path, payload)
        except OSError as exc:
            raise LocalPersistFailure(f"Could not write snapshot to {self.path}: {exc}") from exc

        log.debug("[SNAPSHOT] Saved records", extra={"count": len(records), "path": str(self.path)})


class InMemoryRecordStore:
    """`RecordStore` that keeps the last saved snapshot in memory."""

    def __init__(self, records: Optional[Sequence[Record]] = None) -> None:
        self._snapshot: Optional[List[Record]] = list(records) if records is not None else None
        self.save_count = 0

    def load(self) -> Optional[List[Record]]:
        return list(self._snapshot) if self._snapshot is not None else None

    def save(self, records: Sequence[Record]) -> None:
        self._snapshot = list(records)
        self.save_count += 1


class InMemoryUsageLedger:
    """
    Usage-check answers kept in memory.

    A "no" marks the record as currently unused and bumps its lifetime
    not-used count; a "yes" clears the mark but keeps the count.
    """

    def __init__(self) -> None:
        self._not_used_counts: Dict[str, int] = {}
        self._not_used: Set[str] = set()

    def not_used_count(self, record_id: str) -> int:
        return self._not_used_counts.get(record_id, 0)

    @property
    def not_used_ids(self) -> FrozenSet[str]:
        return frozenset(self._not_used)

    def record_answer(self, record_id: str, used: bool) -> int:
        """Store one answer and return the record's not-used count."""
        if used:
            self._not_used.discard(record_id)
        else:
            self._not_used.add(record_id)
            self._not_used_counts[record_id] = self.not_used_count(record_id) + 1
        self._flush()
        return self.not_used_count(record_id)

    def forget(self, record_id: str) -> None:
        self._not_used.discard(record_id)
        self._not_used_counts.pop(record_id, None)
        self._flush()

    def clear(self) -> None:
        self._not_used.clear()
        self._not_used_counts.clear()
        self._flush()

    def _flush(self) -> None:
        pass


class JsonUsageLedger(InMemoryUsageLedger):
    """Usage ledger persisted to a JSON file after every change."""

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with self.path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
            counts = {str(k): int(v) for k, v in raw["not_used_counts"].items()}
            not_used = {str(i) for i in raw["not_used"]}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            log.error(
                "[USAGE] Unreadable usage ledger, starting empty",
                extra={"path": str(self.path), "error": str(exc)},
            )
            return
        self._not_used_counts = counts
        self._not_used = not_used

    def _flush(self) -> None:
        payload = {
            "not_used": sorted(self._not_used),
            "not_used_counts": dict(sorted(self._not_used_counts.items())),
        }
        try:
            atomic_write_json(self.path, payload)
        except OSError as exc:
            raise LocalPersistFailure(f"Could not write usage ledger to {self.path}: {exc}") from exc


__all__ = ["InMemoryRecordStore", "InMemoryUsageLedger", "JsonRecordStore", "JsonUsageLedger"]
