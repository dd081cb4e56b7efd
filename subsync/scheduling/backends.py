"""
Reminder side-effect backends.

A backend holds the pending reminder entries, keyed by identifier.
Scheduling an identifier that already exists replaces it. The scheduler
adapter is the only writer; backends never decide what to schedule.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Protocol, runtime_checkable

from pydantic import ValidationError

from subsync.domain.models import Repeat, ScheduleEntry
from subsync.utils.files import atomic_write_json
from subsync.utils.logging import get_logger

log = get_logger(__name__)

_REPEAT_STEP = {Repeat.DAILY: timedelta(days=1), Repeat.WEEKLY: timedelta(weeks=1)}


@runtime_checkable
class ReminderBackend(Protocol):
    def schedule(self, entry: ScheduleEntry) -> None:
        ...

    def cancel(self, identifiers: Iterable[str]) -> None:
        ...

    def pending(self) -> List[ScheduleEntry]:
        ...


class InMemoryReminderBackend:
    """Keeps pending entries in a dict; the default for tests and embedding."""

    def __init__(self) -> None:
        self._entries: Dict[str, ScheduleEntry] = {}

    def schedule(self, entry: ScheduleEntry) -> None:
        self._entries[entry.identifier] = entry

    def cancel(self, identifiers: Iterable[str]) -> None:
        for identifier in identifiers:
            self._entries.pop(identifier, None)

    def pending(self) -> List[ScheduleEntry]:
        return sorted(self._entries.values(), key=lambda e: (e.fire_at, e.identifier))

    def pop_due(self, now: datetime) -> List[ScheduleEntry]:
        """
        Return entries whose fire time has passed.

        One-shot entries are removed; repeating entries are moved forward to
        their next fire time after `now`.
        """
        due = [e for e in self.pending() if e.fire_at <= now]
        for entry in due:
            if entry.repeat is None:
                self._entries.pop(entry.identifier, None)
                continue
            step = _REPEAT_STEP[entry.repeat]
            next_fire = entry.fire_at
            while next_fire <= now:
                next_fire += step
            self._entries[entry.identifier] = entry.model_copy(update={"fire_at": next_fire})
        return due


class JsonFileReminderBackend(InMemoryReminderBackend):
    """
    Pending entries persisted to a JSON file after every change.

    Used by the CLI so reminders survive between invocations.
    """

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
            for item in raw:
                entry = ScheduleEntry.model_validate(item)
                self._entries[entry.identifier] = entry
        except (OSError, ValueError, TypeError, ValidationError) as exc:
            log.error(
                "[REMINDERS] Unreadable reminder file, starting empty",
                extra={"path": str(self.path), "error": str(exc)},
            )
            self._entries.clear()

    def _flush(self) -> None:
        payload = [e.model_dump(mode="json") for e in self.pending()]
        try:
            atomic_write_json(self.path, payload)
        except OSError as exc:
            log.error(
                "[REMINDERS] Could not write reminder file",
                extra={"path": str(self.path), "error": str(exc)},
            )
            raise

    def schedule(self, entry: ScheduleEntry) -> None:
        super().schedule(entry)
        self._flush()

    def cancel(self, identifiers: Iterable[str]) -> None:
        super().cancel(identifiers)
        self._flush()

    def pop_due(self, now: datetime) -> List[ScheduleEntry]:
        due = super().pop_due(now)
        if due:
            self._flush()
        return due


__all__ = ["InMemoryReminderBackend", "JsonFileReminderBackend", "ReminderBackend"]
