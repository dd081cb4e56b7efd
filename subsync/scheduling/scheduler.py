"""
Scheduler adapter: keeps reminder entries equal to a pure function of the
record set.

`schedule_for` computes the target renewal reminders. `SchedulerAdapter`
diffs that target against the backend and cancels or (re)schedules so the
backend ends up holding exactly the target, whether it is called for the
whole set or for a single record.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Callable, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from subsync.config import Settings
from subsync.domain.budget import BudgetSettings, BudgetStatus, budget_status, should_alert
from subsync.domain.models import Record, Repeat, ScheduleEntry, utcnow
from subsync.scheduling.backends import ReminderBackend
from subsync.utils.logging import get_logger

log = get_logger(__name__)

BUDGET_ALERT_ID = "budget-alert"
USAGE_CHECK_PREFIX = "usage-check-"
CANCEL_SUGGESTION_PREFIX = "cancel-suggestion-"


@dataclass(frozen=True)
class ReminderPolicy:
    """When renewal and usage-check reminders fire."""

    offsets_days: Tuple[int, ...] = (3, 1, 0)
    hour: int = 17
    minute: int = 30
    timezone: str = "UTC"
    usage_check_hour: int = 20

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReminderPolicy":
        return cls(
            offsets_days=tuple(settings.reminder_offsets_days),
            hour=settings.reminder_hour,
            minute=settings.reminder_minute,
            timezone=settings.reminder_timezone,
            usage_check_hour=settings.usage_check_hour,
        )

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def renewal_identifier(record_id: str, offset_days: int) -> str:
    return f"{record_id}-{offset_days}"


def usage_check_identifier(record_id: str) -> str:
    return f"{USAGE_CHECK_PREFIX}{record_id}"


def cancel_suggestion_identifier(service_name: str) -> str:
    return f"{CANCEL_SUGGESTION_PREFIX}{service_name}"


def reminder_payload(record: Record) -> dict:
    return {
        "record_id": record.id,
        "display_name": record.display_name,
        "service_name": record.service_name,
        "cost_display": record.cost_display,
    }


def fire_time(record: Record, offset_days: int, policy: ReminderPolicy) -> datetime:
    """The reminder time `offset_days` calendar days before the renewal."""
    tz = policy.tz
    day = record.next_occurrence.astimezone(tz).date() - timedelta(days=offset_days)
    return datetime.combine(day, time(policy.hour, policy.minute), tzinfo=tz)


def entries_for_record(record: Record, now: datetime, policy: ReminderPolicy) -> List[ScheduleEntry]:
    """Renewal reminders for one record; fire times not strictly after `now` are skipped."""
    if not record.active or record.essential:
        return []
    entries: List[ScheduleEntry] = []
    for offset in policy.offsets_days:
        fire_at = fire_time(record, offset, policy)
        if fire_at <= now:
            continue
        entries.append(
            ScheduleEntry(
                identifier=renewal_identifier(record.id, offset),
                fire_at=fire_at,
                record_id=record.id,
                offset_days=offset,
                payload=reminder_payload(record),
            )
        )
    return entries


def schedule_for(
    records: Iterable[Record],
    now: Optional[datetime] = None,
    policy: Optional[ReminderPolicy] = None,
) -> List[ScheduleEntry]:
    """Target renewal reminders for a record set."""
    now = now or utcnow()
    policy = policy or ReminderPolicy()
    entries: List[ScheduleEntry] = []
    for record in records:
        entries.extend(entries_for_record(record, now, policy))
    return entries


def _next_weekday_at(now: datetime, weekday: int, hour: int, tz: ZoneInfo) -> datetime:
    local_now = now.astimezone(tz)
    days_ahead = (weekday - local_now.weekday()) % 7
    candidate = datetime.combine(local_now.date() + timedelta(days=days_ahead), time(hour, 0), tzinfo=tz)
    if candidate <= local_now:
        candidate += timedelta(weeks=1)
    return candidate


class SchedulerAdapter:
    """
    Drives a reminder backend from the record set.

    Parameters
    ----------
    backend : ReminderBackend
        Where entries are scheduled and cancelled.
    policy : ReminderPolicy
        Offsets and times of day.
    clock : callable
        Returns the current aware datetime.
    """

    def __init__(
        self,
        backend: ReminderBackend,
        policy: Optional[ReminderPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.backend = backend
        self.policy = policy or ReminderPolicy()
        self._clock = clock

    def reconcile(self, records: Sequence[Record]) -> List[ScheduleEntry]:
        """Make the backend's renewal entries exactly `schedule_for(records)`."""
        target = schedule_for(records, self._clock(), self.policy)
        target_ids = {e.identifier for e in target}
        stale = [e.identifier for e in self.backend.pending() if e.key is not None and e.identifier not in target_ids]
        if stale:
            self.backend.cancel(stale)
        for entry in target:
            self.backend.schedule(entry)
        log.info("[SCHEDULE] Reconciled reminders", extra={"scheduled": len(target), "cancelled": len(stale)})
        return target

    def _renewal_ids_for(self, record_id: str) -> List[str]:
        ids = {renewal_identifier(record_id, offset) for offset in self.policy.offsets_days}
        ids.update(e.identifier for e in self.backend.pending() if e.key is not None and e.record_id == record_id)
        return sorted(ids)

    def reconcile_record(self, record: Record) -> List[ScheduleEntry]:
        """Cancel then recreate the renewal reminders of a single record."""
        self.backend.cancel(self._renewal_ids_for(record.id))
        entries = entries_for_record(record, self._clock(), self.policy)
        for entry in entries:
            self.backend.schedule(entry)
        if not record.active or record.essential:
            self.backend.cancel([usage_check_identifier(record.id)])
        log.debug(
            "[SCHEDULE] Rescheduled record",
            extra={"record_id": record.id, "scheduled": len(entries)},
        )
        return entries

    def cancel_record(self, record_id: str) -> None:
        """Drop every reminder derived from `record_id`."""
        derived = [e.identifier for e in self.backend.pending() if e.record_id == record_id]
        self.backend.cancel(self._renewal_ids_for(record_id) + [usage_check_identifier(record_id)] + derived)
        log.debug("[SCHEDULE] Cancelled record reminders", extra={"record_id": record_id})

    def cancel_all(self) -> None:
        self.backend.cancel([e.identifier for e in self.backend.pending()])

    def reconcile_usage_checks(self, records: Sequence[Record]) -> List[ScheduleEntry]:
        """
        One weekly usage-check reminder per active, non-essential record,
        spread over the week starting on Sunday.
        """
        stale = [e.identifier for e in self.backend.pending() if e.identifier.startswith(USAGE_CHECK_PREFIX)]
        if stale:
            self.backend.cancel(stale)

        now = self._clock()
        eligible = [r for r in records if r.active and not r.essential]
        entries: List[ScheduleEntry] = []
        for index, record in enumerate(eligible):
            # Sunday first, matching calendar weekday numbering.
            weekday = (index % 7 + 6) % 7
            entry = ScheduleEntry(
                identifier=usage_check_identifier(record.id),
                fire_at=_next_weekday_at(now, weekday, self.policy.usage_check_hour, self.policy.tz),
                record_id=record.id,
                repeat=Repeat.WEEKLY,
                payload=reminder_payload(record),
            )
            self.backend.schedule(entry)
            entries.append(entry)
        log.info("[SCHEDULE] Usage checks scheduled", extra={"count": len(entries)})
        return entries

    def suggest_cancellation(self, record: Record, reference: Optional[str]) -> ScheduleEntry:
        """Schedule an immediate nudge to cancel a record the user keeps not using."""
        payload = {"display_name": record.display_name, "service_name": record.service_name}
        if reference is not None:
            payload["cancellation_url"] = reference
        entry = ScheduleEntry(
            identifier=cancel_suggestion_identifier(record.service_name),
            fire_at=self._clock() + timedelta(seconds=2),
            record_id=record.id,
            payload=payload,
        )
        self.backend.schedule(entry)
        log.info(
            "[SCHEDULE] Cancellation suggested",
            extra={"record_id": record.id, "service_name": record.service_name},
        )
        return entry

    def evaluate_budget(self, records: Sequence[Record], settings: BudgetSettings) -> Optional[BudgetStatus]:
        """
        One-shot budget check. Schedules an immediate alert when spending is
        at or above the notify percentage and withdraws a pending alert
        otherwise.
        """
        status = budget_status(records, settings)
        if status is not None and should_alert(records, settings):
            self.backend.schedule(
                ScheduleEntry(
                    identifier=BUDGET_ALERT_ID,
                    fire_at=self._clock() + timedelta(seconds=1),
                    payload={
                        "current": f"{status.current:.2f}",
                        "limit": f"{status.limit:.2f}",
                        "percentage": f"{int(status.percentage)}",
                    },
                )
            )
            log.warning(
                "[BUDGET] Spending crossed the alert threshold",
                extra={"current": round(status.current, 2), "limit": status.limit},
            )
        else:
            self.backend.cancel([BUDGET_ALERT_ID])
        return status

    def pending(self) -> List[ScheduleEntry]:
        return self.backend.pending()


__all__ = [
    "BUDGET_ALERT_ID",
    "CANCEL_SUGGESTION_PREFIX",
    "ReminderPolicy",
    "SchedulerAdapter",
    "cancel_suggestion_identifier",
    "entries_for_record",
    "fire_time",
    "renewal_identifier",
    "schedule_for",
    "usage_check_identifier",
]
