from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from subsync.domain.budget import BudgetSettings
from subsync.domain.models import Repeat
from subsync.scheduling.backends import InMemoryReminderBackend, JsonFileReminderBackend
from subsync.scheduling.scheduler import (
    BUDGET_ALERT_ID,
    ReminderPolicy,
    SchedulerAdapter,
    fire_time,
    schedule_for,
)
from tests.fakes import BASE_TIME, make_record

POLICY = ReminderPolicy()


def _adapter(backend=None, now: datetime = BASE_TIME) -> SchedulerAdapter:
    return SchedulerAdapter(backend or InMemoryReminderBackend(), POLICY, clock=lambda: now)


def test_ten_days_out_yields_three_entries() -> None:
    record = make_record(id="r1", next_occurrence=BASE_TIME + timedelta(days=10))

    entries = schedule_for([record], BASE_TIME, POLICY)

    assert sorted(e.offset_days for e in entries) == [0, 1, 3]
    assert {e.identifier for e in entries} == {"r1-3", "r1-1", "r1-0"}
    for entry in entries:
        assert entry.fire_at.hour == 17
        assert entry.fire_at.minute == 30


def test_zero_days_out_only_keeps_same_day_reminder() -> None:
    record = make_record(id="r1", next_occurrence=BASE_TIME)

    entries = schedule_for([record], BASE_TIME, POLICY)

    assert [e.offset_days for e in entries] == [0]


def test_inactive_and_essential_records_get_no_reminders() -> None:
    records = [make_record(id="off", active=False), make_record(id="must", essential=True)]

    assert schedule_for(records, BASE_TIME, POLICY) == []


def test_fire_time_uses_policy_timezone() -> None:
    policy = ReminderPolicy(timezone="Europe/Berlin")
    record = make_record(next_occurrence=datetime(2026, 3, 12, 23, 30, tzinfo=UTC))

    fire_at = fire_time(record, 0, policy)

    # 23:30 UTC is already the 13th in Berlin.
    assert fire_at.date().day == 13
    assert fire_at.hour == 17


def test_reconcile_matches_schedule_and_drops_purged_records() -> None:
    adapter = _adapter()
    kept = make_record(id="kept")
    purged = make_record(id="purged", service_name="Spotify")
    adapter.reconcile([kept, purged])

    adapter.reconcile([kept])

    pending = adapter.pending()
    assert {e.record_id for e in pending} == {"kept"}
    assert {e.identifier for e in pending} == {e.identifier for e in schedule_for([kept], BASE_TIME, POLICY)}


def test_reconcile_leaves_non_renewal_entries_alone() -> None:
    adapter = _adapter()
    record = make_record(id="r1")
    adapter.reconcile_usage_checks([record])

    adapter.reconcile([])

    assert [e.identifier for e in adapter.pending()] == ["usage-check-r1"]


def test_reconcile_record_reschedules_after_date_change() -> None:
    adapter = _adapter()
    record = make_record(id="r1", next_occurrence=BASE_TIME + timedelta(days=10))
    adapter.reconcile([record])

    moved = record.touched(BASE_TIME, next_occurrence=BASE_TIME + timedelta(days=20))
    adapter.reconcile_record(moved)

    fire_days = sorted(e.fire_at.date() for e in adapter.pending())
    assert fire_days[-1] == (BASE_TIME + timedelta(days=20)).date()
    assert len(fire_days) == 3


def test_cancel_record_removes_every_entry_for_it() -> None:
    adapter = _adapter()
    record = make_record(id="r1")
    adapter.reconcile([record])
    adapter.reconcile_usage_checks([record])

    adapter.cancel_record("r1")

    assert adapter.pending() == []


def test_usage_checks_are_weekly_and_start_on_sunday() -> None:
    adapter = _adapter()
    records = [make_record(id=f"r{i}") for i in range(2)] + [make_record(id="must", essential=True)]

    entries = adapter.reconcile_usage_checks(records)

    assert [e.identifier for e in entries] == ["usage-check-r0", "usage-check-r1"]
    assert all(e.repeat is Repeat.WEEKLY for e in entries)
    assert entries[0].fire_at.weekday() == 6
    assert entries[1].fire_at.weekday() == 0
    assert all(e.fire_at.hour == 20 and e.fire_at > BASE_TIME for e in entries)


def test_budget_alert_scheduled_when_over_threshold() -> None:
    adapter = _adapter()
    records = [make_record(amount=30.0)]

    status = adapter.evaluate_budget(records, BudgetSettings.from_limit(20.0))

    assert status is not None and status.over_budget
    alert = [e for e in adapter.pending() if e.identifier == BUDGET_ALERT_ID]
    assert len(alert) == 1
    assert alert[0].fire_at == BASE_TIME + timedelta(seconds=1)


def test_budget_alert_skipped_under_threshold() -> None:
    adapter = _adapter()

    adapter.evaluate_budget([make_record(amount=5.0)], BudgetSettings.from_limit(20.0))

    assert adapter.pending() == []


def test_pop_due_removes_one_shot_and_advances_repeating() -> None:
    backend = InMemoryReminderBackend()
    adapter = _adapter(backend)
    record = make_record(id="r1", next_occurrence=BASE_TIME + timedelta(days=1))
    adapter.reconcile([record])
    adapter.reconcile_usage_checks([record])

    due = backend.pop_due(BASE_TIME + timedelta(days=8))

    assert {e.identifier for e in due} == {"r1-1", "r1-0", "usage-check-r1"}
    remaining = backend.pending()
    assert [e.identifier for e in remaining] == ["usage-check-r1"]
    assert remaining[0].fire_at > BASE_TIME + timedelta(days=8)


def test_json_backend_survives_reload(tmp_path) -> None:
    path = tmp_path / "reminders.json"
    adapter = _adapter(JsonFileReminderBackend(path))
    adapter.reconcile([make_record(id="r1")])

    reloaded = JsonFileReminderBackend(path)

    assert {e.identifier for e in reloaded.pending()} == {"r1-3", "r1-1", "r1-0"}


def test_budget_alert_withdrawn_when_spending_drops() -> None:
    adapter = _adapter()
    settings = BudgetSettings.from_limit(20.0)
    adapter.evaluate_budget([make_record(amount=30.0)], settings)
    assert [e.identifier for e in adapter.pending()] == [BUDGET_ALERT_ID]

    status = adapter.evaluate_budget([make_record(amount=5.0)], settings)

    assert status is not None and not status.over_budget
    assert adapter.pending() == []


def test_budget_alert_withdrawn_when_budget_removed() -> None:
    adapter = _adapter()
    records = [make_record(amount=30.0)]
    adapter.evaluate_budget(records, BudgetSettings.from_limit(20.0))

    assert adapter.evaluate_budget(records, BudgetSettings.from_limit(None)) is None
    assert adapter.pending() == []


def test_cancel_suggestion_carries_cancellation_page() -> None:
    adapter = _adapter()
    record = make_record(id="r1", service_name="Netflix")

    entry = adapter.suggest_cancellation(record, "https://www.netflix.com/cancelplan")

    assert entry.identifier == "cancel-suggestion-Netflix"
    assert entry.fire_at == BASE_TIME + timedelta(seconds=2)
    assert entry.payload["cancellation_url"] == "https://www.netflix.com/cancelplan"
    assert entry.key is None

    adapter.reconcile([])
    assert [e.identifier for e in adapter.pending()] == ["cancel-suggestion-Netflix"]

    adapter.cancel_record("r1")
    assert adapter.pending() == []


def test_cancel_suggestion_without_known_page() -> None:
    adapter = _adapter()

    entry = adapter.suggest_cancellation(make_record(service_name="Local Gym"), None)

    assert "cancellation_url" not in entry.payload
    assert entry.payload["service_name"] == "Local Gym"


def test_json_backend_write_failure_leaves_no_temp_file(tmp_path) -> None:
    path = tmp_path / "reminders.json"
    path.mkdir()
    backend = JsonFileReminderBackend(path)

    with pytest.raises(OSError):
        _adapter(backend).reconcile([make_record(id="r1")])

    assert sorted(p.name for p in tmp_path.iterdir()) == ["reminders.json"]
