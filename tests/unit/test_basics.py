from pathlib import Path

import pytest

from scripts import init_remote
from subsync import config
from subsync.collaborators import DEFAULT_SERVICES, FreeTierGate, StaticServiceCatalog
from subsync.coordinator import build_coordinator
from subsync.domain.models import BillingPeriod
from subsync.scheduling.backends import InMemoryReminderBackend
from subsync.stores.local import JsonRecordStore
from tests.fakes import FakeRemoteStore


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DB_HOST", "DB_NAME", "SUBSYNC_DATA_DIR", "REMINDER_HOUR", "FREE_TIER_LIMIT"):
        monkeypatch.delenv(name, raising=False)

    settings = config.Settings(_env_file=None)

    assert settings.db_host == "localhost"
    assert settings.db_name == "subsync"
    assert settings.reminder_offsets_days == [3, 1, 0]
    assert (settings.reminder_hour, settings.reminder_minute) == (17, 30)
    assert settings.free_tier_limit == 4
    assert settings.snapshot_path == Path(".subsync") / "snapshot.json"


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SUBSYNC_DATA_DIR", "/tmp/subsync-test")
    monkeypatch.setenv("BUDGET_MONTHLY_LIMIT", "50")
    monkeypatch.setenv("REMINDER_OFFSETS_DAYS", "[7, 1]")

    settings = config.Settings(_env_file=None)

    assert settings.reminders_path == Path("/tmp/subsync-test/reminders.json")
    assert settings.budget_monthly_limit == 50.0
    assert settings.reminder_offsets_days == [7, 1]


def test_free_tier_gate() -> None:
    assert FreeTierGate(limit=4).can_add_record(3) is True
    assert FreeTierGate(limit=4).can_add_record(4) is False
    assert FreeTierGate(limit=4, unlocked=True).can_add_record(40) is True


def test_catalog_lookup_is_case_insensitive() -> None:
    catalog = StaticServiceCatalog()

    assert catalog.find_cancellation_reference("  spotify ") == "https://www.spotify.com/account/subscription/"
    assert catalog.find_cancellation_reference("Some Local Gym") is None


def test_build_coordinator_wires_settings(tmp_path: Path) -> None:
    settings = config.Settings(_env_file=None, SUBSYNC_DATA_DIR=tmp_path, BUDGET_MONTHLY_LIMIT=30.0)

    coordinator = build_coordinator(settings, remote=FakeRemoteStore(), backend=InMemoryReminderBackend())

    assert isinstance(coordinator.store, JsonRecordStore)
    assert coordinator.store.path == tmp_path / "snapshot.json"
    assert coordinator.budget.enabled is True
    assert coordinator.budget.monthly_limit == 30.0
    assert coordinator.scheduler.policy.offsets_days == (3, 1, 0)


def test_demo_records_are_deterministic() -> None:
    first = init_remote._demo_records(5, seed=7)
    second = init_remote._demo_records(5, seed=7)

    assert [r.id for r in first] == [r.id for r in second]
    assert len({r.service_name for r in first}) == 5
    known = {s.name for s in DEFAULT_SERVICES}
    assert all(r.service_name in known for r in first)
    assert all(r.billing_period in (BillingPeriod.MONTHLY, BillingPeriod.YEARLY) for r in first)
