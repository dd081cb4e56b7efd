"""
Pytest configuration for subsync.

Provides fixtures for:
- A controllable clock
- An in-process fake of the remote store
- A fully wired coordinator over in-memory stores
- Settings override for integration tests
"""

from __future__ import annotations

import os

import pytest

from subsync.config import Settings
from subsync.coordinator import Coordinator
from subsync.domain.budget import BudgetSettings
from subsync.reconciler import Reconciler
from subsync.scheduling.backends import InMemoryReminderBackend
from subsync.scheduling.scheduler import ReminderPolicy, SchedulerAdapter
from subsync.stores.local import InMemoryRecordStore
from tests.fakes import Clock, FakeRemoteStore


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def local_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def backend() -> InMemoryReminderBackend:
    return InMemoryReminderBackend()


@pytest.fixture
def scheduler(backend: InMemoryReminderBackend, clock: Clock) -> SchedulerAdapter:
    return SchedulerAdapter(backend, ReminderPolicy(), clock=clock)


@pytest.fixture
def coordinator(
    local_store: InMemoryRecordStore,
    remote: FakeRemoteStore,
    scheduler: SchedulerAdapter,
    clock: Clock,
) -> Coordinator:
    return Coordinator(
        store=local_store,
        reconciler=Reconciler(remote),
        scheduler=scheduler,
        budget=BudgetSettings(),
        clock=clock,
    )


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "subsync"),
        remote_table=os.getenv("REMOTE_TABLE", "subscriptions_test"),
        remote_retry_attempts=1,
        log_level="DEBUG",
    )
