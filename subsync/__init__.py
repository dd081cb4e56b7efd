"""
subsync - offline-first subscription tracking with remote sync.

The package keeps a canonical set of subscription records that is usable
without a network and converges with a remote PostgreSQL table:

- Local JSON snapshot written atomically after every mutation
- Last-writer-wins reconciliation keyed on `updated_at`
- Pending-upload tracking so unconfirmed local edits are never overwritten
- Renewal reminders, weekly usage checks and a monthly budget alert kept in
  step with the record set
- A single coordinator serializing every mutation
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from subsync.config import Settings, get_settings
from subsync.coordinator import Coordinator, build_coordinator
from subsync.domain.budget import BudgetSettings, BudgetStatus
from subsync.domain.models import BillingPeriod, Category, Record
from subsync.reconciler import Reconciler, SyncOutcome, merge
from subsync.scheduling.scheduler import ReminderPolicy, SchedulerAdapter, schedule_for
from subsync.stores.abstract import RecordStore, RemoteStore
from subsync.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Coordination
    "Coordinator",
    "build_coordinator",
    # Domain
    "BillingPeriod",
    "BudgetSettings",
    "BudgetStatus",
    "Category",
    "Record",
    # Sync
    "Reconciler",
    "SyncOutcome",
    "merge",
    # Scheduling
    "ReminderPolicy",
    "SchedulerAdapter",
    "schedule_for",
    # Store interfaces
    "RecordStore",
    "RemoteStore",
    # Logging
    "configure_logging",
    "get_logger",
]
