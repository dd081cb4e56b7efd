"""
Domain package for subsync.

Exports the core domain models and budget calculations used across the
reconciler, scheduler and coordinator. Keep this package focused on data
definitions and pure computations; no I/O.
"""

from subsync.domain.budget import BudgetSettings, BudgetStatus, budget_status, monthly_spending
from subsync.domain.models import (
    BillingPeriod,
    Category,
    MergeResult,
    Record,
    RemoteOp,
    ScheduleEntry,
    sort_records,
)

__all__ = [
    "BillingPeriod",
    "BudgetSettings",
    "BudgetStatus",
    "Category",
    "MergeResult",
    "Record",
    "RemoteOp",
    "ScheduleEntry",
    "budget_status",
    "monthly_spending",
    "sort_records",
]
