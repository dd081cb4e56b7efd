"""
Domain models for subsync.

Defines the subscription record schema shared by the local snapshot, the
remote store and the reminder scheduler, plus the small value types that
flow between the reconciler, the scheduler adapter and the coordinator.
Records are frozen; every mutation produces a copy via `Record.touched`.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, Field, field_validator

WEEKS_PER_MONTH = 4.33
RENEWAL_SOON_DAYS = 7


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BillingPeriod(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @property
    def short_name(self) -> str:
        return {"weekly": "/wk", "monthly": "/mo", "yearly": "/yr"}[self.value]

    def to_monthly(self, amount: float) -> float:
        """Normalize an amount charged once per period to a monthly figure."""
        if self is BillingPeriod.WEEKLY:
            return amount * WEEKS_PER_MONTH
        if self is BillingPeriod.YEARLY:
            return amount / 12
        return amount

    @property
    def step(self) -> relativedelta:
        if self is BillingPeriod.WEEKLY:
            return relativedelta(weeks=1)
        if self is BillingPeriod.YEARLY:
            return relativedelta(years=1)
        return relativedelta(months=1)


class Category(str, Enum):
    STREAMING = "streaming"
    MUSIC = "music"
    SOFTWARE = "software"
    FITNESS = "fitness"
    CLOUD = "cloud"
    NEWS = "news"
    GAMING = "gaming"
    PHONE = "phone"
    OTHER = "other"


class Record(BaseModel):
    """
    A tracked subscription.

    `updated_at` is the only conflict-resolution key used by the reconciler.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Stable identifier.")
    service_name: str = Field(..., min_length=1, description="Catalog or custom service name.")
    custom_name: Optional[str] = Field(None, description="User-facing override of the name.")
    amount: float = Field(..., ge=0, description="Charge per billing period.")
    currency: str = Field("EUR", description="ISO currency code.")
    billing_period: BillingPeriod = Field(BillingPeriod.MONTHLY)
    next_occurrence: datetime = Field(..., description="Next renewal date.")
    notes: Optional[str] = None
    category: Category = Field(Category.OTHER)
    active: bool = Field(True, description="False means soft-deleted.")
    essential: bool = Field(False, description="Excluded from usage-check prompts.")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "arbitrary_types_allowed": False,
    }

    @field_validator("next_occurrence", "created_at", "updated_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def display_name(self) -> str:
        if self.custom_name and self.custom_name.strip():
            return self.custom_name
        return self.service_name

    @property
    def monthly_cost(self) -> float:
        return self.billing_period.to_monthly(self.amount)

    @property
    def yearly_cost(self) -> float:
        return self.monthly_cost * 12

    @property
    def cost_display(self) -> str:
        return f"{self.amount:.2f} {self.currency}"

    def days_until_renewal(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        return (self.next_occurrence.date() - now.astimezone(self.next_occurrence.tzinfo).date()).days

    def is_renewal_soon(self, now: Optional[datetime] = None) -> bool:
        return 0 <= self.days_until_renewal(now) <= RENEWAL_SOON_DAYS

    def is_renewal_today(self, now: Optional[datetime] = None) -> bool:
        return self.days_until_renewal(now) == 0

    def touched(self, at: datetime, **changes: Any) -> "Record":
        """Return a copy with `changes` applied and `updated_at` set to `at`."""
        changes.pop("id", None)
        changes.pop("created_at", None)
        changes["updated_at"] = at
        return self.model_validate({**self.model_dump(), **changes})

    def advanced(self, at: datetime) -> "Record":
        """Move the next occurrence forward by one billing period."""
        return self.touched(at, next_occurrence=self.next_occurrence + self.billing_period.step)


def sort_records(records: Iterable[Record]) -> List[Record]:
    """Canonical ordering: next occurrence ascending, id as a stable tie-breaker."""
    return sorted(records, key=lambda r: (r.next_occurrence, r.id))


class Repeat(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class ScheduleEntry(BaseModel):
    """
    A single scheduled reminder.

    Renewal reminders are keyed by `(record_id, offset_days)`; other kinds
    (budget alert, usage check) only carry an identifier.
    """

    identifier: str
    fire_at: datetime
    record_id: Optional[str] = None
    offset_days: Optional[int] = None
    repeat: Optional[Repeat] = None
    payload: Dict[str, str] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def key(self) -> Optional[tuple]:
        if self.record_id is None or self.offset_days is None:
            return None
        return (self.record_id, self.offset_days)


class OpKind(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True)
class RemoteOp:
    """A remote convergence operation emitted by the reconciler or coordinator."""

    kind: OpKind
    record_id: str
    record: Optional[Record] = None

    @classmethod
    def upsert(cls, record: Record) -> "RemoteOp":
        return cls(OpKind.UPSERT, record.id, record)

    @classmethod
    def delete(cls, record_id: str) -> "RemoteOp":
        return cls(OpKind.DELETE, record_id)


@dataclass(frozen=True)
class MergeResult:
    merged: List[Record]
    ops: List[RemoteOp] = field(default_factory=list)


__all__ = [
    "BillingPeriod",
    "Category",
    "MergeResult",
    "OpKind",
    "Record",
    "RemoteOp",
    "Repeat",
    "ScheduleEntry",
    "sort_records",
    "utcnow",
]
