"""
Budget and spending statistics over a record set.

All figures are monthly-normalized through `BillingPeriod.to_monthly`, so
the budget alert and the statistics views always agree. Only active
records count towards spending.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from subsync.domain.models import BillingPeriod, Category, Record, utcnow

WARNING_PERCENTAGE = 80.0
EXPENSIVE_THRESHOLD = 20.0
SUGGESTION_RECORD_THRESHOLD = 30.0
SUGGESTION_CATEGORY_THRESHOLD = 50.0
MAX_RECORD_SUGGESTIONS = 3


class BudgetSettings(BaseModel):
    monthly_limit: Optional[float] = Field(None, ge=0)
    notify_at_percentage: float = Field(WARNING_PERCENTAGE, ge=50, le=100)
    enabled: bool = False

    @property
    def has_limit(self) -> bool:
        return self.monthly_limit is not None and self.monthly_limit > 0

    @classmethod
    def from_limit(cls, limit: Optional[float], notify_at_percentage: float = WARNING_PERCENTAGE) -> "BudgetSettings":
        """Settings with the budget enabled exactly when a positive limit is given."""
        notify = min(max(notify_at_percentage, 50.0), 100.0)
        return cls(
            monthly_limit=limit,
            notify_at_percentage=notify,
            enabled=limit is not None and limit > 0,
        )


class BudgetLevel(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    EXCEEDED = "exceeded"


@dataclass(frozen=True)
class BudgetStatus:
    limit: float
    current: float

    @property
    def percentage(self) -> float:
        return (self.current / self.limit) * 100 if self.limit > 0 else 0.0

    @property
    def remaining(self) -> float:
        return self.limit - self.current

    @property
    def over_budget(self) -> bool:
        return self.current > self.limit

    @property
    def overage(self) -> float:
        return max(self.current - self.limit, 0.0)

    @property
    def level(self) -> BudgetLevel:
        if self.percentage >= 100:
            return BudgetLevel.EXCEEDED
        if self.percentage >= WARNING_PERCENTAGE:
            return BudgetLevel.WARNING
        return BudgetLevel.SAFE


@dataclass(frozen=True)
class BudgetImpact:
    current_spending: float
    new_monthly_cost: float
    new_total: float
    budget_limit: float

    @property
    def new_percentage(self) -> float:
        return (self.new_total / self.budget_limit) * 100

    @property
    def will_exceed_budget(self) -> bool:
        return self.new_total > self.budget_limit


class SuggestionKind(str, Enum):
    EXPENSIVE = "expensive"
    CATEGORY_HIGH = "category_high"


@dataclass(frozen=True)
class SavingSuggestion:
    kind: SuggestionKind
    message: str
    record: Optional[Record] = None
    category: Optional[Category] = None


def monthly_spending(records: Iterable[Record]) -> float:
    return sum(r.monthly_cost for r in records if r.active)


def yearly_spending(records: Iterable[Record]) -> float:
    return monthly_spending(records) * 12


def budget_status(records: Iterable[Record], settings: BudgetSettings) -> Optional[BudgetStatus]:
    """Current budget status, or None when no budget is configured."""
    if not settings.enabled or not settings.has_limit:
        return None
    return BudgetStatus(limit=settings.monthly_limit, current=monthly_spending(records))


def should_alert(records: Iterable[Record], settings: BudgetSettings) -> bool:
    status = budget_status(records, settings)
    if status is None:
        return False
    return status.percentage >= settings.notify_at_percentage


def budget_impact(
    records: Iterable[Record],
    new_amount: float,
    new_period: BillingPeriod,
    settings: BudgetSettings,
) -> Optional[BudgetImpact]:
    """What adding a subscription would do to the budget."""
    if not settings.enabled or not settings.has_limit:
        return None
    current = monthly_spending(records)
    new_monthly = new_period.to_monthly(new_amount)
    return BudgetImpact(
        current_spending=current,
        new_monthly_cost=new_monthly,
        new_total=current + new_monthly,
        budget_limit=settings.monthly_limit,
    )


def spending_by_category(records: Iterable[Record]) -> Dict[Category, float]:
    result: Dict[Category, float] = defaultdict(float)
    for record in records:
        if record.active:
            result[record.category] += record.monthly_cost
    return dict(result)


def count_by_category(records: Iterable[Record]) -> Dict[Category, int]:
    result: Dict[Category, int] = defaultdict(int)
    for record in records:
        if record.active:
            result[record.category] += 1
    return dict(result)


def expensive_records(records: Iterable[Record], threshold: float = EXPENSIVE_THRESHOLD) -> List[Record]:
    return sorted(
        (r for r in records if r.active and r.monthly_cost >= threshold),
        key=lambda r: r.monthly_cost,
        reverse=True,
    )


def upcoming_renewals(records: Iterable[Record], now: Optional[datetime] = None) -> List[Record]:
    now = now or utcnow()
    return sorted(
        (r for r in records if r.active and r.is_renewal_soon(now)),
        key=lambda r: r.next_occurrence,
    )


def saving_suggestions(records: Iterable[Record]) -> List[SavingSuggestion]:
    records = list(records)
    suggestions: List[SavingSuggestion] = []

    for record in expensive_records(records, SUGGESTION_RECORD_THRESHOLD)[:MAX_RECORD_SUGGESTIONS]:
        suggestions.append(
            SavingSuggestion(
                kind=SuggestionKind.EXPENSIVE,
                record=record,
                message=(
                    f"{record.display_name} costs {record.monthly_cost:.2f}/month"
                    " - consider whether you need it"
                ),
            )
        )

    for category, spending in sorted(spending_by_category(records).items(), key=lambda kv: -kv[1]):
        if spending > SUGGESTION_CATEGORY_THRESHOLD:
            suggestions.append(
                SavingSuggestion(
                    kind=SuggestionKind.CATEGORY_HIGH,
                    category=category,
                    message=f"You spend {spending:.2f}/month on {category.value}",
                )
            )

    return suggestions


__all__ = [
    "BudgetImpact",
    "BudgetLevel",
    "BudgetSettings",
    "BudgetStatus",
    "SavingSuggestion",
    "SuggestionKind",
    "budget_impact",
    "budget_status",
    "count_by_category",
    "expensive_records",
    "monthly_spending",
    "saving_suggestions",
    "should_alert",
    "spending_by_category",
    "upcoming_renewals",
    "yearly_spending",
]
