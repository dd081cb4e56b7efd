from __future__ import annotations

from datetime import timedelta

import pytest

from subsync.domain import budget as budget_calc
from subsync.domain.budget import BudgetLevel, BudgetSettings, SuggestionKind
from subsync.domain.models import BillingPeriod, Category
from tests.fakes import BASE_TIME, make_record

BUDGET_LIMIT = 20.0


def _three_records():
    return [
        make_record(id="netflix", amount=12.99, billing_period=BillingPeriod.MONTHLY),
        make_record(id="disney", service_name="Disney+", amount=8.99, billing_period=BillingPeriod.MONTHLY),
        make_record(id="tidal", service_name="Tidal", amount=29.99, billing_period=BillingPeriod.YEARLY),
    ]


@pytest.mark.parametrize(
    ("period", "amount", "monthly"),
    [
        (BillingPeriod.WEEKLY, 10.00, 43.30),
        (BillingPeriod.YEARLY, 120.00, 10.00),
        (BillingPeriod.MONTHLY, 9.99, 9.99),
    ],
)
def test_monthly_normalization(period: BillingPeriod, amount: float, monthly: float) -> None:
    assert period.to_monthly(amount) == pytest.approx(monthly)


def test_total_monthly_cost_and_over_budget() -> None:
    records = _three_records()
    settings = BudgetSettings.from_limit(BUDGET_LIMIT)

    status = budget_calc.budget_status(records, settings)

    assert budget_calc.monthly_spending(records) == pytest.approx(24.48, abs=0.005)
    assert status is not None
    assert status.over_budget is True
    assert status.overage == pytest.approx(4.48, abs=0.005)
    assert status.level is BudgetLevel.EXCEEDED


def test_inactive_records_do_not_count() -> None:
    records = _three_records() + [make_record(id="old", amount=100.0, active=False)]

    assert budget_calc.monthly_spending(records) == pytest.approx(24.48, abs=0.005)


def test_no_status_without_limit() -> None:
    assert budget_calc.budget_status(_three_records(), BudgetSettings()) is None
    assert budget_calc.should_alert(_three_records(), BudgetSettings.from_limit(None)) is False


def test_alert_threshold_uses_notify_percentage() -> None:
    records = [make_record(amount=16.0)]

    assert budget_calc.should_alert(records, BudgetSettings.from_limit(20.0, 80)) is True
    assert budget_calc.should_alert(records, BudgetSettings.from_limit(20.0, 90)) is False


def test_warning_level_between_80_and_100_percent() -> None:
    status = budget_calc.budget_status([make_record(amount=17.0)], BudgetSettings.from_limit(20.0))

    assert status.level is BudgetLevel.WARNING
    assert status.remaining == pytest.approx(3.0)


def test_budget_impact_of_new_subscription() -> None:
    impact = budget_calc.budget_impact(
        [make_record(amount=15.0)], 60.0, BillingPeriod.YEARLY, BudgetSettings.from_limit(20.0)
    )

    assert impact.new_monthly_cost == pytest.approx(5.0)
    assert impact.new_total == pytest.approx(20.0)
    assert impact.will_exceed_budget is False


def test_spending_by_category_and_suggestions() -> None:
    records = [
        make_record(id="adobe", service_name="Adobe", amount=62.99, category=Category.SOFTWARE),
        make_record(id="notion", service_name="Notion", amount=10.0, category=Category.SOFTWARE),
        make_record(id="spotify", service_name="Spotify", amount=10.99, category=Category.MUSIC),
    ]

    by_category = budget_calc.spending_by_category(records)
    suggestions = budget_calc.saving_suggestions(records)

    assert by_category[Category.SOFTWARE] == pytest.approx(72.99)
    assert [s.kind for s in suggestions] == [SuggestionKind.EXPENSIVE, SuggestionKind.CATEGORY_HIGH]
    assert suggestions[0].record.id == "adobe"
    assert suggestions[1].category is Category.SOFTWARE


def test_upcoming_renewals_within_a_week() -> None:
    soon = make_record(id="soon", next_occurrence=BASE_TIME + timedelta(days=2))
    later = make_record(id="later", next_occurrence=BASE_TIME + timedelta(days=20))

    upcoming = budget_calc.upcoming_renewals([later, soon], now=BASE_TIME)

    assert [r.id for r in upcoming] == ["soon"]


def test_advanced_moves_one_period_and_stamps_update() -> None:
    record = make_record(next_occurrence=BASE_TIME.replace(day=31, month=1), billing_period=BillingPeriod.MONTHLY)

    moved = record.advanced(BASE_TIME)

    assert moved.next_occurrence.month == 2
    assert moved.next_occurrence.day == 28
    assert moved.updated_at == BASE_TIME
    assert moved.id == record.id
