"""Tests for dashboard aggregates."""

from datetime import date, datetime, timedelta, timezone

from bizsight.models.records import Expense, Income
from bizsight.queries import compute_totals, monthly_breakdown, recent_months


def _income(amount, when):
    return Income(id=f"i-{amount}", source="Sales", amount=amount, date=when)


def _expense(amount, when):
    return Expense(id=f"e-{amount}", category="Rent", amount=amount, date=when)


class TestTotals:
    def test_totals(self):
        when = datetime(2024, 3, 1, tzinfo=timezone.utc)
        totals = compute_totals(
            [_income(1000, when), _income(500, when)],
            [_expense(600, when)],
        )
        assert totals.total_revenue == 1500
        assert totals.total_expenses == 600
        assert totals.total_profit == 900

    def test_no_records(self):
        assert compute_totals([], []).is_empty

    def test_loss(self):
        when = datetime(2024, 3, 1, tzinfo=timezone.utc)
        totals = compute_totals([_income(100, when)], [_expense(250, when)])
        assert totals.total_profit == -150


class TestMonthlyBreakdown:
    def test_recent_months_cross_year(self):
        assert recent_months(3, today=date(2024, 2, 14)) == [
            (2023, 12), (2024, 1), (2024, 2),
        ]

    def test_buckets_and_window(self):
        today = date(2024, 6, 30)
        incomes = [
            _income(100, datetime(2024, 6, 1, tzinfo=timezone.utc)),
            _income(50, datetime(2024, 6, 20, tzinfo=timezone.utc)),
            _income(999, datetime(2023, 12, 1, tzinfo=timezone.utc)),  # outside window
        ]
        expenses = [_expense(30, datetime(2024, 4, 2, tzinfo=timezone.utc))]

        months = monthly_breakdown(incomes, expenses, months=6, today=today)

        assert [m.month for m in months] == ["Jan", "Feb", "Mar", "Apr", "May", "Jun"]
        assert months[-1].income == 150
        assert months[3].expenses == 30
        assert months[3].profit == -30
        assert sum(m.income for m in months) == 150

    def test_months_are_bucketed_in_utc(self):
        # 23:30 on May 31 at UTC-2 is June 1 in UTC
        late = datetime(2024, 5, 31, 23, 30, tzinfo=timezone(timedelta(hours=-2)))
        months = monthly_breakdown([_income(10, late)], [], months=2, today=date(2024, 6, 5))
        assert [(m.month, m.income) for m in months] == [("May", 0), ("Jun", 10)]
