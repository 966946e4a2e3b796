"""
Dashboard Aggregates

DESIGN DECISION: Aggregates are DERIVED, never stored.
The reactive store calls these on every snapshot, so totals can
never drift from the records they summarize.

Months are bucketed in UTC.
"""

from datetime import date, datetime, timezone
from typing import Iterable, Optional

from bizsight.models.records import (
    AggregateTotals,
    Expense,
    Income,
    MonthlySummary,
)


MONTH_LABELS = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]


def compute_totals(
    incomes: Iterable[Income],
    expenses: Iterable[Expense],
) -> AggregateTotals:
    """Revenue, expenses and profit over every record given."""
    revenue = sum(income.amount for income in incomes)
    spent = sum(expense.amount for expense in expenses)
    return AggregateTotals(
        total_revenue=revenue,
        total_expenses=spent,
        total_profit=revenue - spent,
    )


def _month_key(moment: datetime) -> tuple[int, int]:
    moment = moment.astimezone(timezone.utc)
    return moment.year, moment.month


def recent_months(count: int, today: Optional[date] = None) -> list[tuple[int, int]]:
    """
    The `count` calendar months ending with the current one, oldest first.

    Returns:
        (year, month) pairs
    """
    today = today or datetime.now(timezone.utc).date()
    year, month = today.year, today.month

    keys = []
    for _ in range(count):
        keys.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    keys.reverse()
    return keys


def monthly_breakdown(
    incomes: Iterable[Income],
    expenses: Iterable[Expense],
    months: int = 6,
    today: Optional[date] = None,
) -> list[MonthlySummary]:
    """
    Income and expenses per month for the recent window, oldest first.

    Every month of the window is present, including months without
    records (zero bars keep the chart's time axis honest).
    """
    keys = recent_months(months, today)
    buckets = {
        key: MonthlySummary(month=MONTH_LABELS[key[1] - 1], year=key[0])
        for key in keys
    }

    for income in incomes:
        bucket = buckets.get(_month_key(income.date))
        if bucket is not None:
            bucket.income += income.amount

    for expense in expenses:
        bucket = buckets.get(_month_key(expense.date))
        if bucket is not None:
            bucket.expenses += expense.amount

    return [buckets[key] for key in keys]
