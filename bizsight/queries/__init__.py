"""Dashboard aggregate queries."""

from bizsight.queries.aggregates import (
    compute_totals,
    monthly_breakdown,
    recent_months,
)

__all__ = ["compute_totals", "monthly_breakdown", "recent_months"]
