"""
BizSight - Data Layer Package

Bookkeeping data for a small business: incomes, expenses and
appointments kept in live lists, with dashboard aggregates and
bulk export/import in JSON and CSV.

DESIGN PRINCIPLES:
1. The backing store is the source of truth; lists follow it
2. Malformed files fail before anything is deleted
3. Partial imports are reported, never hidden
4. Every write and every bulk operation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "BizSight Team"
