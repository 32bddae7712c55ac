"""
Budget Ledger - Source Package

A monthly personal-finance ledger engine: derives each month's savings,
balance and overspend state from stored inputs, keeps every month's
allocations equal to its available funds, and makes the common
adjustments reversible.

DESIGN PRINCIPLES:
1. Engine functions are pure: a document in, a new document out
2. Fail early, fail visibly
3. No silent corrections of the budget-balance invariant
4. Every mutation must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Budget Ledger Team"
