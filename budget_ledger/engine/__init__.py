"""
Ledger engine.

Pure functions over FinancialDocument: every mutation returns a new
document and leaves its input untouched.
"""

from budget_ledger.engine.adjustments import (
    add_obligation,
    apply_auto_rollover,
    apply_rollover,
    change_budget,
    change_salary,
    split_extra_income,
    withdraw_from_savings,
)
from budget_ledger.engine.calculator import calculate_monthly
from budget_ledger.engine.calendar import build_calendar
from budget_ledger.engine.changes import apply_changes, apply_pending_changes
from budget_ledger.engine.compensation import (
    apply_compensation,
    check_transaction_overspend,
    reverse_compensation,
)
from budget_ledger.engine.rebalance import apply_force_rebalance
from budget_ledger.engine.transactions import (
    CompensationRequiredError,
    add_transaction,
    delete_transaction,
    edit_transaction,
)

__all__ = [
    "CompensationRequiredError",
    "add_obligation",
    "add_transaction",
    "apply_auto_rollover",
    "apply_changes",
    "apply_compensation",
    "apply_force_rebalance",
    "apply_pending_changes",
    "apply_rollover",
    "build_calendar",
    "calculate_monthly",
    "change_budget",
    "change_salary",
    "check_transaction_overspend",
    "delete_transaction",
    "edit_transaction",
    "reverse_compensation",
    "split_extra_income",
    "withdraw_from_savings",
]
