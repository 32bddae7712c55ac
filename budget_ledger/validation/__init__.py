"""Budget-balance validation, input checks and stored-document sanitization."""

from budget_ledger.validation.balance import (
    BALANCE_TOLERANCE,
    BudgetImbalanceError,
    compute_budget_issues,
    month_allocation,
    month_label,
    validate_budget_balance,
)
from budget_ledger.validation.inputs import (
    InputValidationError,
    require_month,
    require_non_negative,
    validate_split_total,
)
from budget_ledger.validation.sanitizer import sanitize_document

__all__ = [
    "BALANCE_TOLERANCE",
    "BudgetImbalanceError",
    "InputValidationError",
    "compute_budget_issues",
    "month_allocation",
    "month_label",
    "require_month",
    "require_non_negative",
    "sanitize_document",
    "validate_budget_balance",
    "validate_split_total",
]
