"""
Input validation for caller-supplied amounts and splits.

Rejections name the exact expected total so the caller can show it.
Nothing is ever rounded or adjusted to make an input fit.
"""

from decimal import Decimal
from typing import Optional

from budget_ledger.models.ledger import Split

# Same tolerance the input forms use when comparing split sums
SPLIT_TOLERANCE = Decimal("0.01")

# Upper bound for any single amount entered by a user
MAX_INPUT_AMOUNT = Decimal("1000000")


class InputValidationError(ValueError):
    """A caller-supplied amount or split was rejected; state is unchanged."""

    def __init__(self, message: str, expected_total: Optional[Decimal] = None):
        self.message = message
        self.expected_total = expected_total
        super().__init__(message)


def require_non_negative(amount: Decimal, field: str = "amount") -> Decimal:
    """Reject negative and absurdly large amounts."""
    if amount < 0:
        raise InputValidationError(f"{field} cannot be negative (got {amount})")
    if amount > MAX_INPUT_AMOUNT:
        raise InputValidationError(
            f"{field} cannot exceed {MAX_INPUT_AMOUNT} (got {amount})"
        )
    return amount


def require_month(month: int, horizon: int) -> int:
    """Reject month indices outside 0..horizon-1."""
    if not 0 <= month < horizon:
        raise InputValidationError(
            f"Month {month} is outside the horizon (0-{horizon - 1})"
        )
    return month


def validate_split_total(
    split: Split,
    expected_total: Decimal,
    allowed_categories: Optional[list[str]] = None,
) -> Split:
    """
    Require a split to sum to `expected_total`.

    Args:
        split: The save/category split
        expected_total: What the parts must add up to
        allowed_categories: If given, category keys must be among these

    Raises:
        InputValidationError: naming the expected total
    """
    if allowed_categories is not None:
        unknown = sorted(set(split.categories) - set(allowed_categories))
        if unknown:
            raise InputValidationError(
                f"Unknown categories in split: {', '.join(unknown)}",
                expected_total=expected_total,
            )

    if abs(split.total - expected_total) > SPLIT_TOLERANCE:
        raise InputValidationError(
            f"Split must total exactly {expected_total:.2f} "
            f"(currently {split.total:.2f})",
            expected_total=expected_total,
        )
    return split
