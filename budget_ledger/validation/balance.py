"""
Budget Balance Validator

Checks the budget-balance invariant: for every month,
    save + sum(category totals) == income + extra income - fixed obligations
within a tolerance of 0.5.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; the caller decides whether to rebalance.
"""

from decimal import Decimal
from typing import Optional

from budget_ledger.models.ledger import (
    ZERO,
    BudgetBalanceResult,
    BudgetIssue,
    BudgetIssueReport,
    BudgetIssueSummary,
    FinancialDocument,
    MonthItem,
)

BALANCE_TOLERANCE = Decimal("0.5")


class BudgetImbalanceError(Exception):
    """Raised when an operation requires a balanced document and it isn't."""

    def __init__(self, report: BudgetIssueReport):
        self.report = report
        count = len(report.issues)
        super().__init__(
            f"{count} month{'s' if count != 1 else ''} out of balance: "
            f"{report.failing_month_indices}"
        )


def month_label(month_index: int, months: Optional[list[MonthItem]] = None) -> str:
    """Calendar name of a month, or a positional label when no calendar is given."""
    if months is not None and 0 <= month_index < len(months):
        return months[month_index].name
    return f"Month {month_index + 1}"


def validate_budget_balance(
    month_index: int,
    save: Decimal,
    category_totals: dict[str, Decimal],
    document: FinancialDocument,
    months: Optional[list[MonthItem]] = None,
) -> BudgetBalanceResult:
    """
    Check one month's proposed allocation against its available funds.

    Args:
        month_index: Month being checked
        save: Planned savings (including the extra-income share)
        category_totals: Category totals (budget + overlays) by name
        document: Source of income and obligations
        months: Optional calendar for readable month names

    Returns:
        BudgetBalanceResult with a signed deficit (positive = over-allocated)
    """
    available = document.available_funds(month_index)
    total = save + sum(category_totals.values(), ZERO)
    difference = total - available

    if abs(difference) <= BALANCE_TOLERANCE:
        return BudgetBalanceResult(
            month_index=month_index,
            valid=True,
            available=available,
            total=total,
        )

    label = month_label(month_index, months)
    if difference > 0:
        message = (
            f"{label}: allocations exceed available funds by {difference:.2f} "
            f"(allocated {total:.2f}, available {available:.2f})"
        )
    else:
        message = (
            f"{label}: {-difference:.2f} of available funds is unallocated "
            f"(allocated {total:.2f}, available {available:.2f})"
        )

    return BudgetBalanceResult(
        month_index=month_index,
        valid=False,
        deficit=difference,
        message=message,
        available=available,
        total=total,
    )


def month_allocation(
    document: FinancialDocument,
    month_index: int,
) -> tuple[Decimal, dict[str, Decimal]]:
    """Savings (with extra share) and category totals stored for a month."""
    record = document.record(month_index)
    totals = {
        name: document.category_total(name, month_index)
        for name in document.category_names
    }
    return record.planned_total, totals


def compute_budget_issues(
    document: FinancialDocument,
    months: Optional[list[MonthItem]] = None,
) -> BudgetIssueReport:
    """
    Scan every month in the horizon for invariant violations.

    The returned report carries month indices directly; nothing needs to
    be recovered from message text.
    """
    issues: list[BudgetIssue] = []
    first_issue: Optional[BudgetIssueSummary] = None

    for idx in document.month_indices:
        save, totals = month_allocation(document, idx)
        result = validate_budget_balance(idx, save, totals, document, months)
        if result.valid:
            continue

        issues.append(BudgetIssue(
            month_index=idx,
            month_name=month_label(idx, months),
            message=result.message,
            deficit=result.deficit,
            available=result.available,
            save=save,
            category_totals=totals,
        ))
        if first_issue is None:
            first_issue = BudgetIssueSummary(
                month_index=idx,
                save=save,
                category_totals=totals,
                available=result.available,
            )

    return BudgetIssueReport(issues=issues, first_issue=first_issue)
