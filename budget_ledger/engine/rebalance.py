"""
Force-Rebalance Resolver

Restores the budget-balance invariant across a batch of months at once.

IMPORTANT: The caller passes a stable list of month indices, captured
once from the issue report. Fixing one month never changes which months
remain in the batch.
"""

from decimal import Decimal
from typing import Optional

from budget_ledger.models.ledger import (
    ZERO,
    FinancialDocument,
    RebalanceStrategy,
    Split,
)
from budget_ledger.validation.balance import validate_budget_balance
from budget_ledger.validation.inputs import InputValidationError


def _rebalance_month(
    document: FinancialDocument,
    idx: int,
    strategy: RebalanceStrategy,
    category: Optional[str],
    manual: Optional[Split],
) -> None:
    """Rebalance one month of `document` in place."""
    record = document.record_for_update(idx)
    available = document.available_funds(idx)
    bases = {
        name: document.categories[name].budget_at(idx)
        for name in document.category_names
    }
    overlays = {name: record.category_overlay(name) for name in document.category_names}

    if strategy == RebalanceStrategy.ADJUST_SAVE:
        new_save = max(ZERO, available - sum(bases.values(), ZERO))
        record.save = new_save
        record.default_save = new_save

    elif strategy == RebalanceStrategy.ADJUST_CATEGORY:
        others = sum((v for name, v in bases.items() if name != category), ZERO)
        document.categories[category].budgeted[idx] = max(
            ZERO, available - record.save - others
        )

    elif strategy == RebalanceStrategy.EQUAL_SPLIT:
        share = (available - sum(overlays.values(), ZERO)) / (len(bases) + 1)
        record.save = share
        record.default_save = share
        for name in bases:
            document.categories[name].budgeted[idx] = max(ZERO, share + overlays[name])

    elif strategy == RebalanceStrategy.MANUAL:
        record.save = manual.save
        record.default_save = manual.save
        for name in bases:
            document.categories[name].budgeted[idx] = max(ZERO, manual.for_category(name))

    # New figures are the full totals; leftover overlays would double-count
    record.clear_overlays()


def apply_force_rebalance(
    document: FinancialDocument,
    month_indices: list[int],
    strategy: RebalanceStrategy,
    category: Optional[str] = None,
    manual: Optional[Split] = None,
) -> FinancialDocument:
    """
    Rebalance every listed month with one strategy.

    Args:
        document: Current document (not mutated)
        month_indices: Stable list of months to fix; duplicates and
            out-of-range indices are skipped
        strategy: How to solve each month
        category: Category to solve for (adjust-category only)
        manual: Full save/category totals (manual only)

    Returns:
        New document

    Raises:
        InputValidationError: missing/unknown category, missing manual
            figures, or manual figures that don't balance a month
    """
    strategy = RebalanceStrategy(strategy)

    if strategy == RebalanceStrategy.ADJUST_CATEGORY and category not in document.categories:
        raise InputValidationError(f"Unknown category for rebalance: {category!r}")
    if strategy == RebalanceStrategy.MANUAL:
        if manual is None:
            raise InputValidationError("Manual rebalance requires save and category totals")
        unknown = sorted(set(manual.categories) - set(document.category_names))
        if unknown:
            raise InputValidationError(f"Unknown categories in split: {', '.join(unknown)}")

    targets: list[int] = []
    for idx in month_indices:
        if 0 <= idx < document.horizon and idx not in targets:
            targets.append(idx)

    if strategy == RebalanceStrategy.MANUAL:
        for idx in targets:
            totals: dict[str, Decimal] = {
                name: max(ZERO, manual.for_category(name))
                for name in document.category_names
            }
            check = validate_budget_balance(idx, manual.save, totals, document)
            if not check.valid:
                raise InputValidationError(
                    f"Manual totals must add up to exactly {check.available:.2f} "
                    f"(currently {check.total:.2f})",
                    expected_total=check.available,
                )

    updated = document.clone()
    for idx in targets:
        _rebalance_month(updated, idx, strategy, category, manual)
    return updated
