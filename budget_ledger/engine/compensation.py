"""
Compensation Engine

When a new transaction would push a category past its budget, the
overspend is funded from another source at the moment it is recorded:
- another category (budget moves from that category to this one)
- planned savings (this category's budget grows, savings shrink)
- previous savings (spent is masked down, previous savings debited)

Reversal is the exact algebraic inverse and uses only the compensation
stored on the transaction, so it stays correct even if budgets have since
changed for unrelated reasons.
"""

from decimal import Decimal
from typing import Optional

from budget_ledger.models.ledger import (
    PREV_SOURCE,
    SAVE_SOURCE,
    ZERO,
    Compensation,
    FinancialDocument,
    OverspendCheck,
    SourceAvailability,
)
from budget_ledger.validation.inputs import InputValidationError


def category_remaining(document: FinancialDocument, category: str, month: int) -> Decimal:
    """Budget (with overlays) minus spent for one category and month."""
    return (
        document.category_total(category, month)
        - document.categories[category].spent_at(month)
    )


def _previous_baseline(
    document: FinancialDocument,
    month: int,
    previous_savings: Optional[Decimal],
) -> Decimal:
    record = document.record(month)
    if record.prev is not None:
        return record.prev
    return previous_savings if previous_savings is not None else ZERO


def _prev_compensation_count(document: FinancialDocument, month: int) -> int:
    return sum(
        1
        for by_month in document.transactions.values()
        for transaction in by_month.get(month, [])
        if transaction.compensation is not None
        and transaction.compensation.source == PREV_SOURCE
    )


def _require_category(document: FinancialDocument, category: str) -> None:
    if category not in document.categories:
        raise InputValidationError(f"Unknown category: {category!r}")


def check_transaction_overspend(
    document: FinancialDocument,
    category: str,
    month: int,
    amount: Decimal,
    previous_savings: Optional[Decimal] = None,
) -> OverspendCheck:
    """
    Would spending `amount` overspend the category, and who could cover it?

    Args:
        previous_savings: The month's reported previous savings (from the
            calculator); used when the record has no stored carry
    """
    _require_category(document, category)
    remaining = category_remaining(document, category, month)
    if amount <= remaining:
        return OverspendCheck(would_overspend=False)

    # Only the part of this transaction beyond what is left counts
    overspend = amount - max(ZERO, remaining)
    sources: list[SourceAvailability] = []

    for other in document.category_names:
        if other == category:
            continue
        other_remaining = category_remaining(document, other, month)
        if other_remaining >= overspend:
            sources.append(SourceAvailability(source=other, available=other_remaining))

    planned = document.record(month).save
    if planned >= overspend:
        sources.append(SourceAvailability(source=SAVE_SOURCE, available=planned))

    previous = _previous_baseline(document, month, previous_savings)
    if previous >= overspend:
        sources.append(SourceAvailability(source=PREV_SOURCE, available=previous))

    return OverspendCheck(
        would_overspend=True,
        overspend_amount=overspend,
        available_sources=sources,
    )


def apply_compensation(
    document: FinancialDocument,
    category: str,
    month: int,
    source: str,
    amount: Decimal,
    previous_savings: Optional[Decimal] = None,
) -> FinancialDocument:
    """Fund `amount` of overspend on `category` from `source`. Returns a new document."""
    _require_category(document, category)
    if source == category:
        raise InputValidationError("A category cannot compensate its own overspend")
    if amount < 0:
        raise InputValidationError(f"Compensation amount cannot be negative (got {amount})")

    updated = document.clone()
    target = updated.categories[category]
    record = updated.record_for_update(month)

    if source == SAVE_SOURCE:
        target.budgeted[month] = target.budget_at(month) + amount
        record.save = max(ZERO, record.save - amount)
    elif source == PREV_SOURCE:
        target.spent[month] = max(ZERO, target.spent_at(month) - amount)
        record.prev = _previous_baseline(document, month, previous_savings) - amount
        record.prev_manual = True
    elif source in updated.categories:
        other = updated.categories[source]
        target.budgeted[month] = target.budget_at(month) + amount
        other.budgeted[month] = other.budget_at(month) - amount
    else:
        raise InputValidationError(f"Unknown compensation source: {source!r}")

    return updated


def reverse_compensation(
    document: FinancialDocument,
    category: str,
    month: int,
    compensation: Compensation,
) -> FinancialDocument:
    """Undo a stored compensation exactly. Returns a new document."""
    _require_category(document, category)
    amount = compensation.amount

    updated = document.clone()
    target = updated.categories[category]
    record = updated.record_for_update(month)

    if compensation.source == SAVE_SOURCE:
        target.budgeted[month] = target.budget_at(month) - amount
        record.save = record.save + amount
    elif compensation.source == PREV_SOURCE:
        target.spent[month] = target.spent_at(month) + amount
        record.prev = (record.prev if record.prev is not None else ZERO) + amount
        # Back to the derived carry once no other transaction still draws on it
        record.prev_manual = not (
            compensation.prev_was_derived
            and _prev_compensation_count(document, month) <= 1
        )
    elif compensation.source in updated.categories:
        other = updated.categories[compensation.source]
        target.budgeted[month] = target.budget_at(month) - amount
        other.budgeted[month] = other.budget_at(month) + amount
    else:
        raise InputValidationError(
            f"Unknown compensation source: {compensation.source!r}"
        )

    return updated
