"""
Category transactions.

Adding, editing and deleting transactions keeps the category `spent`
timeline in step with the log. A transaction that would overspend its
category must name a compensation source; the chosen compensation is
stored on the transaction and reversed before any edit or delete.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from budget_ledger.engine.compensation import (
    apply_compensation,
    check_transaction_overspend,
    reverse_compensation,
)
from budget_ledger.models.ledger import (
    PREV_SOURCE,
    ZERO,
    Compensation,
    FinancialDocument,
    OverspendCheck,
    Transaction,
)
from budget_ledger.validation.inputs import (
    InputValidationError,
    require_month,
    require_non_negative,
)


class CompensationRequiredError(Exception):
    """The transaction overspends its category and no funding source was chosen."""

    def __init__(self, check: OverspendCheck):
        self.check = check
        super().__init__(
            f"Transaction overspends by {check.overspend_amount:.2f}; "
            f"choose one of: {', '.join(check.source_names) or 'no source available'}"
        )


def _insert(
    document: FinancialDocument,
    category: str,
    month: int,
    amount: Decimal,
    source: Optional[str],
    previous_savings: Optional[Decimal],
    timestamp: Optional[datetime],
    position: Optional[int] = None,
) -> FinancialDocument:
    require_non_negative(amount, "Transaction amount")
    check = check_transaction_overspend(document, category, month, amount, previous_savings)

    compensation = None
    if check.would_overspend:
        if source is None:
            raise CompensationRequiredError(check)
        if source not in check.source_names:
            raise InputValidationError(
                f"{source!r} cannot cover an overspend of {check.overspend_amount:.2f}",
                expected_total=check.overspend_amount,
            )
        compensation = Compensation(
            source=source,
            amount=check.overspend_amount,
            prev_was_derived=(
                source == PREV_SOURCE and not document.record(month).prev_manual
            ),
        )

    updated = document.clone()
    budget = updated.categories[category]
    budget.spent[month] = budget.spent_at(month) + amount

    transaction = Transaction(
        amount=amount,
        timestamp=timestamp or datetime.utcnow(),
        compensation=compensation,
    )
    log = updated.transactions.setdefault(category, {}).setdefault(month, [])
    if position is None:
        log.append(transaction)
    else:
        log.insert(position, transaction)

    if compensation is not None:
        updated = apply_compensation(
            updated, category, month, compensation.source,
            compensation.amount, previous_savings,
        )
    return updated


def _remove(
    document: FinancialDocument,
    category: str,
    month: int,
    position: int,
) -> tuple[FinancialDocument, Transaction]:
    log = document.transactions_for(category, month)
    if not 0 <= position < len(log):
        raise InputValidationError(
            f"No transaction #{position} for {category} in month {month}"
        )
    transaction = log[position]

    updated = document
    if transaction.compensation is not None:
        updated = reverse_compensation(updated, category, month, transaction.compensation)
    else:
        updated = updated.clone()

    budget = updated.categories[category]
    budget.spent[month] = max(ZERO, budget.spent_at(month) - transaction.amount)

    month_log = updated.transactions[category][month]
    del month_log[position]
    if not month_log:
        del updated.transactions[category][month]
    if not updated.transactions[category]:
        del updated.transactions[category]
    return updated, transaction


def _drop_derived_carry(document: FinancialDocument, month: int) -> FinancialDocument:
    # Only month 0 reads a non-manual stored carry
    record = document.records.get(month)
    if month > 0 and record is not None and not record.prev_manual:
        record.prev = None
    return document


def add_transaction(
    document: FinancialDocument,
    category: str,
    month: int,
    amount: Decimal,
    source: Optional[str] = None,
    previous_savings: Optional[Decimal] = None,
    timestamp: Optional[datetime] = None,
) -> FinancialDocument:
    """
    Record a spend against a category.

    Raises:
        CompensationRequiredError: overspend without a source
        InputValidationError: negative amount or unusable source
    """
    if category not in document.categories:
        raise InputValidationError(f"Unknown category: {category!r}")
    require_month(month, document.horizon)
    return _insert(document, category, month, amount, source, previous_savings, timestamp)


def edit_transaction(
    document: FinancialDocument,
    category: str,
    month: int,
    position: int,
    new_amount: Decimal,
    source: Optional[str] = None,
    previous_savings: Optional[Decimal] = None,
) -> FinancialDocument:
    """Change a transaction's amount, re-deciding any compensation."""
    if category not in document.categories:
        raise InputValidationError(f"Unknown category: {category!r}")
    require_month(month, document.horizon)
    require_non_negative(new_amount, "Transaction amount")
    without, original = _remove(document, category, month, position)
    updated = _insert(
        without, category, month, new_amount, source, previous_savings,
        original.timestamp, position=position,
    )
    return _drop_derived_carry(updated, month)


def delete_transaction(
    document: FinancialDocument,
    category: str,
    month: int,
    position: int,
) -> FinancialDocument:
    """Remove a transaction and reverse its compensation."""
    if category not in document.categories:
        raise InputValidationError(f"Unknown category: {category!r}")
    require_month(month, document.horizon)
    updated, _ = _remove(document, category, month, position)
    return _drop_derived_carry(updated, month)
