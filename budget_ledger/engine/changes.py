"""
Change Applicator

Commits a batch of PendingChange edits to fixed obligations and
redistributes the freed (or newly required) money into savings and
category bonus overlays.

DESIGN DECISION: Obligation indices in a batch refer to the list as it
stood before the batch. A `forever` delete only marks its slot; the list
is compacted at the end, so it never shifts the target of a later change.
"""

from decimal import Decimal
from typing import Optional

from budget_ledger.models.ledger import (
    ZERO,
    ChangeKind,
    ChangeScope,
    FinancialDocument,
    FixedObligation,
    MonthRecord,
    PendingChange,
)
from budget_ledger.validation.inputs import InputValidationError, validate_split_total


def _set_amount(obligation: FixedObligation, idx: int, amount: Decimal) -> None:
    if amount > 0:
        obligation.amounts[idx] = amount
    else:
        obligation.amounts.pop(idx, None)


def _affected_months(change: PendingChange, horizon: int) -> range:
    if change.scope == ChangeScope.MONTH:
        return range(change.month_index, min(change.month_index + 1, horizon))
    return range(change.month_index, horizon)


def forward_savings(
    records: dict[int, MonthRecord],
    source_month: int,
    horizon: int,
) -> None:
    """
    Copy a month's planned savings to every later month (in place).

    Saving less than the default carries the bonus overlays along;
    saving at or above the default clears them.
    """
    source = records.get(source_month) or MonthRecord()
    keep_bonus = source.save < source.default_save
    for idx in range(source_month + 1, horizon):
        record = records.setdefault(idx, MonthRecord())
        record.save = source.save
        record.bonus = dict(source.bonus) if keep_bonus else {}


def apply_pending_changes(
    obligations: list[FixedObligation],
    records: dict[int, MonthRecord],
    pending_changes: list[PendingChange],
    horizon: int,
    forward_from_month: Optional[int] = None,
) -> tuple[list[FixedObligation], dict[int, MonthRecord]]:
    """
    Apply a batch of obligation edits.

    Args:
        obligations: Current obligation list (not mutated)
        records: Current month records (not mutated)
        pending_changes: Edits, applied in order
        horizon: Number of months in the document
        forward_from_month: If set, forward that month's savings first

    Returns:
        (new obligation list, new month records)
    """
    working = [o.model_copy(deep=True) for o in obligations]
    new_records = {idx: r.model_copy(deep=True) for idx, r in records.items()}
    removed: set[int] = set()

    if forward_from_month is not None:
        forward_savings(new_records, forward_from_month, horizon)

    for change in pending_changes:
        target = None
        if change.obligation_index < len(working) and change.obligation_index not in removed:
            target = working[change.obligation_index]

        if target is not None:
            if change.kind == ChangeKind.DELETE:
                if change.scope == ChangeScope.FOREVER:
                    removed.add(change.obligation_index)
                else:
                    for idx in _affected_months(change, horizon):
                        target.amounts.pop(idx, None)
            else:
                for idx in _affected_months(change, horizon):
                    _set_amount(target, idx, change.new_amount)

        for idx in _affected_months(change, horizon):
            record = new_records.setdefault(idx, MonthRecord())
            record.save += change.split.save
            for name, delta in change.split.categories.items():
                record.bonus[name] = record.bonus.get(name, ZERO) + delta

    kept = [
        obligation for position, obligation in enumerate(working)
        if position not in removed and obligation.is_active
    ]
    return kept, new_records


def expected_split_total(
    obligations: list[FixedObligation],
    change: PendingChange,
) -> Decimal:
    """
    Money freed (positive) or newly required (negative) per affected month.

    Measured at the change's month against the obligation as it was.
    """
    if change.obligation_index >= len(obligations):
        raise InputValidationError(
            f"No obligation at position {change.obligation_index}"
        )
    old_amount = obligations[change.obligation_index].amount_at(change.month_index)
    if change.kind == ChangeKind.DELETE:
        return old_amount
    return old_amount - change.new_amount


def apply_changes(
    document: FinancialDocument,
    pending_changes: list[PendingChange],
    forward_from_month: Optional[int] = None,
) -> FinancialDocument:
    """
    Validate every split in a batch, then apply it to a copy of the document.

    Raises:
        InputValidationError: a split doesn't redistribute exactly the
            freed or required amount (document unchanged)
    """
    for change in pending_changes:
        validate_split_total(
            change.split,
            expected_split_total(document.obligations, change),
            allowed_categories=document.category_names,
        )

    updated = document.clone()
    updated.obligations, updated.records = apply_pending_changes(
        document.obligations,
        document.records,
        pending_changes,
        document.horizon,
        forward_from_month=forward_from_month,
    )
    return updated
