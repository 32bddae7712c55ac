"""
Reversible adjustments, rollover and savings withdrawals.

Salary changes, budget changes, extra-income splits and new fixed
expenses each return the new document together with the snapshot needed
to undo them. Rollover and withdrawals return only the new document.
None of them mutates its input.

DESIGN DECISION: Salary and budget changes that reach into later months
shift those months by the same delta rather than overwriting them. The
chosen month ends up at exactly the new value, and every month that was
balanced before stays balanced.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from budget_ledger.history.store import capture_snapshot
from budget_ledger.models.ledger import (
    SAVE_SOURCE,
    ZERO,
    AdjustmentKey,
    AdjustmentKind,
    AdjustmentSnapshot,
    FinancialDocument,
    FixedObligation,
    IncomeSplitRecord,
    MonthlyResult,
    Split,
)
from budget_ledger.validation.balance import month_label
from budget_ledger.validation.inputs import (
    InputValidationError,
    require_month,
    require_non_negative,
    validate_split_total,
)


def _months(document: FinancialDocument, month: int, apply_future: bool) -> tuple[int, ...]:
    require_month(month, document.horizon)
    if apply_future:
        return tuple(range(month, document.horizon))
    return (month,)


def _add_budget(document: FinancialDocument, name: str, idx: int, delta: Decimal) -> None:
    budget = document.categories[name]
    budget.budgeted[idx] = budget.budget_at(idx) + delta


def _require_shift_fits(
    document: FinancialDocument,
    months: tuple[int, ...],
    income: Decimal = ZERO,
    save: Decimal = ZERO,
    categories: Optional[dict[str, Decimal]] = None,
) -> None:
    """Every shifted month must keep its income, savings and budgets non-negative."""
    for idx in months:
        record = document.record(idx)
        shifted = [("Income", record.income + income), ("Savings", record.save + save)]
        shifted += [
            (f"{name} budget", document.categories[name].budget_at(idx) + delta)
            for name, delta in (categories or {}).items()
        ]
        for label, value in shifted:
            if value < 0:
                raise InputValidationError(
                    f"{label} would become {value:.2f} in {month_label(idx)}"
                )


def change_salary(
    document: FinancialDocument,
    month: int,
    new_income: Decimal,
    split: Split,
    apply_future: bool = False,
) -> tuple[FinancialDocument, AdjustmentSnapshot]:
    """
    Change the month's income and allocate the difference.

    `split` must sum to new_income - old_income (negative for a pay cut).
    """
    require_non_negative(new_income, "Income")
    months = _months(document, month, apply_future)
    old_income = document.record(month).income
    delta = new_income - old_income
    validate_split_total(split, delta, allowed_categories=document.category_names)

    _require_shift_fits(
        document, months, income=delta, save=split.save, categories=split.categories
    )

    key = AdjustmentKey(old_value=old_income, new_value=new_income, months=months)
    snapshot = capture_snapshot(document, AdjustmentKind.SALARY, key)

    updated = document.clone()
    for idx in months:
        record = updated.record_for_update(idx)
        record.income += delta
        record.base_salary = record.income
        record.save += split.save
        record.default_save += split.save
        for name, amount in split.categories.items():
            _add_budget(updated, name, idx, amount)
    return updated, snapshot


def change_budget(
    document: FinancialDocument,
    month: int,
    component: str,
    new_value: Decimal,
    redistribution: Split,
    apply_future: bool = False,
) -> tuple[FinancialDocument, AdjustmentSnapshot]:
    """
    Set planned savings or one category budget, moving the difference
    into the other components.

    `redistribution` must sum to old - new and may not include `component`.
    """
    require_non_negative(new_value, "Budget")
    months = _months(document, month, apply_future)

    if component == SAVE_SOURCE:
        old_value = document.record(month).save
        if redistribution.save != 0:
            raise InputValidationError("Savings cannot receive its own redistribution")
    elif component in document.categories:
        old_value = document.categories[component].budget_at(month)
        if redistribution.for_category(component) != 0:
            raise InputValidationError(
                f"{component} cannot receive its own redistribution"
            )
    else:
        raise InputValidationError(f"Unknown budget component: {component!r}")

    delta = new_value - old_value
    validate_split_total(redistribution, -delta, allowed_categories=document.category_names)

    if component == SAVE_SOURCE:
        _require_shift_fits(
            document, months, save=delta, categories=redistribution.categories
        )
    else:
        _require_shift_fits(
            document, months, save=redistribution.save,
            categories={**redistribution.categories, component: delta},
        )

    key = AdjustmentKey(
        old_value=old_value,
        new_value=new_value,
        months=months,
        component=component,
    )
    snapshot = capture_snapshot(document, AdjustmentKind.BUDGET, key)

    updated = document.clone()
    for idx in months:
        record = updated.record_for_update(idx)
        if component == SAVE_SOURCE:
            record.save += delta
            record.default_save += delta
        else:
            _add_budget(updated, component, idx, delta)

        record.save += redistribution.save
        record.default_save += redistribution.save
        for name, amount in redistribution.categories.items():
            _add_budget(updated, name, idx, amount)
    return updated, snapshot


def split_extra_income(
    document: FinancialDocument,
    month: int,
    amount: Decimal,
    split: Split,
    timestamp: Optional[datetime] = None,
) -> tuple[FinancialDocument, AdjustmentSnapshot]:
    """Add one-off income to a month and divide it between savings and categories."""
    require_non_negative(amount, "Extra income")
    if amount == 0:
        raise InputValidationError("Extra income must be greater than zero")
    months = _months(document, month, apply_future=False)
    validate_split_total(split, amount, allowed_categories=document.category_names)

    old_extra = document.record(month).extra_income
    key = AdjustmentKey(old_value=old_extra, new_value=old_extra + amount, months=months)
    snapshot = capture_snapshot(
        document, AdjustmentKind.EXTRA_INCOME, key, include_income_splits=True
    )

    updated = document.clone()
    record = updated.record_for_update(month)
    record.extra_income += amount
    record.save_extra += split.save
    for name, part in split.categories.items():
        record.extra[name] = record.extra.get(name, ZERO) + part

    entry = IncomeSplitRecord(save=split.save, categories=dict(split.categories))
    if timestamp is not None:
        entry.timestamp = timestamp
    updated.income_splits.setdefault(month, []).append(entry)
    return updated, snapshot


def add_obligation(
    document: FinancialDocument,
    obligation: FixedObligation,
    split: Split,
    apply_to_all: bool = True,
) -> tuple[FinancialDocument, AdjustmentSnapshot]:
    """
    Add a fixed expense and fund it by reducing savings and category budgets.

    `split` must sum to the obligation's first due amount. The reduction is
    applied to every month the obligation is due (or only the first).
    """
    first_due = obligation.first_due_month()
    if first_due is None:
        raise InputValidationError("A new expense needs a positive amount in at least one month")
    if first_due >= document.horizon:
        raise InputValidationError("A new expense must fall inside the horizon")

    expected = obligation.amount_at(first_due)
    validate_split_total(split, expected, allowed_categories=document.category_names)

    if apply_to_all:
        months = tuple(
            idx for idx in sorted(obligation.amounts)
            if obligation.amount_at(idx) > 0 and idx < document.horizon
        )
    else:
        months = (first_due,)

    key = AdjustmentKey(
        old_value=ZERO,
        new_value=expected,
        months=months,
        component=obligation.name,
    )
    snapshot = capture_snapshot(
        document, AdjustmentKind.NEW_EXPENSE, key, include_obligations=True
    )

    updated = document.clone()
    for idx in months:
        record = updated.record_for_update(idx)
        record.save = max(ZERO, record.save - split.save)
        record.default_save = max(ZERO, record.default_save - split.save)
        for name, part in split.categories.items():
            budget = updated.categories[name]
            budget.budgeted[idx] = max(ZERO, budget.budget_at(idx) - part)

    new_obligation = obligation.model_copy(deep=True)
    used_ids = {o.id for o in updated.obligations}
    if new_obligation.id in used_ids:
        new_obligation.id = max(used_ids) + 1
    updated.obligations.append(new_obligation)
    return updated, snapshot


def apply_rollover(
    document: FinancialDocument,
    month: int,
    results: list[MonthlyResult],
) -> FinancialDocument:
    """
    Move the previous month's unspent category budgets into this month's savings.

    The amount arrives as extra income earmarked for savings, so the
    month stays balanced.

    Raises:
        InputValidationError: the month is not eligible for rollover
    """
    if not 0 <= month < len(results) or not results[month].has_rollover:
        raise InputValidationError(f"Month {month} has no rollover available")

    amount = results[month].rollover_amount
    updated = document.clone()
    record = updated.record_for_update(month)
    record.extra_income += amount
    record.save_extra += amount
    record.rollover_processed = True
    return updated


def apply_auto_rollover(
    document: FinancialDocument,
    results: list[MonthlyResult],
    now: datetime,
) -> tuple[FinancialDocument, list[int]]:
    """
    Apply rollover to every eligible month whose window has closed.

    Does nothing unless the document has auto-rollover enabled.

    Returns:
        (document, indices of the months that were rolled over)
    """
    if not document.auto_rollover:
        return document, []

    applied: list[int] = []
    updated = document
    for idx, result in enumerate(results):
        if not result.has_rollover or now < result.start:
            continue
        if result.rollover_days_remaining is None or result.rollover_days_remaining > 0:
            continue
        updated = apply_rollover(updated, idx, results)
        applied.append(idx)
    return updated, applied


def withdraw_from_savings(
    document: FinancialDocument,
    month: int,
    amount: Decimal,
    results: list[MonthlyResult],
) -> FinancialDocument:
    """
    Take money out of the month's total savings.

    Previous savings are drawn first and become manual. Whatever they
    cannot cover comes out of the month's planned savings, which leaves
    the month under-allocated by that part until it is rebalanced.

    Raises:
        InputValidationError: non-positive amount, or more than total savings
    """
    require_non_negative(amount, "Withdrawal")
    if amount == 0:
        raise InputValidationError("Withdrawal must be greater than zero")
    require_month(month, min(document.horizon, len(results)))

    result = results[month]
    if amount > result.total_savings:
        raise InputValidationError(
            f"Cannot withdraw more than total savings ({result.total_savings:.2f})",
            expected_total=max(ZERO, result.total_savings),
        )

    previous = max(ZERO, result.previous_savings)
    updated = document.clone()
    record = updated.record_for_update(month)
    record.prev_manual = True
    if amount <= previous:
        record.prev = previous - amount
    else:
        record.prev = ZERO
        record.save = max(ZERO, record.save - (amount - previous))
    return updated
