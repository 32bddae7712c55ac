"""
Ledger Calculator

Derives the per-month view (MonthlyResult) from a stored FinancialDocument.

CRITICAL: This is a pure function of (document, months, now).
- It never mutates the document
- It never reads the clock itself
- Same inputs always produce the same results

The first pass walks the months in order with a running savings carry.
The second pass needs the complete first pass because rollover looks at
the previous month's category remainders.
"""

import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from budget_ledger.config import get_settings
from budget_ledger.models.ledger import (
    ZERO,
    CategoryResult,
    FinancialDocument,
    MonthItem,
    MonthlyResult,
)

# Manual previous-savings and manual balance overrides only warn past this
MANUAL_MISMATCH_TOLERANCE = Decimal("1")

WARNING_SEPARATOR = " | "


def _append_warning(current: str, message: str) -> str:
    return f"{current}{WARNING_SEPARATOR}{message}" if current else message


def _fmt(amount: Decimal) -> str:
    return f"{amount:.0f}"


def rollover_days_remaining(
    start: datetime,
    now: datetime,
    window_days: int,
) -> int:
    """Whole days left in the rollover window, never negative."""
    remaining = (start + timedelta(days=window_days) - now) / timedelta(days=1)
    return max(0, math.ceil(remaining))


def calculate_monthly(
    document: FinancialDocument,
    months: list[MonthItem],
    now: datetime,
    currency: Optional[str] = None,
    rollover_window_days: Optional[int] = None,
) -> list[MonthlyResult]:
    """
    Compute one MonthlyResult per calendar entry.

    Args:
        document: Stored state (read only)
        months: Calendar entries; result length equals len(months)
        now: Reference time for "passed" and rollover windows
        currency: Label used in warnings (defaults to settings)
        rollover_window_days: Rollover window (defaults to settings)

    Returns:
        list of MonthlyResult, index-aligned with `months`
    """
    ledger_settings = get_settings().ledger
    currency = currency or ledger_settings.currency
    if rollover_window_days is None:
        rollover_window_days = ledger_settings.rollover_window_days

    results: list[MonthlyResult] = []
    first = document.record(0)
    carried = first.prev if first.prev is not None else ZERO

    for idx, month in enumerate(months):
        record = document.record(idx)

        if record.prev_manual and record.prev is not None:
            working_prev = record.prev
        else:
            working_prev = carried

        fixed_total = document.fixed_total(idx)
        fixed_paid = document.fixed_paid(idx)

        categories: dict[str, CategoryResult] = {}
        overspend = ZERO
        total_spent = ZERO
        for name in document.category_names:
            budget = document.category_total(name, idx)
            spent = document.categories[name].spent_at(idx)
            categories[name] = CategoryResult(
                budget=budget,
                spent=spent,
                remaining=budget - spent,
            )
            # One category's surplus never offsets another's excess
            overspend += max(ZERO, spent - budget)
            total_spent += spent

        planned = record.planned_total
        actual_savings = planned - overspend
        warning = ""
        critical = False

        if overspend > 0:
            if overspend > planned:
                shortfall = overspend - planned
                if working_prev >= shortfall:
                    warning = (
                        f"Overspending by {_fmt(overspend)} {currency}. "
                        f"Current savings insufficient, consuming "
                        f"{_fmt(shortfall)} {currency} from previous savings."
                    )
                    actual_savings = ZERO
                    working_prev -= shortfall
                else:
                    critical = True
                    warning = (
                        f"CRITICAL: Overspending by {_fmt(overspend)} {currency} "
                        f"exceeds all available savings!"
                    )
                    actual_savings = -(shortfall - working_prev)
                    working_prev = ZERO
            else:
                warning = (
                    f"Overspending by {_fmt(overspend)} {currency}, reducing savings."
                )

        if idx == 0:
            reported_prev = record.prev if record.prev is not None else ZERO
        elif record.prev_manual:
            reported_prev = record.prev if record.prev is not None else ZERO
            if abs(reported_prev - carried) > MANUAL_MISMATCH_TOLERANCE:
                warning = _append_warning(
                    warning,
                    f"Manual Previous ({_fmt(reported_prev)}) differs from "
                    f"calculated ({_fmt(carried)})",
                )
        else:
            reported_prev = working_prev

        balance = (
            record.income + record.extra_income + reported_prev
            - total_spent - fixed_paid
        )
        if record.balance_manual and record.balance_override is not None:
            calculated_balance = balance
            balance = record.balance_override
            if abs(balance - calculated_balance) > MANUAL_MISMATCH_TOLERANCE:
                warning = _append_warning(
                    warning,
                    f"Manual Balance ({_fmt(balance)}) differs from "
                    f"calculated ({_fmt(calculated_balance)})",
                )

        total_savings = working_prev + actual_savings
        if total_savings < 0 and not critical:
            critical = True
            warning = (
                f"CRITICAL: Total savings cannot be negative "
                f"({_fmt(total_savings)} {currency})"
            )

        results.append(MonthlyResult(
            month=month.name,
            start=month.start,
            income=record.income,
            previous_savings=reported_prev,
            save=record.save,
            actual_savings=actual_savings,
            total_savings=total_savings,
            balance=balance,
            fixed_total=fixed_total,
            fixed_paid=fixed_paid,
            categories=categories,
            overspend=overspend,
            extra_income=record.extra_income,
            freed=max(ZERO, record.default_save - record.save),
            passed=now >= month.start,
            prev_manual=record.prev_manual,
            warning=warning,
            critical=critical,
        ))
        carried = total_savings

    # Second pass: rollover eligibility from the previous month's remainders
    for idx in range(1, len(results)):
        current = results[idx]
        previous = results[idx - 1]
        for name, category in current.categories.items():
            before = previous.categories.get(name)
            if before is not None:
                category.previous_remaining = max(ZERO, before.budget - before.spent)
        current.has_rollover = (
            current.passed
            and not document.record(idx).rollover_processed
            and any(c.previous_remaining > 0 for c in current.categories.values())
        )
        current.rollover_days_remaining = rollover_days_remaining(
            current.start, now, rollover_window_days
        )

    return results
