"""
Default month calendar.

The calculator accepts any list of MonthItem; this helper builds the
usual one: consecutive months starting at a given date, each starting on
the billing day (clamped to the month's length).
"""

import calendar
from datetime import datetime

from budget_ledger.models.ledger import MonthItem


def _shift_month(year: int, month: int, offset: int) -> tuple[int, int]:
    zero_based = month - 1 + offset
    return year + zero_based // 12, zero_based % 12 + 1


def build_calendar(
    start: datetime,
    horizon: int,
    billing_day: int = 1,
) -> list[MonthItem]:
    """
    Build `horizon` consecutive MonthItems beginning with the month of `start`.

    Args:
        start: Any datetime inside the first month
        horizon: Number of months to generate
        billing_day: Day of the month each budget period starts (1-31)
    """
    if horizon < 0:
        raise ValueError(f"horizon must be non-negative, got {horizon}")
    if not 1 <= billing_day <= 31:
        raise ValueError(f"billing_day must be between 1 and 31, got {billing_day}")

    months = []
    for offset in range(horizon):
        year, month = _shift_month(start.year, start.month, offset)
        day = min(billing_day, calendar.monthrange(year, month)[1])
        period_start = datetime(year, month, day, tzinfo=start.tzinfo)
        months.append(MonthItem(
            name=period_start.strftime("%B %Y"),
            start=period_start,
            billing_day=billing_day,
        ))
    return months
