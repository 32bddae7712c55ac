"""
Shared fixtures for Budget Ledger tests.

Documents are built explicitly (horizon, categories) so tests never
depend on LEDGER_* environment settings.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from budget_ledger.engine import build_calendar
from budget_ledger.models.ledger import (
    CategoryBudget,
    FinancialDocument,
    FixedObligation,
    MonthRecord,
)


CALENDAR_START = datetime(2024, 1, 1)


@pytest.fixture
def months():
    """January, February and March 2024, each starting on the 1st."""
    return build_calendar(CALENDAR_START, 3)


@pytest.fixture
def make_document():
    """Factory for small documents with categories A and B."""
    def _make(
        horizon=3,
        categories=("A", "B"),
        records=None,
        budgets=None,
        spent=None,
        obligations=None,
        **kwargs,
    ) -> FinancialDocument:
        budgets = budgets or {}
        spent = spent or {}
        return FinancialDocument(
            horizon=horizon,
            categories={
                name: CategoryBudget(
                    budgeted=dict(budgets.get(name, {})),
                    spent=dict(spent.get(name, {})),
                )
                for name in categories
            },
            records=records or {},
            obligations=obligations or [],
            **kwargs,
        )
    return _make


@pytest.fixture
def balanced_document(make_document):
    """
    Every month: income 10000, rent 2000, save 2000, A 3000, B 3000.

    8000 available, 8000 allocated.
    """
    return make_document(
        records={
            idx: MonthRecord(income=10000, save=2000, default_save=2000)
            for idx in range(3)
        },
        budgets={
            "A": {idx: Decimal("3000") for idx in range(3)},
            "B": {idx: Decimal("3000") for idx in range(3)},
        },
        obligations=[
            FixedObligation(
                id=1,
                name="Rent",
                amounts={idx: Decimal("2000") for idx in range(3)},
            ),
        ],
    )
