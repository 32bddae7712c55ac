"""Tests for the budget-balance validator and issue report."""

from decimal import Decimal

import pytest

from budget_ledger.models.ledger import MonthRecord
from budget_ledger.validation import (
    BudgetImbalanceError,
    compute_budget_issues,
    month_label,
    validate_budget_balance,
)


class TestValidateBudgetBalance:
    """Tests for the single-month invariant check."""

    def test_balanced_month(self, balanced_document):
        """Test income 10000, fixed 2000, save 2000, categories 3000/3000 is valid."""
        result = validate_budget_balance(
            0,
            Decimal("2000"),
            {"A": Decimal("3000"), "B": Decimal("3000")},
            balanced_document,
        )
        assert result.valid is True
        assert result.deficit == Decimal("0")
        assert result.available == Decimal("8000")
        assert result.message == ""

    def test_over_allocation_has_positive_deficit(self, balanced_document):
        """Test allocating more than available is reported with a signed deficit."""
        result = validate_budget_balance(
            0,
            Decimal("2100"),
            {"A": Decimal("3000"), "B": Decimal("3000")},
            balanced_document,
        )
        assert result.valid is False
        assert result.deficit == Decimal("100")
        assert result.message.startswith("Month 1: allocations exceed available funds by 100.00")

    def test_under_allocation_has_negative_deficit(self, balanced_document, months):
        """Test unallocated money also breaks the invariant."""
        result = validate_budget_balance(
            1,
            Decimal("1900"),
            {"A": Decimal("3000"), "B": Decimal("3000")},
            balanced_document,
            months,
        )
        assert result.valid is False
        assert result.deficit == Decimal("-100")
        assert result.message.startswith("February 2024: 100.00 of available funds is unallocated")

    def test_tolerance(self, balanced_document):
        """Test differences up to 0.5 are accepted."""
        result = validate_budget_balance(
            0,
            Decimal("2000.4"),
            {"A": Decimal("3000"), "B": Decimal("3000")},
            balanced_document,
        )
        assert result.valid is True

    def test_month_label(self, months):
        """Test calendar names are used when available."""
        assert month_label(0, months) == "January 2024"
        assert month_label(4) == "Month 5"


class TestComputeBudgetIssues:
    """Tests for the horizon-wide issue report."""

    def test_balanced_document_has_no_issues(self, balanced_document):
        """Test a balanced document yields an empty report."""
        report = compute_budget_issues(balanced_document)
        assert report.has_issues is False
        assert report.first_issue is None

    def test_failing_month_is_reported_by_index(self, balanced_document, months):
        """Test the report carries month indices and first-issue totals."""
        balanced_document.categories["B"].budgeted[1] = Decimal("2000")
        report = compute_budget_issues(balanced_document, months)

        assert report.failing_month_indices == [1]
        assert report.issues[0].month_name == "February 2024"
        assert report.issues[0].deficit == Decimal("-1000")
        assert report.first_issue.month_index == 1
        assert report.first_issue.save == Decimal("2000")
        assert report.first_issue.category_totals == {"A": Decimal("3000"), "B": Decimal("2000")}
        assert report.first_issue.available == Decimal("8000")

    def test_extra_income_and_overlays_count(self, balanced_document):
        """Test extra income, its savings share and category overlays all count."""
        record = balanced_document.records[0]
        record.extra_income = Decimal("1500")
        record.save_extra = Decimal("1000")
        record.extra = {"A": Decimal("300")}
        record.bonus = {"B": Decimal("200")}
        assert compute_budget_issues(balanced_document).has_issues is False

    def test_missing_months_are_balanced(self, make_document):
        """Test months with no stored data have nothing to allocate."""
        document = make_document(horizon=12, records={0: MonthRecord()})
        assert compute_budget_issues(document).has_issues is False

    def test_imbalance_error_carries_report(self, balanced_document):
        """Test BudgetImbalanceError exposes the report."""
        balanced_document.records[2].save = Decimal("0")
        report = compute_budget_issues(balanced_document)
        with pytest.raises(BudgetImbalanceError, match="1 month out of balance"):
            raise BudgetImbalanceError(report)
