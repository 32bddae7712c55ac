"""Tests for overspend checks and compensation apply/reverse."""

from decimal import Decimal

import pytest

from budget_ledger.engine import (
    apply_compensation,
    check_transaction_overspend,
    reverse_compensation,
)
from budget_ledger.models.ledger import Compensation, MonthRecord
from budget_ledger.validation import InputValidationError


@pytest.fixture
def document(make_document):
    """A has 200 left of 1000, B is untouched, save 2000, previous savings 3000."""
    return make_document(
        records={0: MonthRecord(prev=3000, save=2000, default_save=2000)},
        budgets={"A": {0: Decimal("1000")}, "B": {0: Decimal("1000")}},
        spent={"A": {0: Decimal("800")}},
    )


class TestOverspendCheck:
    """Tests for check_transaction_overspend."""

    def test_within_budget(self, document):
        """Test a transaction that fits is not an overspend."""
        check = check_transaction_overspend(document, "A", 0, Decimal("200"))
        assert check.would_overspend is False
        assert check.available_sources == []

    def test_lists_sources_that_can_cover(self, document):
        """Test every source holding at least the overspend is offered."""
        check = check_transaction_overspend(document, "A", 0, Decimal("500"))
        assert check.would_overspend is True
        assert check.overspend_amount == Decimal("300")
        assert check.source_names == ["B", "save", "prev"]

    def test_small_sources_excluded(self, document):
        """Test sources holding less than the overspend are not offered."""
        check = check_transaction_overspend(document, "A", 0, Decimal("2700"))
        assert check.overspend_amount == Decimal("2500")
        assert check.source_names == ["prev"]

    def test_already_overspent_category(self, document):
        """Test only the new transaction's amount counts once the budget is gone."""
        document.categories["A"].spent[0] = Decimal("1200")
        check = check_transaction_overspend(document, "A", 0, Decimal("300"))
        assert check.overspend_amount == Decimal("300")

    def test_previous_savings_from_calculator(self, make_document):
        """Test the reported previous savings are used when none are stored."""
        document = make_document(budgets={"A": {0: Decimal("100")}})
        check = check_transaction_overspend(
            document, "A", 0, Decimal("150"), previous_savings=Decimal("60"),
        )
        assert check.source_names == ["prev"]

    def test_unknown_category(self, document):
        """Test an unknown category is rejected."""
        with pytest.raises(InputValidationError):
            check_transaction_overspend(document, "C", 0, Decimal("1"))


class TestCompensation:
    """Tests for applying and reversing compensations."""

    def test_category_source(self, document):
        """Test budget moves from the source category to the overspent one."""
        updated = apply_compensation(document, "A", 0, "B", Decimal("300"))
        assert updated.categories["A"].budgeted[0] == Decimal("1300")
        assert updated.categories["B"].budgeted[0] == Decimal("700")
        assert document.categories["A"].budgeted[0] == Decimal("1000")

    def test_save_source(self, document):
        """Test planned savings fund the overspend."""
        updated = apply_compensation(document, "A", 0, "save", Decimal("300"))
        assert updated.categories["A"].budgeted[0] == Decimal("1300")
        assert updated.records[0].save == Decimal("1700")

    def test_prev_source(self, document):
        """Test previous savings absorb the overspend and become manual."""
        updated = apply_compensation(document, "A", 0, "prev", Decimal("300"))
        assert updated.categories["A"].spent[0] == Decimal("500")
        assert updated.records[0].prev == Decimal("2700")
        assert updated.records[0].prev_manual is True

    @pytest.mark.parametrize("source", ["B", "save", "prev"])
    def test_reverse_is_exact_inverse(self, document, source):
        """Test reversal restores budgets, savings and spent."""
        applied = apply_compensation(document, "A", 0, source, Decimal("300"))
        reversed_ = reverse_compensation(
            applied, "A", 0, Compensation(source=source, amount=Decimal("300")),
        )
        for name in ("A", "B"):
            assert reversed_.categories[name].budget_at(0) == document.categories[name].budget_at(0)
            assert reversed_.categories[name].spent_at(0) == document.categories[name].spent_at(0)
        assert reversed_.records[0].save == document.records[0].save
        assert reversed_.records[0].prev == document.records[0].prev

    def test_reverse_uses_stored_amount(self, document):
        """Test reversal stays correct after unrelated budget changes."""
        applied = apply_compensation(document, "A", 0, "B", Decimal("300"))
        applied.categories["A"].budgeted[0] += Decimal("50")
        reversed_ = reverse_compensation(
            applied, "A", 0, Compensation(source="B", amount=Decimal("300")),
        )
        assert reversed_.categories["A"].budgeted[0] == Decimal("1050")
        assert reversed_.categories["B"].budgeted[0] == Decimal("1000")

    def test_invalid_sources(self, document):
        """Test self-compensation and unknown sources are rejected."""
        with pytest.raises(InputValidationError):
            apply_compensation(document, "A", 0, "A", Decimal("10"))
        with pytest.raises(InputValidationError):
            apply_compensation(document, "A", 0, "lottery", Decimal("10"))
