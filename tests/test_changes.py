"""Tests for committing pending obligation changes."""

from decimal import Decimal

import pytest

from budget_ledger.engine import apply_changes, apply_pending_changes
from budget_ledger.engine.changes import forward_savings
from budget_ledger.models.ledger import (
    ChangeKind,
    ChangeScope,
    FixedObligation,
    MonthRecord,
    PendingChange,
    Split,
)
from budget_ledger.validation import InputValidationError, compute_budget_issues


@pytest.fixture
def small_document(make_document):
    """Income 1000, one 17 obligation, save 483, A 300, B 200 in every month."""
    return make_document(
        records={
            idx: MonthRecord(income=1000, save=483, default_save=483)
            for idx in range(3)
        },
        budgets={
            "A": {idx: Decimal("300") for idx in range(3)},
            "B": {idx: Decimal("200") for idx in range(3)},
        },
        obligations=[
            FixedObligation(id=1, name="Streaming", amounts={idx: Decimal("17") for idx in range(3)}),
        ],
    )


class TestApplyChanges:
    """Tests for apply_changes."""

    def test_month_delete_redistributes_freed_amount(self, small_document):
        """Test deleting one month frees its amount into savings and bonuses."""
        change = PendingChange(
            obligation_index=0,
            month_index=1,
            kind=ChangeKind.DELETE,
            scope=ChangeScope.MONTH,
            split=Split(save=10, categories={"A": 5, "B": 2}),
        )
        updated = apply_changes(small_document, [change])

        assert updated.obligations[0].amounts == {0: Decimal("17"), 2: Decimal("17")}
        record = updated.records[1]
        assert record.save == Decimal("493")
        assert record.bonus == {"A": Decimal("5"), "B": Decimal("2")}
        assert updated.records[0].save == Decimal("483")
        assert updated.records[2].bonus == {}
        assert compute_budget_issues(updated).has_issues is False

    def test_wrong_split_rejected_with_expected_total(self, small_document):
        """Test a split that doesn't add up names the expected total."""
        change = PendingChange(
            obligation_index=0,
            month_index=1,
            kind=ChangeKind.DELETE,
            split=Split(save=10),
        )
        with pytest.raises(InputValidationError, match="exactly 17.00") as exc_info:
            apply_changes(small_document, [change])
        assert exc_info.value.expected_total == Decimal("17")

    def test_future_amount_edit(self, small_document):
        """Test a future-scoped amount edit reaches the end of the horizon."""
        change = PendingChange(
            obligation_index=0,
            month_index=1,
            kind=ChangeKind.AMOUNT,
            scope=ChangeScope.FUTURE,
            new_amount=Decimal("10"),
            split=Split(save=7),
        )
        updated = apply_changes(small_document, [change])

        assert updated.obligations[0].amounts == {
            0: Decimal("17"), 1: Decimal("10"), 2: Decimal("10"),
        }
        assert [updated.record(idx).save for idx in range(3)] == [
            Decimal("483"), Decimal("490"), Decimal("490"),
        ]
        assert compute_budget_issues(updated).has_issues is False

    def test_amount_increase_takes_money_back(self, small_document):
        """Test a higher amount needs a negative split."""
        change = PendingChange(
            obligation_index=0,
            month_index=0,
            new_amount=Decimal("27"),
            split=Split(save=-10),
        )
        updated = apply_changes(small_document, [change])
        assert updated.records[0].save == Decimal("473")
        assert compute_budget_issues(updated).has_issues is False

    def test_forever_delete_keeps_later_indices_stable(self, small_document):
        """Test indices in a batch refer to the list as it was before the batch."""
        small_document.obligations.append(
            FixedObligation(id=2, name="Gym", amounts={0: Decimal("50")})
        )
        changes = [
            PendingChange(
                obligation_index=0,
                month_index=0,
                kind=ChangeKind.DELETE,
                scope=ChangeScope.FOREVER,
                split=Split(save=17),
            ),
            PendingChange(
                obligation_index=1,
                month_index=0,
                new_amount=Decimal("40"),
                split=Split(categories={"A": 10}),
            ),
        ]
        updated = apply_changes(small_document, changes)

        assert [o.name for o in updated.obligations] == ["Gym"]
        assert updated.obligations[0].amounts == {0: Decimal("40")}
        assert updated.records[0].bonus == {"A": Decimal("10")}

    def test_obligation_without_amounts_is_pruned(self, make_document):
        """Test an obligation with nothing left due is removed."""
        document = make_document(
            records={1: MonthRecord(income=100, save=83, default_save=83)},
            obligations=[FixedObligation(id=1, name="Once", amounts={1: Decimal("17")})],
        )
        change = PendingChange(
            obligation_index=0,
            month_index=1,
            kind=ChangeKind.DELETE,
            split=Split(save=17),
        )
        updated = apply_changes(document, [change])
        assert updated.obligations == []
        assert updated.records[1].save == Decimal("100")

    def test_unknown_obligation_rejected(self, small_document):
        """Test a change pointing past the list is rejected."""
        change = PendingChange(obligation_index=5, kind=ChangeKind.DELETE)
        with pytest.raises(InputValidationError):
            apply_changes(small_document, [change])

    def test_input_document_untouched(self, small_document):
        """Test apply_changes returns a new document."""
        before = small_document.model_dump()
        change = PendingChange(
            obligation_index=0,
            month_index=0,
            kind=ChangeKind.DELETE,
            split=Split(save=17),
        )
        apply_changes(small_document, [change])
        assert small_document.model_dump() == before

    def test_amount_change_requires_new_amount(self):
        """Test an amount change without a target amount is invalid."""
        with pytest.raises(ValueError, match="new_amount"):
            PendingChange(obligation_index=0, kind=ChangeKind.AMOUNT)


class TestForwardSavings:
    """Tests for forwarding a month's savings plan."""

    def test_reduced_savings_carry_bonus(self):
        """Test saving below the default forwards the bonus overlay too."""
        records = {0: MonthRecord(save=100, default_save=200, bonus={"A": 5})}
        forward_savings(records, 0, 3)
        assert records[1].save == Decimal("100")
        assert records[2].bonus == {"A": Decimal("5")}

    def test_full_savings_clear_bonus(self):
        """Test saving at the default clears later bonuses."""
        records = {
            0: MonthRecord(save=200, default_save=200),
            1: MonthRecord(bonus={"B": 9}),
        }
        forward_savings(records, 0, 2)
        assert records[1].save == Decimal("200")
        assert records[1].bonus == {}

    def test_forward_before_batch(self):
        """Test forward_from_month is applied before the changes."""
        obligations = [FixedObligation(id=1, name="Rent", amounts={1: Decimal("50")})]
        records = {0: MonthRecord(save=300, default_save=300)}
        change = PendingChange(
            obligation_index=0,
            month_index=1,
            kind=ChangeKind.DELETE,
            split=Split(save=50),
        )
        kept, new_records = apply_pending_changes(
            obligations, records, [change], 3, forward_from_month=0,
        )
        assert kept == []
        assert new_records[1].save == Decimal("350")
        assert new_records[2].save == Decimal("300")
        assert records[0].save == Decimal("300")
        assert 1 not in records
