"""Tests for stored-document sanitization."""

import json
from datetime import datetime
from decimal import Decimal

from budget_ledger.engine import add_transaction
from budget_ledger.validation import sanitize_document


def issue(result, field):
    matches = [i for i in result.issues if i.field == field]
    return matches[0] if matches else None


class TestSanitizeDocument:
    """Tests for sanitize_document."""

    def test_stored_document_loads_cleanly(self, balanced_document):
        """Test a document written by this package loads without issues."""
        document = add_transaction(
            balanced_document, "A", 0, Decimal("3500"), source="save",
            timestamp=datetime(2024, 1, 5),
        )
        raw = json.loads(document.model_dump_json())
        result = sanitize_document(raw)

        assert result.valid is True
        assert result.issues == []
        assert result.value.model_dump() == document.model_dump()

    def test_non_object_document(self):
        """Test anything but an object yields an empty document and an error."""
        result = sanitize_document(["not", "a", "document"], horizon=6, categories=["food"])
        assert result.valid is False
        assert result.value.horizon == 6
        assert result.value.category_names == ["food"]
        assert issue(result, "document").severity == "error"

    def test_missing_fields_use_defaults(self):
        """Test an empty object gets the fallback horizon and categories."""
        result = sanitize_document({}, horizon=12, categories=["A", "B"])
        assert result.valid is False
        assert result.value.horizon == 12
        assert result.value.category_names == ["A", "B"]
        assert issue(result, "horizon").issue_type == "invalid_type"
        assert issue(result, "categories").issue_type == "missing"

    def test_dense_list_timelines(self):
        """Test list timelines load sparse and bad entries are dropped."""
        raw = {
            "horizon": 4,
            "categories": {"A": {"budgeted": [0, 100, "lots", 50], "spent": {"7": 5}}},
        }
        result = sanitize_document(raw)
        budget = result.value.categories["A"]
        assert budget.budgeted == {1: Decimal("100"), 3: Decimal("50")}
        assert budget.spent == {}
        assert issue(result, "categories.A.budgeted[2]").issue_type == "invalid_type"
        assert issue(result, "categories.A.spent[7]").issue_type == "out_of_range"

    def test_bad_record_fields_coerced(self):
        """Test wrong types and negative income fall back to defaults."""
        raw = {
            "horizon": 2,
            "categories": {"A": {}},
            "records": {
                "0": {
                    "income": -10,
                    "save": "abc",
                    "default_save": 0,
                    "prev_manual": "yes",
                    "rollover_processed": False,
                    "bonus": {"A": 5, "Z": 1},
                },
                "5": {},
            },
        }
        result = sanitize_document(raw)
        record = result.value.records[0]
        assert record.income == Decimal("0")
        assert record.save == Decimal("0")
        assert record.prev_manual is False
        assert record.bonus == {"A": Decimal("5")}
        assert 5 not in result.value.records

        assert issue(result, "records[0].income").issue_type == "out_of_range"
        assert issue(result, "records[0].save").issue_type == "invalid_type"
        assert issue(result, "records[0].bonus.Z").issue_type == "unknown_category"
        assert issue(result, "records[5]").issue_type == "out_of_range"

    def test_obligations_and_transactions(self):
        """Test broken obligations get defaults and broken transactions are dropped."""
        raw = {
            "horizon": 2,
            "categories": {"A": {}},
            "obligations": [{"name": "  Rent ", "amounts": {"0": 500}}, "junk"],
            "transactions": {
                "A": {"0": [
                    {"amount": 20, "timestamp": "2024-01-02T10:00:00",
                     "compensation": {"source": "nowhere", "amount": 5}},
                    {"amount": -1},
                ]},
                "Z": {"0": [{"amount": 1}]},
            },
        }
        result = sanitize_document(raw)
        rent, junk = result.value.obligations
        assert rent.id == 1
        assert rent.name == "Rent"
        assert junk.name == "Expense 2"
        assert not junk.is_active

        log = result.value.transactions_for("A", 0)
        assert len(log) == 1
        assert log[0].compensation is None
        assert "Z" not in result.value.transactions
        assert issue(result, "transactions.A[0][0].compensation") is not None
        assert issue(result, "transactions.Z").issue_type == "unknown_category"

    def test_derived_carry_flag_only_for_prev(self):
        """Test the derived-carry flag survives for prev compensation and is dropped elsewhere."""
        raw = {
            "horizon": 2,
            "categories": {"A": {}, "B": {}},
            "transactions": {
                "A": {"1": [
                    {"amount": 20, "compensation": {"source": "prev", "amount": 5, "prev_was_derived": True}},
                    {"amount": 30, "compensation": {"source": "B", "amount": 5, "prev_was_derived": True}},
                ]},
            },
        }
        log = sanitize_document(raw).value.transactions_for("A", 1)
        assert log[0].compensation.prev_was_derived is True
        assert log[1].compensation.prev_was_derived is False

    def test_issue_messages(self):
        """Test issue messages are prefixed with the field path."""
        result = sanitize_document({"horizon": 2, "categories": {"A": {}}, "auto_rollover": "on"})
        assert result.issue_messages == ["auto_rollover: not a boolean, using false"]
