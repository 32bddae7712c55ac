"""
Tests for the ledger session orchestrator.

Sessions run against in-memory document and audit storage; each test
drives its async steps through asyncio.run.
"""

import asyncio
import json
from datetime import datetime
from decimal import Decimal

import pytest

from budget_ledger.audit import AuditLogger
from budget_ledger.history import AdjustmentHistory, UndoAction
from budget_ledger.models.audit import AuditEventType
from budget_ledger.models.ledger import (
    AdjustmentKind,
    ChangeKind,
    PendingChange,
    RebalanceStrategy,
    Split,
)
from budget_ledger.orchestrator import LedgerSession, SessionNotLoadedError, create_session
from budget_ledger.services.storage import (
    ConflictError,
    InMemoryAuditStorage,
    InMemoryDocumentStorage,
)
from budget_ledger.validation import BudgetImbalanceError, InputValidationError


CLOCK = datetime(2024, 1, 10)


@pytest.fixture
def storage():
    return InMemoryDocumentStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def make_session(storage, audit_storage, months):
    def _make(user_id="u1"):
        return LedgerSession(
            user_id,
            storage,
            audit_logger=AuditLogger(audit_storage),
            history=AdjustmentHistory(depth=1),
            months=months,
            clock=lambda: CLOCK,
        )
    return _make


def store(storage, document, user_id="u1") -> str:
    return storage.put_raw(user_id, json.loads(document.model_dump_json()))


def event_types(audit_storage) -> list[AuditEventType]:
    return [event.event_type for event in audit_storage.events]


class TestSessionLoad:
    """Tests for loading documents into a session."""

    def test_document_requires_load(self, make_session):
        """Test the document is unavailable before load()."""
        with pytest.raises(SessionNotLoadedError):
            make_session().document

    def test_load_without_stored_document(self, make_session, audit_storage):
        """Test a user without a document starts with an empty one."""
        session = make_session()
        document = asyncio.run(session.load())

        assert document.records == {}
        assert session.revision is None
        assert session.has_unsaved_changes is False
        assert event_types(audit_storage) == [AuditEventType.DOCUMENT_CREATED]

    def test_load_stored_document(self, make_session, storage, audit_storage, balanced_document):
        """Test the stored document and its revision are loaded."""
        revision = store(storage, balanced_document)
        session = make_session()
        document = asyncio.run(session.load())

        assert session.revision == revision
        assert document.records[0].income == Decimal("10000")
        assert event_types(audit_storage) == [AuditEventType.DOCUMENT_LOADED]

    def test_load_reports_sanitization(self, make_session, storage, audit_storage):
        """Test coerced fields are audited, not raised."""
        storage.put_raw("u1", {"horizon": 3, "categories": {"A": {}}, "auto_rollover": "on"})
        session = make_session()
        document = asyncio.run(session.load())

        assert document.auto_rollover is False
        assert event_types(audit_storage) == [
            AuditEventType.DOCUMENT_SANITIZED,
            AuditEventType.DOCUMENT_LOADED,
        ]
        assert audit_storage.events[0].details["issues"] == [
            "auto_rollover: not a boolean, using false",
        ]


class TestSessionSave:
    """Tests for saving with the invariant gate and optimistic concurrency."""

    def test_save_after_change(self, make_session, storage, audit_storage, balanced_document):
        """Test a balanced change saves and clears the unsaved flag."""
        store(storage, balanced_document)
        session = make_session()

        async def run():
            await session.load()
            await session.change_salary(0, Decimal("11000"), Split(save=1000))
            assert session.has_unsaved_changes is True
            return await session.save()

        revision = asyncio.run(run())
        assert revision == storage.revision_of("u1")
        assert session.revision == revision
        assert session.has_unsaved_changes is False
        assert event_types(audit_storage)[-1] == AuditEventType.DOCUMENT_SAVED

    def test_unbalanced_save_is_blocked(self, make_session, storage, audit_storage, balanced_document):
        """Test an unbalanced document cannot be saved until rebalanced."""
        balanced_document.records[0].save = Decimal("1000")
        revision = store(storage, balanced_document)
        session = make_session()
        asyncio.run(session.load())

        with pytest.raises(BudgetImbalanceError) as exc_info:
            asyncio.run(session.save())
        assert exc_info.value.report.failing_month_indices == [0]
        assert storage.revision_of("u1") == revision
        assert AuditEventType.SAVE_BLOCKED in event_types(audit_storage)

        asyncio.run(session.force_rebalance(RebalanceStrategy.ADJUST_SAVE))
        assert session.document.records[0].save == Decimal("2000")
        asyncio.run(session.save())
        assert storage.revision_of("u1") == session.revision

    def test_conflicting_save(self, make_session, storage, audit_storage, balanced_document):
        """Test a stale session must reload or force its save."""
        store(storage, balanced_document)
        first = make_session()
        second = make_session()

        async def run():
            await first.load()
            await second.load()
            await first.change_salary(0, Decimal("11000"), Split(save=1000))
            await first.save()
            await second.change_budget(0, "A", Decimal("2000"), Split(save=1000))
            with pytest.raises(ConflictError):
                await second.save()
            await second.save(force=True)
            await first.reload()

        asyncio.run(run())
        assert AuditEventType.SAVE_CONFLICT in event_types(audit_storage)
        assert first.has_unsaved_changes is False
        assert first.document.records[0].income == Decimal("10000")
        assert first.document.categories["A"].budgeted[0] == Decimal("2000")


class TestSessionMutations:
    """Tests for mutations routed through the session."""

    def test_apply_changes(self, make_session, storage, audit_storage, balanced_document):
        """Test committing pending changes is audited."""
        store(storage, balanced_document)
        session = make_session()
        change = PendingChange(
            obligation_index=0,
            month_index=0,
            kind=ChangeKind.DELETE,
            split=Split(save=2000),
        )

        async def run():
            await session.load()
            await session.apply_changes([change])

        asyncio.run(run())
        assert session.document.records[0].save == Decimal("4000")
        assert session.issues().has_issues is False
        assert event_types(audit_storage)[-1] == AuditEventType.CHANGES_APPLIED

    def test_transactions_audit_compensation(self, make_session, storage, audit_storage, balanced_document):
        """Test compensation apply and reversal are audited with the transaction."""
        store(storage, balanced_document)
        session = make_session()

        async def run():
            await session.load()
            await session.add_transaction("A", 0, Decimal("3500"), source="save")
            await session.delete_transaction("A", 0, 0)

        asyncio.run(run())
        assert event_types(audit_storage)[1:] == [
            AuditEventType.TRANSACTION_ADDED,
            AuditEventType.COMPENSATION_APPLIED,
            AuditEventType.TRANSACTION_DELETED,
            AuditEventType.COMPENSATION_REVERSED,
        ]
        assert session.document.records[0].save == Decimal("2000")

    def test_transaction_outside_horizon(self, make_session, storage, audit_storage, balanced_document):
        """Test a month past the horizon is rejected before anything changes."""
        store(storage, balanced_document)
        session = make_session()
        loaded = asyncio.run(session.load())

        with pytest.raises(InputValidationError):
            asyncio.run(session.add_transaction("A", 7, Decimal("10")))
        assert session.document is loaded
        assert loaded.transactions == {}
        assert len(audit_storage.events) == 1

    def test_withdraw_from_savings(self, make_session, storage, audit_storage, balanced_document):
        """Test a withdrawal is applied and audited with where the money came from."""
        store(storage, balanced_document)
        session = make_session()

        async def run():
            await session.load()
            await session.withdraw_from_savings(1, Decimal("500"))

        asyncio.run(run())
        assert session.document.records[1].prev == Decimal("1500")
        event = audit_storage.events[-1]
        assert event.event_type == AuditEventType.SAVINGS_WITHDRAWN
        assert event.details["from_previous"] == "500"
        assert event.details["from_planned"] == "0"

    def test_auto_rollover(self, make_session, storage, audit_storage, balanced_document):
        """Test auto-rollover applies closed windows and stays saveable."""
        store(storage, balanced_document)
        session = make_session()

        async def run():
            await session.load()
            await session.set_auto_rollover(True)
            applied = await session.run_auto_rollover(now=datetime(2024, 2, 7))
            await session.save()
            return applied

        assert asyncio.run(run()) == [1]
        assert session.document.records[1].rollover_processed is True
        assert AuditEventType.ROLLOVER_APPLIED in event_types(audit_storage)


class TestSessionUndo:
    """Tests for undo offered on repeated adjustments."""

    def test_repeat_prompts_then_undo(self, make_session, storage, audit_storage, balanced_document):
        """Test repeating a change offers undo, and undo restores the document."""
        store(storage, balanced_document)
        session = make_session()

        async def run():
            await session.load()
            original = session.document.model_dump()
            first = await session.change_salary(0, Decimal("11000"), Split(save=1000))
            repeat = await session.change_salary(0, Decimal("11000"), Split(save=1000))
            assert session.document.records[0].income == Decimal("11000")
            await session.undo(AdjustmentKind.SALARY)
            return original, first, repeat

        original, first, repeat = asyncio.run(run())
        assert first.action == UndoAction.NONE
        assert repeat.action == UndoAction.PROMPT
        assert session.document.model_dump() == original
        assert event_types(audit_storage)[-1] == AuditEventType.UNDO_PERFORMED

    def test_repeat_after_other_changes_restores(self, make_session, storage, balanced_document):
        """Test a repeat after unrelated edits restores the snapshot immediately."""
        store(storage, balanced_document)
        session = make_session()

        async def run():
            await session.load()
            await session.split_extra_income(0, Decimal("500"), Split(save=500))
            await session.add_transaction("B", 0, Decimal("100"))
            return await session.split_extra_income(0, Decimal("500"), Split(save=500))

        resolution = asyncio.run(run())
        assert resolution.action == UndoAction.RESTORED
        assert session.document.records[0].extra_income == Decimal("0")
        assert session.document.income_splits == {}
        assert len(session.document.transactions_for("B", 0)) == 1
        assert len(session.history) == 0


class TestCreateSession:
    """Tests for the session factory."""

    def test_in_memory_session(self):
        """Test storage can be disabled explicitly."""
        session = create_session("u1", use_storage=False)
        document = asyncio.run(session.load())
        assert isinstance(session._storage, InMemoryDocumentStorage)
        assert document.records == {}
