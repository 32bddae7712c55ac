"""
Session Orchestrator for Budget Ledger

This module ties together the engine, validation, history, storage and
audit components around one user's financial document:
load → mutate → validate → save.

DESIGN DECISION: The orchestrator enforces the boundaries:
- A save is refused while any month breaks the budget-balance invariant
- A save never silently overwrites a newer stored revision
- Every mutation is audited

The engine functions are pure; this is the only place that holds the
current document, its base revision, and the "unsaved changes" state.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

import structlog

from budget_ledger.audit import AuditLogger, create_correlation_id
from budget_ledger.engine import (
    add_obligation,
    add_transaction,
    apply_auto_rollover,
    apply_changes,
    apply_force_rebalance,
    apply_rollover,
    build_calendar,
    calculate_monthly,
    change_budget,
    change_salary,
    delete_transaction,
    edit_transaction,
    split_extra_income,
    withdraw_from_savings,
)
from budget_ledger.history import AdjustmentHistory, UndoAction, UndoResolution
from budget_ledger.models.audit import AuditEventType
from budget_ledger.models.ledger import (
    AdjustmentKey,
    AdjustmentKind,
    AdjustmentSnapshot,
    BudgetIssueReport,
    FinancialDocument,
    FixedObligation,
    MonthItem,
    MonthlyResult,
    PendingChange,
    RebalanceStrategy,
    Split,
)
from budget_ledger.services.storage import (
    AuditStorageInterface,
    ConflictError,
    DocumentStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStorage,
    InMemoryAuditStorage,
    InMemoryDocumentStorage,
    StorageError,
)
from budget_ledger.validation import (
    BudgetImbalanceError,
    compute_budget_issues,
    require_month,
    sanitize_document,
)


logger = structlog.get_logger(__name__)


class SessionNotLoadedError(RuntimeError):
    """An operation needs a loaded document."""


class LedgerSession:
    """
    One user's editing session.

    Flow:
    1. load() → sanitize stored document, remember its revision
    2. mutate (changes, rebalance, transactions, adjustments, rollover)
    3. save() → refuse if unbalanced, compare-and-swap on revision

    Mutations are applied in call order on the current document.
    """

    def __init__(
        self,
        user_id: str,
        storage: DocumentStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        history: Optional[AdjustmentHistory] = None,
        months: Optional[list[MonthItem]] = None,
        calendar_start: Optional[datetime] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        correlation_id: Optional[UUID] = None,
    ):
        self._user_id = user_id
        self._storage = storage
        self._audit_logger = audit_logger or AuditLogger()
        self._history = history or AdjustmentHistory()
        self._months = months
        self._fixed_calendar = months is not None
        self._calendar_start = calendar_start
        self._clock = clock
        self._correlation_id = correlation_id or create_correlation_id()

        self._document: Optional[FinancialDocument] = None
        self._revision: Optional[str] = None
        self._has_unsaved_changes = False
        # Mutation counter; lets undo tell "other changes since" apart
        self._mutations = 0
        self._recorded_at: dict[AdjustmentKind, int] = {}

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def document(self) -> FinancialDocument:
        if self._document is None:
            raise SessionNotLoadedError("Call load() before using the session")
        return self._document

    @property
    def revision(self) -> Optional[str]:
        return self._revision

    @property
    def has_unsaved_changes(self) -> bool:
        return self._has_unsaved_changes

    @property
    def history(self) -> AdjustmentHistory:
        return self._history

    @property
    def correlation_id(self) -> UUID:
        return self._correlation_id

    @property
    def months(self) -> list[MonthItem]:
        if self._months is None:
            start = self._calendar_start or self._clock()
            self._months = build_calendar(start, self.document.horizon)
        return self._months

    def results(self, now: Optional[datetime] = None) -> list[MonthlyResult]:
        """Derived per-month view of the current document."""
        return calculate_monthly(self.document, self.months, now or self._clock())

    def issues(self) -> BudgetIssueReport:
        """Budget-balance violations in the current document."""
        return compute_budget_issues(self.document, self.months)

    def _replace(self, document: FinancialDocument) -> None:
        self._document = document
        self._has_unsaved_changes = True
        self._mutations += 1

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    async def load(self) -> FinancialDocument:
        """
        Load the stored document (or start an empty one).

        Stored shape problems are coerced and audited, never raised.
        """
        raw = await self._storage.load_raw(self._user_id)

        if raw is None:
            logger.info("no_stored_document", user_id=self._user_id)
            self._document = FinancialDocument()
            self._revision = None
        else:
            result = sanitize_document(raw)
            self._document = result.value
            self._revision = result.value.revision
            if not result.valid:
                await self._audit_logger.log_document_sanitized(
                    user_id=self._user_id,
                    issues=result.issue_messages,
                    correlation_id=self._correlation_id,
                )

        self._has_unsaved_changes = False
        self._history.clear()
        if not self._fixed_calendar:
            self._months = None
        self._recorded_at.clear()

        await self._audit_logger.log_document_loaded(
            user_id=self._user_id,
            revision=self._revision,
            created=raw is None,
            correlation_id=self._correlation_id,
        )
        return self._document

    async def reload(self) -> FinancialDocument:
        """Discard local changes and load the stored document again."""
        return await self.load()

    async def save(self, force: bool = False) -> str:
        """
        Persist the current document.

        Args:
            force: Overwrite even if the stored revision has moved

        Returns:
            The new revision

        Raises:
            BudgetImbalanceError: some month breaks the invariant
            ConflictError: stored document changed since load (and not forced)
            StorageError: the write failed (retryable)
        """
        document = self.document
        report = self.issues()
        if report.has_issues:
            await self._audit_logger.log_save_blocked(
                user_id=self._user_id,
                month_indices=report.failing_month_indices,
                correlation_id=self._correlation_id,
            )
            raise BudgetImbalanceError(report)

        try:
            revision = await self._storage.save(
                self._user_id, document, self._revision, force=force
            )
        except ConflictError:
            await self._audit_logger.log_save_conflict(
                user_id=self._user_id,
                base_revision=self._revision,
                correlation_id=self._correlation_id,
            )
            raise
        except StorageError as e:
            await self._audit_logger.log_save_failed(
                user_id=self._user_id,
                error_message=str(e),
                correlation_id=self._correlation_id,
            )
            raise

        self._revision = revision
        document.revision = revision
        self._has_unsaved_changes = False

        await self._audit_logger.log_document_saved(
            user_id=self._user_id,
            revision=revision,
            forced=force,
            correlation_id=self._correlation_id,
        )
        return revision

    # -------------------------------------------------------------------------
    # Obligations and rebalancing
    # -------------------------------------------------------------------------

    async def apply_changes(
        self,
        pending_changes: list[PendingChange],
        forward_from_month: Optional[int] = None,
    ) -> FinancialDocument:
        """Commit a batch of pending obligation changes."""
        updated = apply_changes(self.document, pending_changes, forward_from_month)
        self._replace(updated)
        await self._audit_logger.log_changes_applied(
            user_id=self._user_id,
            change_count=len(pending_changes),
            obligation_count=len(updated.obligations),
            correlation_id=self._correlation_id,
        )
        return updated

    async def force_rebalance(
        self,
        strategy: RebalanceStrategy,
        category: Optional[str] = None,
        manual: Optional[Split] = None,
        month_indices: Optional[list[int]] = None,
    ) -> FinancialDocument:
        """
        Rebalance failing months.

        The month list is captured once up front (defaults to every
        month currently failing the invariant).
        """
        if month_indices is None:
            month_indices = self.issues().failing_month_indices
        targets = list(month_indices)

        updated = apply_force_rebalance(
            self.document, targets, strategy, category=category, manual=manual
        )
        self._replace(updated)
        await self._audit_logger.log_force_rebalance(
            user_id=self._user_id,
            strategy=RebalanceStrategy(strategy).value,
            month_indices=targets,
            correlation_id=self._correlation_id,
        )
        return updated

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _previous_savings(self, month: int) -> Decimal:
        results = self.results()
        require_month(month, min(self.document.horizon, len(results)))
        return results[month].previous_savings

    async def _log_compensation_change(
        self,
        before: FinancialDocument,
        after: FinancialDocument,
        category: str,
        month: int,
    ) -> None:
        old = [t.compensation for t in before.transactions_for(category, month) if t.compensation]
        new = [t.compensation for t in after.transactions_for(category, month) if t.compensation]
        for comp in old:
            if comp not in new:
                await self._audit_logger.log_compensation(
                    reversed_=True, category=category, month_index=month,
                    source=comp.source, amount=str(comp.amount),
                    correlation_id=self._correlation_id,
                )
        for comp in new:
            if comp not in old:
                await self._audit_logger.log_compensation(
                    reversed_=False, category=category, month_index=month,
                    source=comp.source, amount=str(comp.amount),
                    correlation_id=self._correlation_id,
                )

    async def add_transaction(
        self,
        category: str,
        month: int,
        amount: Decimal,
        source: Optional[str] = None,
    ) -> FinancialDocument:
        """
        Record a spend.

        Raises:
            CompensationRequiredError: overspend without a funding source
        """
        before = self.document
        updated = add_transaction(
            before, category, month, amount, source=source,
            previous_savings=self._previous_savings(month),
            timestamp=self._clock(),
        )
        self._replace(updated)
        await self._audit_logger.log_transaction(
            event_type=AuditEventType.TRANSACTION_ADDED,
            category=category, month_index=month, amount=str(amount),
            correlation_id=self._correlation_id,
        )
        await self._log_compensation_change(before, updated, category, month)
        return updated

    async def edit_transaction(
        self,
        category: str,
        month: int,
        position: int,
        new_amount: Decimal,
        source: Optional[str] = None,
    ) -> FinancialDocument:
        before = self.document
        updated = edit_transaction(
            before, category, month, position, new_amount, source=source,
            previous_savings=self._previous_savings(month),
        )
        self._replace(updated)
        await self._audit_logger.log_transaction(
            event_type=AuditEventType.TRANSACTION_EDITED,
            category=category, month_index=month, amount=str(new_amount),
            correlation_id=self._correlation_id,
        )
        await self._log_compensation_change(before, updated, category, month)
        return updated

    async def delete_transaction(
        self,
        category: str,
        month: int,
        position: int,
    ) -> FinancialDocument:
        before = self.document
        updated = delete_transaction(before, category, month, position)
        removed = before.transactions_for(category, month)[position]
        self._replace(updated)
        await self._audit_logger.log_transaction(
            event_type=AuditEventType.TRANSACTION_DELETED,
            category=category, month_index=month, amount=str(removed.amount),
            correlation_id=self._correlation_id,
        )
        await self._log_compensation_change(before, updated, category, month)
        return updated

    # -------------------------------------------------------------------------
    # Reversible adjustments
    # -------------------------------------------------------------------------

    async def _adjust(
        self,
        kind: AdjustmentKind,
        month: int,
        value: Decimal,
        component: Optional[str],
        apply: Callable[[], tuple[FinancialDocument, AdjustmentSnapshot]],
        allow_repeat: bool,
    ) -> UndoResolution:
        """
        Apply an adjustment unless it repeats the last one of its kind.

        A repeat yields PROMPT (nothing applied; the caller may undo or
        pass allow_repeat) or, when other changes happened since, an
        immediate RESTORED.
        """
        command = self._history.latest(kind)
        if not allow_repeat and command is not None \
                and self._repeats(command.snapshot.key, kind, month, value, component):
            other_changes = self._mutations > self._recorded_at.get(kind, self._mutations)
            resolution = self._history.resolve(
                kind, command.snapshot.key, self.document, other_changes
            )
            if resolution.action == UndoAction.RESTORED:
                self._replace(resolution.document)
                self._recorded_at.pop(kind, None)
                await self._audit_logger.log_undo(
                    kind=kind.value,
                    months=list(resolution.snapshot.key.months),
                    automatic=True,
                    correlation_id=self._correlation_id,
                )
            return resolution

        updated, snapshot = apply()
        self._replace(updated)
        self._history.record(snapshot)
        self._recorded_at[kind] = self._mutations
        await self._audit_logger.log_adjustment(
            kind=kind.value,
            months=list(snapshot.key.months),
            old_value=str(snapshot.key.old_value),
            new_value=str(snapshot.key.new_value),
            correlation_id=self._correlation_id,
        )
        return UndoResolution(action=UndoAction.NONE, snapshot=snapshot, document=updated)

    @staticmethod
    def _repeats(
        key: AdjustmentKey,
        kind: AdjustmentKind,
        month: int,
        value: Decimal,
        component: Optional[str],
    ) -> bool:
        """Is the requested change the one `key` describes?"""
        if not key.months or key.months[0] != month or key.component != component:
            return False
        if kind == AdjustmentKind.EXTRA_INCOME:
            # Extra income is additive; compare the amount added
            return key.new_value - key.old_value == value
        return key.new_value == value

    async def change_salary(
        self,
        month: int,
        new_income: Decimal,
        split: Split,
        apply_future: bool = False,
        allow_repeat: bool = False,
    ) -> UndoResolution:
        """Change income (and allocate the difference), or offer undo on a repeat."""
        return await self._adjust(
            AdjustmentKind.SALARY, month, new_income, None,
            lambda: change_salary(self.document, month, new_income, split, apply_future),
            allow_repeat,
        )

    async def change_budget(
        self,
        month: int,
        component: str,
        new_value: Decimal,
        redistribution: Split,
        apply_future: bool = False,
        allow_repeat: bool = False,
    ) -> UndoResolution:
        return await self._adjust(
            AdjustmentKind.BUDGET, month, new_value, component,
            lambda: change_budget(
                self.document, month, component, new_value, redistribution, apply_future
            ),
            allow_repeat,
        )

    async def split_extra_income(
        self,
        month: int,
        amount: Decimal,
        split: Split,
        allow_repeat: bool = False,
    ) -> UndoResolution:
        return await self._adjust(
            AdjustmentKind.EXTRA_INCOME, month, amount, None,
            lambda: split_extra_income(
                self.document, month, amount, split, timestamp=self._clock()
            ),
            allow_repeat,
        )

    async def add_obligation(
        self,
        obligation: FixedObligation,
        split: Split,
        apply_to_all: bool = True,
        allow_repeat: bool = False,
    ) -> UndoResolution:
        first_due = obligation.first_due_month()
        return await self._adjust(
            AdjustmentKind.NEW_EXPENSE,
            first_due if first_due is not None else -1,
            obligation.amount_at(first_due) if first_due is not None else Decimal("0"),
            obligation.name,
            lambda: add_obligation(self.document, obligation, split, apply_to_all),
            allow_repeat,
        )

    async def undo(self, kind: AdjustmentKind) -> FinancialDocument:
        """
        Restore the latest snapshot of `kind`.

        Raises:
            NothingToUndoError: nothing recorded for `kind`
        """
        kind = AdjustmentKind(kind)
        command = self._history.latest(kind)
        restored = self._history.undo(kind, self.document)
        self._replace(restored)
        self._recorded_at.pop(kind, None)
        await self._audit_logger.log_undo(
            kind=kind.value,
            months=list(command.snapshot.key.months),
            automatic=False,
            correlation_id=self._correlation_id,
        )
        return restored

    # -------------------------------------------------------------------------
    # Rollover
    # -------------------------------------------------------------------------

    async def set_auto_rollover(self, enabled: bool) -> FinancialDocument:
        updated = self.document.clone()
        updated.auto_rollover = enabled
        self._replace(updated)
        return updated

    async def apply_rollover(self, month: int) -> FinancialDocument:
        """Absorb the previous month's unspent budgets into this month's savings."""
        updated = apply_rollover(self.document, month, self.results())
        self._replace(updated)
        await self._audit_logger.log_rollover(
            month_indices=[month],
            automatic=False,
            correlation_id=self._correlation_id,
        )
        return updated

    async def run_auto_rollover(self, now: Optional[datetime] = None) -> list[int]:
        """Apply rollover to every month whose window closed (if enabled)."""
        now = now or self._clock()
        updated, applied = apply_auto_rollover(self.document, self.results(now), now)
        if applied:
            self._replace(updated)
            await self._audit_logger.log_rollover(
                month_indices=applied,
                automatic=True,
                correlation_id=self._correlation_id,
            )
        return applied

    async def withdraw_from_savings(self, month: int, amount: Decimal) -> FinancialDocument:
        """
        Take money out of the month's total savings.

        Previous savings go first; the rest comes out of planned savings
        and the month must be rebalanced before it can be saved.
        """
        results = self.results()
        updated = withdraw_from_savings(self.document, month, amount, results)
        from_previous = min(amount, max(Decimal("0"), results[month].previous_savings))
        self._replace(updated)
        await self._audit_logger.log_withdrawal(
            month_index=month,
            amount=str(amount),
            from_previous=str(from_previous),
            from_planned=str(amount - from_previous),
            correlation_id=self._correlation_id,
        )
        return updated


def create_session(
    user_id: str,
    use_storage: bool = True,
    months: Optional[list[MonthItem]] = None,
) -> LedgerSession:
    """
    Factory function to create a ledger session.

    Args:
        user_id: Owner of the document
        use_storage: Whether to use Google Sheets storage.
                    Set to False (or leave Sheets unconfigured) to keep
                    everything in memory.
        months: Optional calendar; defaults to one starting this month

    Returns:
        An unloaded LedgerSession (call `await session.load()`)
    """
    document_storage: DocumentStorageInterface
    audit_storage: AuditStorageInterface

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            document_storage = GoogleSheetsDocumentStorage(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            document_storage = InMemoryDocumentStorage()
            audit_storage = InMemoryAuditStorage()
    else:
        document_storage = InMemoryDocumentStorage()
        audit_storage = InMemoryAuditStorage()

    return LedgerSession(
        user_id=user_id,
        storage=document_storage,
        audit_logger=AuditLogger(audit_storage),
        months=months,
    )
