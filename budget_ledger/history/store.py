"""
Adjustment History Store

Keeps the most recent undo snapshot(s) per adjustment kind.

DESIGN DECISION: Undo is a command history owned by the core, not by
the caller. Each entry holds the pre-mutation snapshot and knows how to
invert itself onto a document.

Undo is only offered when the caller is about to re-apply the *same*
change (same kind, same old/new values, same months). If other unsaved
changes have piled up since, a bare prompt would be unsafe, so the
store restores the snapshot immediately instead.
"""

from collections import deque
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel

from budget_ledger.config import get_settings
from budget_ledger.models.ledger import (
    AdjustmentKey,
    AdjustmentKind,
    AdjustmentSnapshot,
    FinancialDocument,
)


class NothingToUndoError(LookupError):
    """No snapshot is recorded for the requested kind."""


class UndoAction(str, Enum):
    """What `resolve` decided."""
    NONE = "none"          # No matching snapshot
    PROMPT = "prompt"      # Caller may offer undo
    RESTORED = "restored"  # Snapshot already restored


class UndoResolution(BaseModel):
    action: UndoAction
    snapshot: Optional[AdjustmentSnapshot] = None
    document: Optional[FinancialDocument] = None


def capture_snapshot(
    document: FinancialDocument,
    kind: AdjustmentKind,
    key: AdjustmentKey,
    include_obligations: bool = False,
    include_income_splits: bool = False,
) -> AdjustmentSnapshot:
    """
    Copy the slice of `document` a mutation over `key.months` may touch.

    Months with no stored record (or no stored budget) are left out of the
    slice; restoring then removes whatever the mutation created there.
    """
    records = {
        idx: document.records[idx].model_copy(deep=True)
        for idx in key.months
        if idx in document.records
    }
    budgets = {
        name: {
            idx: budget.budgeted[idx]
            for idx in key.months
            if idx in budget.budgeted
        }
        for name, budget in document.categories.items()
    }
    return AdjustmentSnapshot(
        kind=kind,
        key=key,
        records=records,
        budgets=budgets,
        obligations=(
            [o.model_copy(deep=True) for o in document.obligations]
            if include_obligations else None
        ),
        income_splits=(
            {idx: [s.model_copy() for s in splits]
             for idx, splits in document.income_splits.items()}
            if include_income_splits else None
        ),
    )


def restore_snapshot(
    document: FinancialDocument,
    snapshot: AdjustmentSnapshot,
) -> FinancialDocument:
    """Put the captured slice back exactly. Returns a new document."""
    restored = document.clone()

    for idx in snapshot.key.months:
        if idx in snapshot.records:
            restored.records[idx] = snapshot.records[idx].model_copy(deep=True)
        else:
            restored.records.pop(idx, None)

    for name, slice_ in snapshot.budgets.items():
        budget = restored.categories.get(name)
        if budget is None:
            continue
        for idx in snapshot.key.months:
            if idx in slice_:
                budget.budgeted[idx] = slice_[idx]
            else:
                budget.budgeted.pop(idx, None)

    if snapshot.obligations is not None:
        restored.obligations = [o.model_copy(deep=True) for o in snapshot.obligations]
    if snapshot.income_splits is not None:
        restored.income_splits = {
            idx: [s.model_copy() for s in splits]
            for idx, splits in snapshot.income_splits.items()
        }
    return restored


class AdjustmentCommand:
    """One reversible step: its snapshot and how to invert it."""

    def __init__(self, snapshot: AdjustmentSnapshot):
        self.snapshot = snapshot

    @property
    def kind(self) -> AdjustmentKind:
        return self.snapshot.kind

    def matches(self, key: AdjustmentKey) -> bool:
        return self.snapshot.key == key

    def invert(self, document: FinancialDocument) -> FinancialDocument:
        return restore_snapshot(document, self.snapshot)

    def __repr__(self) -> str:
        return f"AdjustmentCommand(kind={self.kind.value}, months={list(self.snapshot.key.months)})"


class AdjustmentHistory:
    """
    Bounded per-kind history of adjustment commands.

    With the default depth of 1, a second mutation of the same kind
    overwrites the first one's undo capability.
    """

    def __init__(self, depth: Optional[int] = None):
        self._depth = depth or get_settings().ledger.history_depth
        self._entries: dict[AdjustmentKind, deque[AdjustmentCommand]] = {
            kind: deque(maxlen=self._depth) for kind in AdjustmentKind
        }

    @property
    def depth(self) -> int:
        return self._depth

    def record(self, snapshot: AdjustmentSnapshot) -> AdjustmentCommand:
        command = AdjustmentCommand(snapshot)
        self._entries[snapshot.kind].append(command)
        return command

    def latest(self, kind: AdjustmentKind) -> Optional[AdjustmentCommand]:
        entries = self._entries[AdjustmentKind(kind)]
        return entries[-1] if entries else None

    def kinds_with_history(self) -> Iterable[AdjustmentKind]:
        return [kind for kind, entries in self._entries.items() if entries]

    def resolve(
        self,
        kind: AdjustmentKind,
        key: AdjustmentKey,
        document: FinancialDocument,
        has_unsaved_changes: bool,
    ) -> UndoResolution:
        """
        Decide what to do when the caller is about to apply `key` again.

        Returns:
            NONE when nothing matches, PROMPT when undo can be offered,
            RESTORED (with the restored document) when other unsaved
            changes exist and the snapshot was restored immediately
        """
        command = self.latest(kind)
        if command is None or not command.matches(key):
            return UndoResolution(action=UndoAction.NONE)

        if not has_unsaved_changes:
            return UndoResolution(action=UndoAction.PROMPT, snapshot=command.snapshot)

        self._entries[command.kind].pop()
        return UndoResolution(
            action=UndoAction.RESTORED,
            snapshot=command.snapshot,
            document=command.invert(document),
        )

    def undo(self, kind: AdjustmentKind, document: FinancialDocument) -> FinancialDocument:
        """
        Restore the latest snapshot of `kind` and drop it.

        Raises:
            NothingToUndoError: no snapshot recorded for `kind`
        """
        kind = AdjustmentKind(kind)
        entries = self._entries[kind]
        if not entries:
            raise NothingToUndoError(f"Nothing to undo for {kind.value}")
        return entries.pop().invert(document)

    def clear(self) -> None:
        for entries in self._entries.values():
            entries.clear()

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())
