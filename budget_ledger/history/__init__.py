"""Snapshot-based undo for reversible adjustments."""

from budget_ledger.history.store import (
    AdjustmentCommand,
    AdjustmentHistory,
    NothingToUndoError,
    UndoAction,
    UndoResolution,
    capture_snapshot,
    restore_snapshot,
)

__all__ = [
    "AdjustmentCommand",
    "AdjustmentHistory",
    "NothingToUndoError",
    "UndoAction",
    "UndoResolution",
    "capture_snapshot",
    "restore_snapshot",
]
