"""
Data Models Package

This package contains all Pydantic models used by the budget ledger.
Stored documents and everything derived from them conform to these schemas.
"""

from budget_ledger.models.ledger import (
    PREV_SOURCE,
    SAVE_SOURCE,
    ZERO,
    AdjustmentKey,
    AdjustmentKind,
    AdjustmentSnapshot,
    BudgetBalanceResult,
    BudgetIssue,
    BudgetIssueReport,
    BudgetIssueSummary,
    CategoryBudget,
    CategoryResult,
    ChangeKind,
    ChangeScope,
    Compensation,
    FinancialDocument,
    FixedObligation,
    IncomeSplitRecord,
    MonthItem,
    MonthRecord,
    MonthlyResult,
    OverspendCheck,
    PendingChange,
    RebalanceStrategy,
    SanitizationResult,
    SourceAvailability,
    Split,
    Transaction,
    ValidationIssue,
    at,
    to_money,
)
from budget_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "PREV_SOURCE",
    "SAVE_SOURCE",
    "ZERO",
    "AdjustmentKey",
    "AdjustmentKind",
    "AdjustmentSnapshot",
    "BudgetBalanceResult",
    "BudgetIssue",
    "BudgetIssueReport",
    "BudgetIssueSummary",
    "CategoryBudget",
    "CategoryResult",
    "ChangeKind",
    "ChangeScope",
    "Compensation",
    "FinancialDocument",
    "FixedObligation",
    "IncomeSplitRecord",
    "MonthItem",
    "MonthRecord",
    "MonthlyResult",
    "OverspendCheck",
    "PendingChange",
    "RebalanceStrategy",
    "SanitizationResult",
    "SourceAvailability",
    "Split",
    "Transaction",
    "ValidationIssue",
    "at",
    "to_money",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
