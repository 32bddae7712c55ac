"""
Core Data Models for Budget Ledger

These models define the schemas for the financial document and everything
derived from it. They are designed to:
1. Enforce type safety at runtime
2. Be serializable for storage (one JSON document per user)
3. Stay independent of any particular horizon or category count

DESIGN DECISION: Every time-series field is a sparse, index-keyed timeline
(dict[int, ...]). A missing index reads as zero/false, so extending the
horizon never requires reallocating arrays.

DESIGN DECISION: Categories are keyed by name. Nothing below assumes there
are exactly two of them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

from budget_ledger.config import get_settings


ZERO = Decimal("0")

# Compensation sources that are not category names
SAVE_SOURCE = "save"
PREV_SOURCE = "prev"


def to_money(value) -> Decimal:
    """Coerce ints/floats/strings to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def at(timeline: dict[int, Decimal], idx: int) -> Decimal:
    """Read a sparse timeline; missing months are zero."""
    return timeline.get(idx, ZERO)


def _default_horizon() -> int:
    return get_settings().ledger.horizon_months


def _default_categories() -> dict[str, "CategoryBudget"]:
    return {name: CategoryBudget() for name in get_settings().ledger.category_list}


# =============================================================================
# ENUMS
# =============================================================================

class ChangeScope(str, Enum):
    """How far a pending obligation edit reaches."""
    MONTH = "month"      # Exactly one month
    FUTURE = "future"    # From the month to the end of the horizon
    FOREVER = "forever"  # Whole obligation (delete removes it from the list)


class ChangeKind(str, Enum):
    """What a pending change does to the obligation."""
    DELETE = "delete"
    AMOUNT = "amount"


class RebalanceStrategy(str, Enum):
    """Force-rebalance strategies."""
    ADJUST_SAVE = "adjust-save"
    ADJUST_CATEGORY = "adjust-category"
    EQUAL_SPLIT = "equal-split"
    MANUAL = "manual"


class AdjustmentKind(str, Enum):
    """
    Reversible mutation kinds.

    Only the most recent snapshot(s) per kind are kept for undo.
    """
    SALARY = "salary"
    BUDGET = "budget"
    EXTRA_INCOME = "extra_income"
    NEW_EXPENSE = "new_expense"


# =============================================================================
# STORED STATE
# =============================================================================

class Split(BaseModel):
    """
    A save/category split of some amount.

    Used for pending changes, salary and budget redistribution,
    extra income and new expenses.
    """

    save: Decimal = Field(
        default=ZERO,
        description="Portion going to planned savings"
    )
    categories: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Portion per category name"
    )

    @property
    def total(self) -> Decimal:
        return self.save + sum(self.categories.values(), ZERO)

    def for_category(self, name: str) -> Decimal:
        return self.categories.get(name, ZERO)


class MonthRecord(BaseModel):
    """
    Stored state for one month.

    `prev` is either None (derive from the prior month's total savings)
    or a concrete value. When `prev_manual` is set the stored value is
    authoritative even when it diverges from the computed carry.
    """

    income: Decimal = Field(
        default=ZERO,
        ge=0,
        description="Regular income for the month"
    )
    base_salary: Optional[Decimal] = Field(
        default=None,
        description="Salary override recorded by a salary change"
    )
    prev: Optional[Decimal] = Field(
        default=None,
        description="Previous savings carry (None = derived)"
    )
    prev_manual: bool = False
    save: Decimal = Field(
        default=ZERO,
        description="Planned savings"
    )
    default_save: Decimal = Field(
        default=ZERO,
        description="Planned savings before any freed-amount edits"
    )
    extra_income: Decimal = Field(
        default=ZERO,
        ge=0,
        description="One-off extra income"
    )
    bonus: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Per-category bonus overlay (from redistributions)"
    )
    extra: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Per-category share of extra income"
    )
    save_extra: Decimal = Field(
        default=ZERO,
        description="Savings share of extra income"
    )
    rollover_processed: bool = False

    # Manual balance override
    balance_override: Optional[Decimal] = None
    balance_manual: bool = False

    def category_overlay(self, name: str) -> Decimal:
        """Bonus plus extra for one category."""
        return self.bonus.get(name, ZERO) + self.extra.get(name, ZERO)

    @property
    def planned_total(self) -> Decimal:
        """Planned savings including the extra income share."""
        return self.save + self.save_extra

    def clear_overlays(self) -> None:
        self.bonus = {}
        self.extra = {}
        self.save_extra = ZERO


class FixedObligation(BaseModel):
    """
    A recurring fixed expense (rent, subscriptions...).

    An obligation with no positive amount anywhere is treated as deleted
    and pruned after every mutation.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: int = Field(
        ...,
        ge=0,
        description="Stable obligation identifier"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name"
    )
    amounts: dict[int, Decimal] = Field(
        default_factory=dict,
        description="Amount due per month index"
    )
    paid: dict[int, bool] = Field(
        default_factory=dict,
        description="Whether the month's amount has been paid"
    )

    def amount_at(self, idx: int) -> Decimal:
        return at(self.amounts, idx)

    def is_paid(self, idx: int) -> bool:
        return self.paid.get(idx, False)

    @property
    def is_active(self) -> bool:
        return any(amount > 0 for amount in self.amounts.values())

    def first_due_month(self) -> Optional[int]:
        due = sorted(idx for idx, amount in self.amounts.items() if amount > 0)
        return due[0] if due else None


class CategoryBudget(BaseModel):
    """Budgeted and spent timelines for one variable category."""

    budgeted: dict[int, Decimal] = Field(default_factory=dict)
    spent: dict[int, Decimal] = Field(default_factory=dict)

    def budget_at(self, idx: int) -> Decimal:
        return at(self.budgeted, idx)

    def spent_at(self, idx: int) -> Decimal:
        return at(self.spent, idx)


class Compensation(BaseModel):
    """
    How an overspend on a transaction was funded.

    `source` is "save", "prev" or the name of another category.
    Reversal is driven entirely by this record.
    """

    source: str = Field(..., min_length=1)
    amount: Decimal = Field(..., ge=0)
    # "prev" only: the month used the derived carry before this compensation
    prev_was_derived: bool = False


class Transaction(BaseModel):
    """A single spend against a category."""

    amount: Decimal = Field(..., ge=0)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    compensation: Optional[Compensation] = None


class IncomeSplitRecord(BaseModel):
    """How one piece of extra income was divided (display + exact undo)."""

    save: Decimal = ZERO
    categories: dict[str, Decimal] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @property
    def total(self) -> Decimal:
        return self.save + sum(self.categories.values(), ZERO)


class FinancialDocument(BaseModel):
    """
    The whole stored state of one user.

    Loaded wholesale on session start and replaced wholesale on save.
    Engine functions never mutate a document they receive; they work
    on `clone()` and return it.
    """

    horizon: int = Field(
        default_factory=_default_horizon,
        ge=1,
        description="Number of months tracked"
    )
    records: dict[int, MonthRecord] = Field(default_factory=dict)
    obligations: list[FixedObligation] = Field(default_factory=list)
    categories: dict[str, CategoryBudget] = Field(default_factory=_default_categories)
    transactions: dict[str, dict[int, list[Transaction]]] = Field(default_factory=dict)
    income_splits: dict[int, list[IncomeSplitRecord]] = Field(default_factory=dict)
    auto_rollover: bool = False
    revision: Optional[str] = Field(
        default=None,
        description="Opaque revision token assigned by storage"
    )

    @property
    def category_names(self) -> list[str]:
        return list(self.categories)

    @property
    def month_indices(self) -> range:
        return range(self.horizon)

    @property
    def has_data(self) -> bool:
        """
        Has anything been entered yet?

        False for a fresh document, which callers treat as "needs setup".
        """
        for record in self.records.values():
            amounts = [record.income, record.save, record.prev or ZERO, record.extra_income]
            if any(a > 0 for a in amounts) or any(v > 0 for v in record.bonus.values()):
                return True
        if any(o.is_active for o in self.obligations):
            return True
        for budget in self.categories.values():
            if any(v > 0 for v in budget.budgeted.values()) or any(v > 0 for v in budget.spent.values()):
                return True
        if any(log for by_month in self.transactions.values() for log in by_month.values()):
            return True
        return any(self.income_splits.values())

    def clone(self) -> "FinancialDocument":
        return self.model_copy(deep=True)

    def record(self, idx: int) -> MonthRecord:
        """Read-only view of a month; missing months read as defaults."""
        return self.records.get(idx) or MonthRecord()

    def record_for_update(self, idx: int) -> MonthRecord:
        """Month record stored in this document (created on demand)."""
        return self.records.setdefault(idx, MonthRecord())

    def fixed_total(self, idx: int) -> Decimal:
        return sum((o.amount_at(idx) for o in self.obligations), ZERO)

    def fixed_paid(self, idx: int) -> Decimal:
        return sum(
            (o.amount_at(idx) for o in self.obligations if o.is_paid(idx)),
            ZERO,
        )

    def category_total(self, name: str, idx: int) -> Decimal:
        """Budgeted plus overlays for one category and month."""
        budget = self.categories[name].budget_at(idx)
        return budget + self.record(idx).category_overlay(name)

    def available_funds(self, idx: int) -> Decimal:
        """Income plus extra income minus fixed obligations."""
        record = self.record(idx)
        return record.income + record.extra_income - self.fixed_total(idx)

    def transactions_for(self, name: str, idx: int) -> list[Transaction]:
        return self.transactions.get(name, {}).get(idx, [])


# =============================================================================
# CALENDAR + DERIVED RESULTS
# =============================================================================

class MonthItem(BaseModel):
    """One calendar entry supplied to the calculator."""

    name: str = Field(..., min_length=1)
    start: datetime = Field(..., description="When the month's budget period starts")
    billing_day: int = Field(default=1, ge=1, le=31)


class CategoryResult(BaseModel):
    """Derived per-category figures for one month."""

    budget: Decimal
    spent: Decimal
    remaining: Decimal
    previous_remaining: Decimal = ZERO


class MonthlyResult(BaseModel):
    """
    Derived view of one month.

    CRITICAL: Never persisted. Always recomputed from the document.
    """

    month: str
    start: datetime
    income: Decimal
    previous_savings: Decimal
    save: Decimal
    actual_savings: Decimal
    total_savings: Decimal
    balance: Decimal
    fixed_total: Decimal
    fixed_paid: Decimal
    categories: dict[str, CategoryResult]
    overspend: Decimal
    extra_income: Decimal
    freed: Decimal = Field(
        default=ZERO,
        description="Planned savings given up relative to the default"
    )
    passed: bool
    prev_manual: bool
    warning: str = ""
    critical: bool = False
    has_rollover: bool = False
    rollover_days_remaining: Optional[int] = None

    @property
    def rollover_amount(self) -> Decimal:
        """Sum of the previous month's unspent category budgets."""
        return sum(
            (c.previous_remaining for c in self.categories.values()),
            ZERO,
        )


# =============================================================================
# MUTATION INPUTS + UNDO SNAPSHOTS
# =============================================================================

class PendingChange(BaseModel):
    """
    One not-yet-committed edit to a fixed obligation.

    `obligation_index` refers to the obligation list as it stood when the
    batch was built.
    """

    obligation_index: int = Field(..., ge=0)
    month_index: int = Field(default=0, ge=0)
    kind: ChangeKind = ChangeKind.AMOUNT
    scope: ChangeScope = ChangeScope.MONTH
    new_amount: Optional[Decimal] = Field(default=None, ge=0)
    split: Split = Field(default_factory=Split)

    @model_validator(mode='after')
    def validate_amount(self) -> 'PendingChange':
        """Amount edits need a target amount."""
        if self.kind == ChangeKind.AMOUNT and self.new_amount is None:
            raise ValueError("Amount changes require new_amount")
        return self


class AdjustmentKey(BaseModel):
    """Identifies 'the same change' for undo matching."""
    model_config = ConfigDict(frozen=True)

    old_value: Decimal
    new_value: Decimal
    months: tuple[int, ...]
    component: Optional[str] = None


class AdjustmentSnapshot(BaseModel):
    """
    Pre-mutation slice of the document needed to reverse one step.

    Only the months/categories the mutation touched are captured.
    """

    kind: AdjustmentKind
    key: AdjustmentKey
    taken_at: datetime = Field(default_factory=datetime.utcnow)
    records: dict[int, MonthRecord] = Field(default_factory=dict)
    budgets: dict[str, dict[int, Decimal]] = Field(default_factory=dict)
    obligations: Optional[list[FixedObligation]] = None
    income_splits: Optional[dict[int, list[IncomeSplitRecord]]] = None


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class BudgetBalanceResult(BaseModel):
    """Outcome of checking one month against the budget-balance invariant."""

    month_index: int
    valid: bool
    deficit: Decimal = Field(
        default=ZERO,
        description="total - available; positive means over-allocated, 0 when valid"
    )
    message: str = ""
    available: Decimal
    total: Decimal


class BudgetIssue(BaseModel):
    """One month failing the budget-balance invariant."""

    month_index: int = Field(..., ge=0)
    month_name: str
    message: str
    deficit: Decimal
    available: Decimal
    save: Decimal
    category_totals: dict[str, Decimal] = Field(default_factory=dict)


class BudgetIssueSummary(BaseModel):
    """
    Component totals of the first failing month.

    Carries the month index directly so callers can focus it
    without parsing any message text.
    """

    month_index: int
    save: Decimal
    category_totals: dict[str, Decimal] = Field(default_factory=dict)
    available: Decimal


class BudgetIssueReport(BaseModel):
    """All invariant violations across the horizon."""

    issues: list[BudgetIssue] = Field(default_factory=list)
    first_issue: Optional[BudgetIssueSummary] = None

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)

    @property
    def failing_month_indices(self) -> list[int]:
        return [issue.month_index for issue in self.issues]

    @property
    def messages(self) -> list[str]:
        return [issue.message for issue in self.issues]


class SourceAvailability(BaseModel):
    """A funding source able to cover an overspend, with what it holds."""

    source: str
    available: Decimal


class OverspendCheck(BaseModel):
    """Whether a prospective transaction overspends and who could pay for it."""

    would_overspend: bool
    overspend_amount: Decimal = ZERO
    available_sources: list[SourceAvailability] = Field(default_factory=list)

    @property
    def source_names(self) -> list[str]:
        return [s.source for s in self.available_sources]


class ValidationIssue(BaseModel):
    """A single coercion or problem found while sanitizing a stored document."""

    field: str = Field(
        ...,
        description="Dotted path of the field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_type', 'out_of_range')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="warning",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class SanitizationResult(BaseModel):
    """
    Result of coercing an untrusted stored document.

    `value` is always a usable document; `valid` is False when anything
    had to be coerced or dropped.
    """

    valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    value: FinancialDocument

    @property
    def issue_messages(self) -> list[str]:
        return [f"{i.field}: {i.message}" for i in self.issues]
