"""
Stored Document Sanitizer

Coerces an untrusted stored document (decoded JSON) into a well-typed
FinancialDocument, field by field.

IMPORTANT: This never raises on malformed data. Anything missing or of
the wrong type falls back to a safe default and is reported as a
ValidationIssue so the caller can surface it. The engine itself then
only ever sees well-typed documents.

Timelines may be stored either sparse ({"3": 100}) or as dense lists
([0, 0, 0, 100]); both load into the sparse form.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from budget_ledger.config import get_settings
from budget_ledger.models.ledger import (
    ZERO,
    CategoryBudget,
    Compensation,
    FinancialDocument,
    FixedObligation,
    IncomeSplitRecord,
    MonthRecord,
    SanitizationResult,
    Transaction,
    ValidationIssue,
)


class _Collector:
    """Accumulates issues while walking the raw document."""

    def __init__(self):
        self.issues: list[ValidationIssue] = []

    def add(self, field: str, issue_type: str, message: str, severity: str = "warning"):
        self.issues.append(ValidationIssue(
            field=field,
            issue_type=issue_type,
            message=message,
            severity=severity,
        ))


def _parse_money(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    return amount if amount.is_finite() else None


def _money(
    raw: dict,
    key: str,
    path: str,
    out: _Collector,
    default: Optional[Decimal] = ZERO,
    non_negative: bool = False,
    required: bool = True,
) -> Optional[Decimal]:
    if key not in raw or raw[key] is None:
        if required:
            out.add(f"{path}.{key}", "missing", f"missing, using {default}")
        return default
    amount = _parse_money(raw[key])
    if amount is None:
        out.add(f"{path}.{key}", "invalid_type", f"not a number ({raw[key]!r}), using {default}")
        return default
    if non_negative and amount < 0:
        out.add(f"{path}.{key}", "out_of_range", f"negative ({amount}), using {default}")
        return default
    return amount


def _flag(raw: dict, key: str, path: str, out: _Collector, required: bool = True) -> bool:
    value = raw.get(key)
    if isinstance(value, bool):
        return value
    if value is not None or required:
        out.add(f"{path}.{key}", "invalid_type", "missing or not a boolean, using false")
    return False


def _index(key: Any, horizon: int) -> Optional[int]:
    try:
        idx = int(key)
    except (TypeError, ValueError):
        return None
    return idx if 0 <= idx < horizon else None


def _items(raw: Any) -> Optional[list[tuple[Any, Any]]]:
    """Key/value pairs of a sparse dict or a dense list timeline."""
    if isinstance(raw, dict):
        return list(raw.items())
    if isinstance(raw, list):
        return list(enumerate(raw))
    return None


def _money_timeline(
    raw: Any,
    path: str,
    horizon: int,
    out: _Collector,
) -> dict[int, Decimal]:
    if raw is None:
        return {}
    pairs = _items(raw)
    if pairs is None:
        out.add(path, "invalid_type", "timeline is not a mapping or list, using empty")
        return {}

    timeline: dict[int, Decimal] = {}
    for key, value in pairs:
        idx = _index(key, horizon)
        if idx is None:
            out.add(f"{path}[{key}]", "out_of_range", "month index outside horizon, dropped")
            continue
        amount = _parse_money(value)
        if amount is None:
            out.add(f"{path}[{key}]", "invalid_type", f"not a number ({value!r}), dropped")
            continue
        if amount != 0:
            timeline[idx] = amount
    return timeline


def _flag_timeline(raw: Any, path: str, horizon: int, out: _Collector) -> dict[int, bool]:
    if raw is None:
        return {}
    pairs = _items(raw)
    if pairs is None:
        out.add(path, "invalid_type", "timeline is not a mapping or list, using empty")
        return {}

    timeline: dict[int, bool] = {}
    for key, value in pairs:
        idx = _index(key, horizon)
        if idx is None or not isinstance(value, bool):
            out.add(f"{path}[{key}]", "invalid_type", "invalid entry, dropped")
            continue
        if value:
            timeline[idx] = True
    return timeline


def _category_map(raw: Any, path: str, names: list[str], out: _Collector) -> dict[str, Decimal]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        out.add(path, "invalid_type", "not a mapping, using empty")
        return {}
    result: dict[str, Decimal] = {}
    for name, value in raw.items():
        if name not in names:
            out.add(f"{path}.{name}", "unknown_category", "unknown category, dropped")
            continue
        amount = _parse_money(value)
        if amount is None:
            out.add(f"{path}.{name}", "invalid_type", f"not a number ({value!r}), dropped")
            continue
        if amount != 0:
            result[name] = amount
    return result


def _timestamp(raw: Any) -> Optional[datetime]:
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, str):
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None
    return None


def _sanitize_record(raw: Any, path: str, names: list[str], out: _Collector) -> MonthRecord:
    if not isinstance(raw, dict):
        out.add(path, "invalid_type", "month record is not an object, using defaults")
        return MonthRecord()

    prev = _money(raw, "prev", path, out, default=None, required=False)
    balance_override = _money(raw, "balance_override", path, out, default=None, required=False)
    base_salary = _money(raw, "base_salary", path, out, default=None, required=False)

    return MonthRecord(
        income=_money(raw, "income", path, out, non_negative=True),
        base_salary=base_salary,
        prev=prev,
        prev_manual=_flag(raw, "prev_manual", path, out),
        save=_money(raw, "save", path, out),
        default_save=_money(raw, "default_save", path, out),
        extra_income=_money(raw, "extra_income", path, out, non_negative=True, required=False),
        bonus=_category_map(raw.get("bonus"), f"{path}.bonus", names, out),
        extra=_category_map(raw.get("extra"), f"{path}.extra", names, out),
        save_extra=_money(raw, "save_extra", path, out, required=False),
        rollover_processed=_flag(raw, "rollover_processed", path, out),
        balance_override=balance_override,
        balance_manual=_flag(raw, "balance_manual", path, out, required=False),
    )


def _sanitize_obligation(
    raw: Any,
    position: int,
    horizon: int,
    out: _Collector,
) -> FixedObligation:
    path = f"obligations[{position}]"
    obj = raw if isinstance(raw, dict) else {}
    if not isinstance(raw, dict):
        out.add(path, "invalid_type", "obligation is not an object")

    obligation_id = obj.get("id")
    if isinstance(obligation_id, bool) or not isinstance(obligation_id, int) or obligation_id < 0:
        out.add(f"{path}.id", "invalid_type", f"missing or invalid, using {position + 1}")
        obligation_id = position + 1

    name = obj.get("name")
    if not isinstance(name, str) or not name.strip():
        out.add(f"{path}.name", "invalid_type", f"missing or invalid, using 'Expense {position + 1}'")
        name = f"Expense {position + 1}"
    name = name.strip()[:200]

    if "amounts" not in obj:
        out.add(f"{path}.amounts", "missing", "missing, using empty")

    return FixedObligation(
        id=obligation_id,
        name=name,
        amounts=_money_timeline(obj.get("amounts"), f"{path}.amounts", horizon, out),
        paid=_flag_timeline(obj.get("paid"), f"{path}.paid", horizon, out),
    )


def _sanitize_transactions(
    raw: Any,
    names: list[str],
    horizon: int,
    out: _Collector,
) -> dict[str, dict[int, list[Transaction]]]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        out.add("transactions", "invalid_type", "not a mapping, using empty")
        return {}

    result: dict[str, dict[int, list[Transaction]]] = {}
    for name, per_month in raw.items():
        if name not in names:
            out.add(f"transactions.{name}", "unknown_category", "unknown category, dropped")
            continue
        pairs = _items(per_month)
        if pairs is None:
            out.add(f"transactions.{name}", "invalid_type", "not a mapping, dropped")
            continue
        for key, entries in pairs:
            idx = _index(key, horizon)
            if idx is None or not isinstance(entries, list):
                out.add(f"transactions.{name}[{key}]", "invalid_type", "invalid month entry, dropped")
                continue
            kept = []
            for position, entry in enumerate(entries):
                transaction = _sanitize_transaction(
                    entry, f"transactions.{name}[{idx}][{position}]", names, out
                )
                if transaction is not None:
                    kept.append(transaction)
            if kept:
                result.setdefault(name, {})[idx] = kept
    return result


def _sanitize_transaction(
    raw: Any,
    path: str,
    names: list[str],
    out: _Collector,
) -> Optional[Transaction]:
    if not isinstance(raw, dict):
        out.add(path, "invalid_type", "transaction is not an object, dropped")
        return None
    amount = _parse_money(raw.get("amount"))
    if amount is None or amount < 0:
        out.add(f"{path}.amount", "invalid_type", "missing, invalid or negative, dropped")
        return None

    timestamp = _timestamp(raw.get("timestamp"))
    if timestamp is None:
        out.add(f"{path}.timestamp", "invalid_type", "missing or invalid, using now", severity="info")
        timestamp = datetime.utcnow()

    compensation = None
    raw_comp = raw.get("compensation")
    if raw_comp is not None:
        source = raw_comp.get("source") if isinstance(raw_comp, dict) else None
        comp_amount = _parse_money(raw_comp.get("amount")) if isinstance(raw_comp, dict) else None
        valid_sources = set(names) | {"save", "prev"}
        if source in valid_sources and comp_amount is not None and comp_amount >= 0:
            compensation = Compensation(
                source=source,
                amount=comp_amount,
                prev_was_derived=source == "prev" and raw_comp.get("prev_was_derived") is True,
            )
        else:
            out.add(f"{path}.compensation", "invalid_type", "invalid compensation, dropped")

    return Transaction(amount=amount, timestamp=timestamp, compensation=compensation)


def _sanitize_income_splits(
    raw: Any,
    names: list[str],
    horizon: int,
    out: _Collector,
) -> dict[int, list[IncomeSplitRecord]]:
    if raw is None:
        return {}
    pairs = _items(raw)
    if pairs is None:
        out.add("income_splits", "invalid_type", "not a mapping, using empty")
        return {}

    result: dict[int, list[IncomeSplitRecord]] = {}
    for key, entries in pairs:
        idx = _index(key, horizon)
        if idx is None or not isinstance(entries, list):
            out.add(f"income_splits[{key}]", "invalid_type", "invalid month entry, dropped")
            continue
        kept = []
        for position, entry in enumerate(entries):
            path = f"income_splits[{idx}][{position}]"
            if not isinstance(entry, dict):
                out.add(path, "invalid_type", "split record is not an object, dropped")
                continue
            kept.append(IncomeSplitRecord(
                save=_money(entry, "save", path, out),
                categories=_category_map(entry.get("categories"), f"{path}.categories", names, out),
                timestamp=_timestamp(entry.get("timestamp")) or datetime.utcnow(),
            ))
        if kept:
            result[idx] = kept
    return result


def sanitize_document(
    raw: Any,
    horizon: Optional[int] = None,
    categories: Optional[list[str]] = None,
) -> SanitizationResult:
    """
    Coerce untrusted stored data into a FinancialDocument.

    Args:
        raw: Decoded JSON (anything)
        horizon: Fallback horizon when the stored one is unusable
        categories: Category names to keep when the stored map is unusable

    Returns:
        SanitizationResult; `value` is always a usable document
    """
    ledger_settings = get_settings().ledger
    fallback_horizon = horizon or ledger_settings.horizon_months
    fallback_names = categories or ledger_settings.category_list
    out = _Collector()

    if not isinstance(raw, dict):
        out.add("document", "invalid_type", "financial document is not an object", severity="error")
        empty = FinancialDocument(
            horizon=fallback_horizon,
            categories={name: CategoryBudget() for name in fallback_names},
        )
        return SanitizationResult(valid=False, issues=out.issues, value=empty)

    doc_horizon = raw.get("horizon")
    if isinstance(doc_horizon, bool) or not isinstance(doc_horizon, int) or doc_horizon < 1:
        out.add("horizon", "invalid_type", f"missing or invalid, using {fallback_horizon}")
        doc_horizon = fallback_horizon

    raw_categories = raw.get("categories")
    budgets: dict[str, CategoryBudget] = {}
    if isinstance(raw_categories, dict) and raw_categories:
        for name, entry in raw_categories.items():
            if not isinstance(name, str) or not name or name in ("save", "prev"):
                out.add(f"categories.{name}", "invalid_type", "invalid category name, dropped")
                continue
            entry = entry if isinstance(entry, dict) else {}
            budgets[name] = CategoryBudget(
                budgeted=_money_timeline(
                    entry.get("budgeted"), f"categories.{name}.budgeted", doc_horizon, out
                ),
                spent=_money_timeline(
                    entry.get("spent"), f"categories.{name}.spent", doc_horizon, out
                ),
            )
    if not budgets:
        out.add("categories", "missing", f"missing or invalid, using {fallback_names}")
        budgets = {name: CategoryBudget() for name in fallback_names}
    names = list(budgets)

    records: dict[int, MonthRecord] = {}
    raw_records = raw.get("records")
    pairs = _items(raw_records) if raw_records is not None else []
    if pairs is None:
        out.add("records", "invalid_type", "not a mapping or list, using defaults")
        pairs = []
    for key, entry in pairs:
        idx = _index(key, doc_horizon)
        if idx is None:
            out.add(f"records[{key}]", "out_of_range", "month index outside horizon, dropped")
            continue
        records[idx] = _sanitize_record(entry, f"records[{idx}]", names, out)

    raw_obligations = raw.get("obligations")
    if raw_obligations is None:
        raw_obligations = []
    elif not isinstance(raw_obligations, list):
        out.add("obligations", "invalid_type", "not a list, using empty")
        raw_obligations = []
    obligations = [
        _sanitize_obligation(entry, position, doc_horizon, out)
        for position, entry in enumerate(raw_obligations)
    ]

    auto_rollover = raw.get("auto_rollover", False)
    if not isinstance(auto_rollover, bool):
        out.add("auto_rollover", "invalid_type", "not a boolean, using false")
        auto_rollover = False

    revision = raw.get("revision")
    if revision is not None and not isinstance(revision, str):
        revision = str(revision)

    document = FinancialDocument(
        horizon=doc_horizon,
        records=records,
        obligations=obligations,
        categories=budgets,
        transactions=_sanitize_transactions(raw.get("transactions"), names, doc_horizon, out),
        income_splits=_sanitize_income_splits(raw.get("income_splits"), names, doc_horizon, out),
        auto_rollover=auto_rollover,
        revision=revision,
    )
    return SanitizationResult(valid=not out.issues, issues=out.issues, value=document)
