"""
Audit Models for Budget Ledger

Every mutation of a financial document is logged for audit purposes.
This provides:
1. Complete traceability of how a month's figures came to be
2. Debugging information when a save conflicts or is blocked
3. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every operation on the document has its own event type.
    """
    # Persistence
    DOCUMENT_LOADED = "document_loaded"
    DOCUMENT_CREATED = "document_created"
    DOCUMENT_SANITIZED = "document_sanitized"
    DOCUMENT_SAVED = "document_saved"
    SAVE_CONFLICT = "save_conflict"
    SAVE_BLOCKED = "save_blocked"
    SAVE_FAILED = "save_failed"

    # Obligations and rebalancing
    CHANGES_APPLIED = "changes_applied"
    FORCE_REBALANCE_APPLIED = "force_rebalance_applied"

    # Transactions
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_EDITED = "transaction_edited"
    TRANSACTION_DELETED = "transaction_deleted"
    COMPENSATION_APPLIED = "compensation_applied"
    COMPENSATION_REVERSED = "compensation_reversed"

    # Reversible adjustments
    ADJUSTMENT_APPLIED = "adjustment_applied"
    UNDO_PERFORMED = "undo_performed"
    ROLLOVER_APPLIED = "rollover_applied"
    SAVINGS_WITHDRAWN = "savings_withdrawn"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'document', 'month', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to (user id, month index...)"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one session)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.document_saved(user_id, revision, correlation_id)
        event = AuditEventBuilder.changes_applied(user_id, 3, 2, correlation_id)
    """

    @staticmethod
    def document_loaded(
        user_id: str,
        revision: Optional[str],
        created: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.DOCUMENT_CREATED if created
                else AuditEventType.DOCUMENT_LOADED
            ),
            entity_type="document",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=(
                "No stored document; initialized empty document" if created
                else f"Document loaded at revision {revision}"
            ),
            details={"revision": revision},
        )

    @staticmethod
    def document_sanitized(
        user_id: str,
        issues: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DOCUMENT_SANITIZED,
            severity=AuditSeverity.WARNING,
            entity_type="document",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Stored document coerced with {len(issues)} issues",
            details={"issues": issues[:50]},
        )

    @staticmethod
    def document_saved(
        user_id: str,
        revision: str,
        forced: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DOCUMENT_SAVED,
            entity_type="document",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Document saved at revision {revision}",
            details={"revision": revision, "forced": forced},
            is_user_action=True,
        )

    @staticmethod
    def save_conflict(
        user_id: str,
        base_revision: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_CONFLICT,
            severity=AuditSeverity.WARNING,
            entity_type="document",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Save rejected: stored document changed since it was loaded",
            details={"base_revision": base_revision},
        )

    @staticmethod
    def save_blocked(
        user_id: str,
        month_indices: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_BLOCKED,
            severity=AuditSeverity.WARNING,
            entity_type="document",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Save blocked: {len(month_indices)} months out of balance",
            details={"months": month_indices},
        )

    @staticmethod
    def save_failed(
        user_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="document",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Save failed",
            error_message=error_message,
        )

    @staticmethod
    def changes_applied(
        user_id: str,
        change_count: int,
        obligation_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHANGES_APPLIED,
            entity_type="document",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Applied {change_count} pending obligation changes",
            details={
                "change_count": change_count,
                "obligations_remaining": obligation_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def force_rebalance_applied(
        user_id: str,
        strategy: str,
        month_indices: list[int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FORCE_REBALANCE_APPLIED,
            entity_type="document",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Force rebalance ({strategy}) across {len(month_indices)} months",
            details={"strategy": strategy, "months": month_indices},
            is_user_action=True,
        )

    @staticmethod
    def transaction_recorded(
        event_type: AuditEventType,
        category: str,
        month_index: int,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type="transaction",
            entity_id=f"{category}:{month_index}",
            correlation_id=correlation_id,
            description=f"{event_type.value.replace('_', ' ').capitalize()}: {category} {amount}",
            details={
                "category": category,
                "month": month_index,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def compensation(
        reversed_: bool,
        category: str,
        month_index: int,
        source: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.COMPENSATION_REVERSED if reversed_
                else AuditEventType.COMPENSATION_APPLIED
            ),
            entity_type="transaction",
            entity_id=f"{category}:{month_index}",
            correlation_id=correlation_id,
            description=(
                f"Overspend of {amount} on {category} "
                f"{'returned to' if reversed_ else 'funded from'} {source}"
            ),
            details={
                "category": category,
                "month": month_index,
                "source": source,
                "amount": amount,
            },
        )

    @staticmethod
    def adjustment_applied(
        kind: str,
        months: list[int],
        old_value: str,
        new_value: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ADJUSTMENT_APPLIED,
            entity_type="month",
            entity_id=str(months[0]) if months else None,
            correlation_id=correlation_id,
            description=f"{kind} adjustment {old_value} -> {new_value}",
            details={
                "kind": kind,
                "months": months,
                "old_value": old_value,
                "new_value": new_value,
            },
            is_user_action=True,
        )

    @staticmethod
    def undo_performed(
        kind: str,
        months: list[int],
        automatic: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.UNDO_PERFORMED,
            entity_type="month",
            entity_id=str(months[0]) if months else None,
            correlation_id=correlation_id,
            description=(
                f"{kind} adjustment restored from snapshot"
                + (" (automatic)" if automatic else "")
            ),
            details={"kind": kind, "months": months, "automatic": automatic},
            is_user_action=not automatic,
        )

    @staticmethod
    def rollover_applied(
        month_indices: list[int],
        automatic: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROLLOVER_APPLIED,
            entity_type="month",
            entity_id=str(month_indices[0]) if month_indices else None,
            correlation_id=correlation_id,
            description=f"Rollover moved unspent budget to savings for {len(month_indices)} months",
            details={"months": month_indices, "automatic": automatic},
            is_user_action=not automatic,
        )

    @staticmethod
    def savings_withdrawn(
        month_index: int,
        amount: str,
        from_previous: str,
        from_planned: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVINGS_WITHDRAWN,
            entity_type="month",
            entity_id=str(month_index),
            correlation_id=correlation_id,
            description=f"Withdrew {amount} from savings",
            details={
                "amount": amount,
                "from_previous": from_previous,
                "from_planned": from_planned,
            },
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
