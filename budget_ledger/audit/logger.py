"""
Audit Logger

DESIGN DECISION: Every mutation of a financial document is logged.
This provides:
1. Complete traceability
2. Debugging capability (why was a save blocked? who overwrote what?)
3. User can see history of their adjustments

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from budget_ledger.config import get_settings
from budget_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from budget_ledger.services.storage import AuditStorageInterface


def configure_logging(log_level: Optional[str] = None) -> None:
    """Configure structlog for local JSON logging at the configured level."""
    level = log_level or get_settings().app.log_level
    logging.basicConfig(format="%(message)s", level=getattr(logging, level))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("budget_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_document_loaded(
        self,
        user_id: str,
        revision: Optional[str],
        created: bool,
        correlation_id: UUID,
    ) -> None:
        """Log a document load (or initialization of an empty one)."""
        event = AuditEventBuilder.document_loaded(
            user_id=user_id,
            revision=revision,
            created=created,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_document_sanitized(
        self,
        user_id: str,
        issues: list[str],
        correlation_id: UUID,
    ) -> None:
        """Log coercions made while loading a stored document."""
        event = AuditEventBuilder.document_sanitized(
            user_id=user_id,
            issues=issues,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_document_saved(
        self,
        user_id: str,
        revision: str,
        forced: bool,
        correlation_id: UUID,
    ) -> None:
        """Log a successful save."""
        event = AuditEventBuilder.document_saved(
            user_id=user_id,
            revision=revision,
            forced=forced,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_save_conflict(
        self,
        user_id: str,
        base_revision: Optional[str],
        correlation_id: UUID,
    ) -> None:
        """Log a save rejected by compare-and-swap."""
        event = AuditEventBuilder.save_conflict(
            user_id=user_id,
            base_revision=base_revision,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_save_blocked(
        self,
        user_id: str,
        month_indices: list[int],
        correlation_id: UUID,
    ) -> None:
        """Log a save refused because months are out of balance."""
        event = AuditEventBuilder.save_blocked(
            user_id=user_id,
            month_indices=month_indices,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_save_failed(
        self,
        user_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a storage failure during save."""
        event = AuditEventBuilder.save_failed(
            user_id=user_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_changes_applied(
        self,
        user_id: str,
        change_count: int,
        obligation_count: int,
        correlation_id: UUID,
    ) -> None:
        """Log a committed batch of obligation changes."""
        event = AuditEventBuilder.changes_applied(
            user_id=user_id,
            change_count=change_count,
            obligation_count=obligation_count,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_force_rebalance(
        self,
        user_id: str,
        strategy: str,
        month_indices: list[int],
        correlation_id: UUID,
    ) -> None:
        """Log a force rebalance."""
        event = AuditEventBuilder.force_rebalance_applied(
            user_id=user_id,
            strategy=strategy,
            month_indices=month_indices,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction(
        self,
        event_type: AuditEventType,
        category: str,
        month_index: int,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        """Log a transaction add/edit/delete."""
        event = AuditEventBuilder.transaction_recorded(
            event_type=event_type,
            category=category,
            month_index=month_index,
            amount=amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_compensation(
        self,
        reversed_: bool,
        category: str,
        month_index: int,
        source: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        """Log a compensation being applied or reversed."""
        event = AuditEventBuilder.compensation(
            reversed_=reversed_,
            category=category,
            month_index=month_index,
            source=source,
            amount=amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_adjustment(
        self,
        kind: str,
        months: list[int],
        old_value: str,
        new_value: str,
        correlation_id: UUID,
    ) -> None:
        """Log a reversible adjustment."""
        event = AuditEventBuilder.adjustment_applied(
            kind=kind,
            months=months,
            old_value=old_value,
            new_value=new_value,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_undo(
        self,
        kind: str,
        months: list[int],
        automatic: bool,
        correlation_id: UUID,
    ) -> None:
        """Log an undo (explicit, or automatic restore)."""
        event = AuditEventBuilder.undo_performed(
            kind=kind,
            months=months,
            automatic=automatic,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_rollover(
        self,
        month_indices: list[int],
        automatic: bool,
        correlation_id: UUID,
    ) -> None:
        """Log rollover into savings."""
        event = AuditEventBuilder.rollover_applied(
            month_indices=month_indices,
            automatic=automatic,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_withdrawal(
        self,
        month_index: int,
        amount: str,
        from_previous: str,
        from_planned: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.savings_withdrawn(
            month_index=month_index,
            amount=amount,
            from_previous=from_previous,
            from_planned=from_planned,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new session.
    Pass it through all subsequent operations.
    """
    return uuid4()
