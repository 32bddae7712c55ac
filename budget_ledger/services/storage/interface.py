"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the ledger engine decoupled from storage implementation

The interface is intentionally simple. A financial document is read and
written wholesale, and every write carries the revision it was derived
from (optimistic concurrency). The engine only ever sees the revision as
an opaque token.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import FinancialDocument
from budget_ledger.validation.sanitizer import sanitize_document


class DocumentStorageInterface(ABC):
    """
    Abstract interface for financial document storage.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def load_raw(self, user_id: str) -> Optional[dict[str, Any]]:
        """
        Read the stored document for a user without trusting its shape.

        Args:
            user_id: Owner of the document

        Returns:
            Decoded JSON with the current "revision" set, or None if the
            user has no stored document

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def save(
        self,
        user_id: str,
        document: FinancialDocument,
        base_revision: Optional[str],
        force: bool = False,
    ) -> str:
        """
        Replace the stored document (compare-and-swap on revision).

        Args:
            user_id: Owner of the document
            document: The full document to store
            base_revision: Revision the document was derived from
                (None if it was never stored)
            force: Overwrite regardless of the stored revision

        Returns:
            The new revision token

        Raises:
            ConflictError: The stored revision is not `base_revision`
            StorageError: If the write fails
        """
        pass

    async def load(self, user_id: str) -> Optional[FinancialDocument]:
        """
        Load and sanitize a user's document.

        Shape problems are absorbed into defaults; use `load_raw` together
        with `sanitize_document` to see what was coerced.
        """
        raw = await self.load_raw(user_id)
        if raw is None:
            return None
        return sanitize_document(raw).value


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one ledger session).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'document', 'transaction')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConflictError(StorageError):
    """
    The stored document changed since it was loaded.

    Not retryable: the caller must reload (discard local changes) or
    save with force=True (overwrite).
    """

    def __init__(self, message: str, stored_revision: Optional[str] = None):
        self.stored_revision = stored_revision
        super().__init__(message)


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
