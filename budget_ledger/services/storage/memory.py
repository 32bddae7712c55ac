"""
In-memory storage.

Used for tests and local experiments. Documents are kept as serialized
JSON, exactly as a remote store would hold them, so loading always goes
through the same decode + sanitize path.
"""

import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from budget_ledger.models.audit import AuditEvent
from budget_ledger.models.ledger import FinancialDocument
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    DocumentStorageInterface,
)


class InMemoryDocumentStorage(DocumentStorageInterface):
    """One serialized document per user, with a revision token."""

    def __init__(self):
        # user_id -> (revision, updated_at, document_json)
        self._rows: dict[str, tuple[str, datetime, str]] = {}

    async def load_raw(self, user_id: str) -> Optional[dict[str, Any]]:
        row = self._rows.get(user_id)
        if row is None:
            return None
        revision, _, document_json = row
        raw = json.loads(document_json)
        if not isinstance(raw, dict):
            raw = {}
        raw["revision"] = revision
        return raw

    async def save(
        self,
        user_id: str,
        document: FinancialDocument,
        base_revision: Optional[str],
        force: bool = False,
    ) -> str:
        stored = self._rows.get(user_id)
        stored_revision = stored[0] if stored else None
        if not force and stored_revision != base_revision:
            raise ConflictError(
                f"Document for {user_id} is at revision {stored_revision}, "
                f"not {base_revision}",
                stored_revision=stored_revision,
            )

        revision = uuid4().hex
        self._rows[user_id] = (
            revision,
            datetime.utcnow(),
            document.model_dump_json(exclude={"revision"}),
        )
        return revision

    def put_raw(self, user_id: str, raw: Any, revision: Optional[str] = None) -> str:
        """Store arbitrary JSON as-is (simulates a corrupted or foreign writer)."""
        revision = revision or uuid4().hex
        self._rows[user_id] = (revision, datetime.utcnow(), json.dumps(raw, default=str))
        return revision

    def revision_of(self, user_id: str) -> Optional[str]:
        row = self._rows.get(user_id)
        return row[0] if row else None


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
