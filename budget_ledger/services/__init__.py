"""Services package."""

from budget_ledger.services.storage import (
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    DocumentStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStorage,
    InMemoryAuditStorage,
    InMemoryDocumentStorage,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ConflictError",
    "ConnectionError",
    "DocumentStorageInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStorage",
    "InMemoryAuditStorage",
    "InMemoryDocumentStorage",
    "StorageError",
]
