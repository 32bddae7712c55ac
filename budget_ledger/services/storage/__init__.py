"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the remote backend; the in-memory backend is used for
tests and local runs. Both are swappable behind the interfaces.
"""

from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    DocumentStorageInterface,
    StorageError,
)
from budget_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryDocumentStorage,
)
from budget_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DocumentStorageInterface",
    # Exceptions
    "ConflictError",
    "ConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryDocumentStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStorage",
]
