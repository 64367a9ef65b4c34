"""
Storage Services Package

Provides the abstract document store interface and its implementations.
The in-memory store is the default; Google Sheets is the persistent backend.
"""

from mandate_tracker.services.storage.interface import (
    MANDATES,
    TRANSACTIONS,
    AuditStorageInterface,
    ConnectionError,
    DocumentRef,
    DocumentStoreInterface,
    DuplicateError,
    NotFoundError,
    Snapshot,
    StorageError,
    StoreTransactionFailure,
    TransactionWriter,
    WriteKind,
    WriteOp,
    stage_writes,
)
from mandate_tracker.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryDocumentStore,
)
from mandate_tracker.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)

__all__ = [
    # Collections
    "MANDATES",
    "TRANSACTIONS",
    # Interfaces
    "AuditStorageInterface",
    "DocumentStoreInterface",
    "DocumentRef",
    "Snapshot",
    "TransactionWriter",
    "WriteKind",
    "WriteOp",
    "stage_writes",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    "StoreTransactionFailure",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryDocumentStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
]
