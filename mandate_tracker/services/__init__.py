"""Services package."""

from mandate_tracker.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DocumentStoreInterface,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    NotFoundError,
    StorageError,
    StoreTransactionFailure,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "DocumentStoreInterface",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryAuditStorage",
    "InMemoryDocumentStore",
    "NotFoundError",
    "StorageError",
    "StoreTransactionFailure",
]
