"""
Abstract Document Store Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real document database later
2. Use in-memory storage for testing
3. Keep reconciliation logic decoupled from storage implementation

The store is document-oriented: each collection holds JSON-safe dicts
keyed by an opaque id. The only multi-document primitives are
run_transaction (read, then write atomically) and run_batch (write
atomically). Both are all-or-nothing; there is no partial commit.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, NamedTuple, Optional

from pydantic import BaseModel, Field

from mandate_tracker.exceptions import MandateTrackerError
from mandate_tracker.models.audit import AuditEvent


MANDATES = "mandates"
TRANSACTIONS = "transactions"


class DocumentRef(NamedTuple):
    """Address of one document."""
    collection: str
    document_id: str


class WriteKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class WriteOp(BaseModel):
    """
    One write inside an atomic commit.
    
    UPDATE merges data into the existing document and fails the whole
    commit if the document is missing. DELETE of a missing document is
    a no-op.
    """
    
    kind: WriteKind
    collection: str = Field(..., min_length=1)
    document_id: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    
    @property
    def ref(self) -> DocumentRef:
        return DocumentRef(self.collection, self.document_id)
    
    @classmethod
    def create(cls, collection: str, document_id: str, data: dict[str, Any]) -> "WriteOp":
        return cls(kind=WriteKind.CREATE, collection=collection, document_id=document_id, data=data)
    
    @classmethod
    def update(cls, collection: str, document_id: str, data: dict[str, Any]) -> "WriteOp":
        return cls(kind=WriteKind.UPDATE, collection=collection, document_id=document_id, data=data)
    
    @classmethod
    def delete(cls, collection: str, document_id: str) -> "WriteOp":
        return cls(kind=WriteKind.DELETE, collection=collection, document_id=document_id)


# Documents read at the start of a transaction (None = absent)
Snapshot = dict[DocumentRef, Optional[dict[str, Any]]]

# Called with the snapshot; returns the writes to commit.
# Raising inside the writer aborts the transaction with nothing written.
TransactionWriter = Callable[[Snapshot], list[WriteOp]]


class DocumentStoreInterface(ABC):
    """
    Abstract interface for the mandate and ledger stores.
    
    Any storage implementation (Google Sheets, Firestore, etc.)
    must implement these methods. Every document returned carries
    its own id under the "id" key.
    """
    
    @abstractmethod
    def new_document_id(self, collection: str) -> str:
        """
        Reserve a fresh id for a document that will be created later.
        
        Lets a transaction reference a document (e.g. link a mandate to
        a new ledger entry) before it is written.
        """
        pass
    
    @abstractmethod
    async def get_document(
        self,
        collection: str,
        document_id: str,
    ) -> Optional[dict[str, Any]]:
        """
        Retrieve a document by id.
        
        Returns:
            The document if found, None otherwise
        """
        pass
    
    @abstractmethod
    async def list_documents(
        self,
        collection: str,
        owner_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """
        List documents in a collection, optionally for one owner.
        
        Returns:
            Matching documents in no particular order
        """
        pass
    
    @abstractmethod
    async def run_transaction(
        self,
        read_set: list[DocumentRef],
        writer: TransactionWriter,
    ) -> list[WriteOp]:
        """
        Read a consistent snapshot, then commit the writer's writes atomically.
        
        Args:
            read_set: Documents to read before writing
            writer: Builds the writes from the snapshot
        
        Returns:
            The write operations that were committed
        
        Raises:
            StoreTransactionFailure: If the commit did not happen
            NotFoundError: If an UPDATE targets a missing document
        """
        pass
    
    @abstractmethod
    async def run_batch(self, write_ops: list[WriteOp]) -> None:
        """
        Commit writes atomically without a read phase.
        
        Raises:
            StoreTransactionFailure: If the commit did not happen
            NotFoundError: If an UPDATE targets a missing document
        """
        pass
    
    async def create_document(
        self,
        collection: str,
        data: dict[str, Any],
        document_id: Optional[str] = None,
    ) -> str:
        """Create one document and return its id."""
        document_id = document_id or self.new_document_id(collection)
        await self.run_batch([WriteOp.create(collection, document_id, data)])
        return document_id
    
    async def update_document(
        self,
        collection: str,
        document_id: str,
        data: dict[str, Any],
    ) -> None:
        """Merge data into an existing document."""
        await self.run_batch([WriteOp.update(collection, document_id, data)])
    
    async def delete_document(self, collection: str, document_id: str) -> None:
        """Delete one document (no-op if absent)."""
        await self.run_batch([WriteOp.delete(collection, document_id)])


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.
    
    Audit logs are append-only - we never delete or modify them.
    """
    
    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.
        
        Returns:
            True if logged successfully
        """
        pass
    
    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass
    
    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


def stage_writes(
    write_ops: list[WriteOp],
    load: Callable[[DocumentRef], Optional[dict[str, Any]]],
) -> dict[DocumentRef, Optional[dict[str, Any]]]:
    """
    Fold a list of writes into the final state of every touched document.
    
    Backends call this before committing so validation failures
    (duplicate create, update of a missing document) abort the commit
    before anything is written.
    
    Returns:
        {ref: final_document} with None meaning "deleted"
    """
    staged: dict[DocumentRef, Optional[dict[str, Any]]] = {}
    
    for op in write_ops:
        ref = op.ref
        current = staged[ref] if ref in staged else load(ref)
        
        if op.kind == WriteKind.CREATE:
            if current is not None:
                raise DuplicateError(f"Document already exists: {ref.collection}/{ref.document_id}")
            staged[ref] = {**op.data, "id": ref.document_id}
        elif op.kind == WriteKind.UPDATE:
            if current is None:
                raise NotFoundError(f"Document not found: {ref.collection}/{ref.document_id}")
            staged[ref] = {**current, **op.data, "id": ref.document_id}
        else:
            staged[ref] = None
    
    return staged


class StorageError(MandateTrackerError):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to create a document whose id already exists."""
    pass


class StoreTransactionFailure(StorageError):
    """An atomic commit did not happen; nothing was written."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
