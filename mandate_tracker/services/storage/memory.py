"""
In-Memory Document Store

Keeps every collection in a dict. Used by tests and as the default
backend when no Google Sheets spreadsheet is configured.

Commits are applied by building the new state first and swapping it
in only when every write validated, so a failure leaves the store
exactly as it was. An asyncio.Lock serializes transactions, which
gives each one a consistent snapshot.
"""

import asyncio
import copy
from typing import Any, Optional
from uuid import uuid4

from mandate_tracker.models.audit import AuditEvent
from mandate_tracker.services.storage.interface import (
    AuditStorageInterface,
    DocumentRef,
    DocumentStoreInterface,
    StorageError,
    StoreTransactionFailure,
    TransactionWriter,
    WriteOp,
    stage_writes,
)


class InMemoryDocumentStore(DocumentStoreInterface):
    """Dict-backed implementation of DocumentStoreInterface."""
    
    def __init__(self, initial: Optional[dict[str, dict[str, dict[str, Any]]]] = None):
        self._collections: dict[str, dict[str, dict[str, Any]]] = copy.deepcopy(initial or {})
        self._lock = asyncio.Lock()
    
    def new_document_id(self, collection: str) -> str:
        return uuid4().hex
    
    def _load(self, ref: DocumentRef) -> Optional[dict[str, Any]]:
        document = self._collections.get(ref.collection, {}).get(ref.document_id)
        return copy.deepcopy(document) if document is not None else None
    
    async def get_document(
        self,
        collection: str,
        document_id: str,
    ) -> Optional[dict[str, Any]]:
        return self._load(DocumentRef(collection, document_id))
    
    async def list_documents(
        self,
        collection: str,
        owner_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        documents = self._collections.get(collection, {}).values()
        return [
            copy.deepcopy(doc)
            for doc in documents
            if owner_id is None or doc.get("ownerId") == owner_id
        ]
    
    def _commit(self, staged: dict[DocumentRef, Optional[dict[str, Any]]]) -> None:
        """Swap the staged documents in. Must not fail halfway."""
        collections = {name: dict(docs) for name, docs in self._collections.items()}
        for ref, document in staged.items():
            docs = collections.setdefault(ref.collection, {})
            if document is None:
                docs.pop(ref.document_id, None)
            else:
                docs[ref.document_id] = copy.deepcopy(document)
        self._collections = collections
    
    def _apply(self, write_ops: list[WriteOp]) -> None:
        staged = stage_writes(write_ops, self._load)
        try:
            self._commit(staged)
        except StorageError:
            raise
        except Exception as e:
            raise StoreTransactionFailure(f"Commit failed: {e}") from e
    
    async def run_transaction(
        self,
        read_set: list[DocumentRef],
        writer: TransactionWriter,
    ) -> list[WriteOp]:
        async with self._lock:
            snapshot = {ref: self._load(ref) for ref in read_set}
            write_ops = writer(snapshot)
            self._apply(write_ops)
            return write_ops
    
    async def run_batch(self, write_ops: list[WriteOp]) -> None:
        async with self._lock:
            self._apply(write_ops)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""
    
    def __init__(self):
        self._events: list[AuditEvent] = []
    
    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True
    
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events
    
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
