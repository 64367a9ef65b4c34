"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is kept as a storage backend because:
1. Non-technical users can view their mandates and ledger directly
2. No database setup required
3. Built-in backup (Google's infrastructure)

Each collection is one worksheet, one document per row, one column per
field. List fields (skippedMonths) are JSON-serialized.

ATOMICITY: every commit is sent as ONE spreadsheets.batchUpdate request.
The Sheets API applies such a request entirely or not at all, which is
what Pay and Reset need. Within the request, row updates come first,
then row deletions from the bottom up (so indices stay valid), then
appends.

TRADEOFFS:
- No read isolation across processes; concurrent writers are
  last-writer-wins, same as the reconciliation design expects
- Full-sheet reads (fine for personal use)
"""

import asyncio
import json
from typing import Any, NamedTuple, Optional
from uuid import uuid4

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from mandate_tracker.config import GoogleSheetsSettings, get_settings
from mandate_tracker.models.audit import AuditEvent, AuditEventType, AuditSeverity
from mandate_tracker.services.storage.interface import (
    MANDATES,
    TRANSACTIONS,
    AuditStorageInterface,
    ConnectionError,
    DocumentRef,
    DocumentStoreInterface,
    StorageError,
    StoreTransactionFailure,
    TransactionWriter,
    WriteOp,
    stage_writes,
)


# Column mappings per collection (persisted field names)
COLLECTION_COLUMNS = {
    MANDATES: [
        "id",
        "ownerId",
        "name",
        "category",
        "amount",
        "dueDay",
        "lastPaidDate",
        "linkedTransactionId",
        "skippedMonths",
    ],
    TRANSACTIONS: [
        "id",
        "ownerId",
        "amount",
        "description",
        "category",
        "type",
        "date",
    ],
}

# Columns holding JSON-encoded values
JSON_COLUMNS = {"skippedMonths"}

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.
    
    Handles authentication and provides retry logic for API calls.
    """
    
    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets
    
    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings
    
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.
        
        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")
        
        return self._client
    
    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet
    
    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


def encode_cell(column: str, value: Any) -> str:
    """Render one field as a cell string ("" for null)."""
    if value is None:
        return ""
    if column in JSON_COLUMNS:
        return json.dumps(value)
    return str(value)


def decode_cell(column: str, cell: str) -> Any:
    if cell == "":
        return [] if column in JSON_COLUMNS else None
    if column in JSON_COLUMNS:
        return json.loads(cell)
    return cell


class _Table(NamedTuple):
    """One collection's worksheet as read at the start of a commit."""
    sheet_id: int
    # document id -> (0-based sheet row index, document)
    rows: dict[str, tuple[int, dict[str, Any]]]


class GoogleSheetsDocumentStore(DocumentStoreInterface):
    """
    Google Sheets implementation of the document store.
    
    Values come back from Sheets as strings; the pydantic models
    coerce them on load.
    """
    
    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        settings = self._client.settings
        self._sheet_names = {
            MANDATES: settings.mandates_sheet_name,
            TRANSACTIONS: settings.transactions_sheet_name,
        }
        self._lock = asyncio.Lock()
    
    def new_document_id(self, collection: str) -> str:
        return uuid4().hex
    
    def _columns(self, collection: str) -> list[str]:
        try:
            return COLLECTION_COLUMNS[collection]
        except KeyError:
            raise StorageError(f"Unknown collection: {collection}")
    
    def _worksheet(self, collection: str) -> gspread.Worksheet:
        columns = self._columns(collection)
        return self._client.get_worksheet(self._sheet_names[collection], columns)
    
    def _document_to_row(self, collection: str, document: dict[str, Any]) -> list[str]:
        """Convert a document to a spreadsheet row."""
        return [encode_cell(col, document.get(col)) for col in self._columns(collection)]
    
    def _row_to_document(self, collection: str, row: list[str]) -> dict[str, Any]:
        """Convert a spreadsheet row to a document."""
        columns = self._columns(collection)
        # Handle missing trailing cells gracefully
        padded = list(row) + [""] * (len(columns) - len(row))
        return {col: decode_cell(col, padded[i]) for i, col in enumerate(columns)}
    
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _read_table(self, collection: str) -> _Table:
        sheet = self._worksheet(collection)
        rows: dict[str, tuple[int, dict[str, Any]]] = {}
        # Index 0 is the header row
        for idx, row in enumerate(sheet.get_all_values()[1:], start=1):
            if not row or not row[0]:
                continue
            rows[row[0]] = (idx, self._row_to_document(collection, row))
        return _Table(sheet_id=sheet.id, rows=rows)
    
    async def get_document(
        self,
        collection: str,
        document_id: str,
    ) -> Optional[dict[str, Any]]:
        try:
            entry = self._read_table(collection).rows.get(document_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get document: {e}")
        return entry[1] if entry else None
    
    async def list_documents(
        self,
        collection: str,
        owner_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        try:
            table = self._read_table(collection)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list documents: {e}")
        return [
            doc for _, doc in table.rows.values()
            if owner_id is None or doc.get("ownerId") == owner_id
        ]
    
    def _cells(self, row: list[str]) -> dict:
        return {"values": [{"userEnteredValue": {"stringValue": v}} for v in row]}
    
    def _build_requests(
        self,
        tables: dict[str, _Table],
        staged: dict[DocumentRef, Optional[dict[str, Any]]],
    ) -> list[dict]:
        """Translate staged document states into batchUpdate requests."""
        updates, deletes, appends = [], [], []
        
        for ref, document in staged.items():
            table = tables[ref.collection]
            existing = table.rows.get(ref.document_id)
            
            if document is None:
                if existing is not None:
                    deletes.append((table.sheet_id, existing[0]))
                continue
            
            row = self._document_to_row(ref.collection, document)
            if existing is not None:
                updates.append({
                    "updateCells": {
                        "range": {
                            "sheetId": table.sheet_id,
                            "startRowIndex": existing[0],
                            "endRowIndex": existing[0] + 1,
                            "startColumnIndex": 0,
                            "endColumnIndex": len(row),
                        },
                        "rows": [self._cells(row)],
                        "fields": "userEnteredValue",
                    }
                })
            else:
                appends.append({
                    "appendCells": {
                        "sheetId": table.sheet_id,
                        "rows": [self._cells(row)],
                        "fields": "userEnteredValue",
                    }
                })
        
        # Bottom-up so earlier deletions don't shift later indices
        deletes.sort(key=lambda d: d[1], reverse=True)
        delete_requests = [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": sheet_id,
                        "dimension": "ROWS",
                        "startIndex": index,
                        "endIndex": index + 1,
                    }
                }
            }
            for sheet_id, index in deletes
        ]
        
        return updates + delete_requests + appends
    
    def _load_tables(self, collections: set[str], tables: dict[str, _Table]) -> None:
        for collection in collections - set(tables):
            try:
                tables[collection] = self._read_table(collection)
            except StoreTransactionFailure:
                raise
            except Exception as e:
                raise StoreTransactionFailure(f"Failed to read {collection}: {e}") from e
    
    def _commit(self, write_ops: list[WriteOp], tables: dict[str, _Table]) -> None:
        self._load_tables({op.collection for op in write_ops}, tables)
        
        def load(ref: DocumentRef) -> Optional[dict[str, Any]]:
            entry = tables[ref.collection].rows.get(ref.document_id)
            return dict(entry[1]) if entry else None
        
        staged = stage_writes(write_ops, load)
        requests = self._build_requests(tables, staged)
        if not requests:
            return
        
        # Never retried: a failed commit is reported, not replayed
        try:
            self._client.get_spreadsheet().batch_update({"requests": requests})
        except Exception as e:
            raise StoreTransactionFailure(f"Sheets commit failed: {e}") from e
    
    async def run_transaction(
        self,
        read_set: list[DocumentRef],
        writer: TransactionWriter,
    ) -> list[WriteOp]:
        async with self._lock:
            tables: dict[str, _Table] = {}
            self._load_tables({ref.collection for ref in read_set}, tables)
            snapshot = {}
            for ref in read_set:
                entry = tables[ref.collection].rows.get(ref.document_id)
                snapshot[ref] = dict(entry[1]) if entry else None
            
            write_ops = writer(snapshot)
            self._commit(write_ops, tables)
            return write_ops
    
    async def run_batch(self, write_ops: list[WriteOp]) -> None:
        async with self._lock:
            self._commit(write_ops, {})


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.
    
    Audit events are append-only.
    """
    
    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
    
    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )
    
    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default
        
        return AuditEvent(
            event_id=safe_get(0),
            timestamp=safe_get(1),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=safe_get(6) or None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_code=safe_get(9) or None,
            error_message=safe_get(10) or None,
            is_user_action=safe_get(11).lower() == "true",
        )
    
    def _read_events(self) -> list[AuditEvent]:
        events = []
        for row in self._sheet().get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except Exception:
                continue  # Skip malformed rows
        return events
    
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")
    
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            events = [
                e for e in self._read_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events
    
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._read_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
