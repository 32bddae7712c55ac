"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the storage backend because:
1. Users can inspect their stored document directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

LAYOUT:
- Documents sheet: one row per user
  [user_id, revision, updated_at, document_json_1, document_json_2, ...]
  The JSON is split across cells because a single cell holds at most
  50,000 characters.
- AuditLog sheet: one row per audit event (append-only)

TRADEOFFS:
- No transactions: compare-and-swap is a read of the revision cell
  followed by a row update. Good enough for one user editing their own
  document; not a real lock.
- Limited query capabilities (we filter in Python)
"""

import json
from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from budget_ledger.config import get_settings
from budget_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from budget_ledger.models.ledger import FinancialDocument
from budget_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConflictError,
    ConnectionError,
    DocumentStorageInterface,
    StorageError,
)


# Column mappings for Documents sheet (JSON chunks follow these)
DOCUMENT_COLUMNS = [
    "user_id",
    "revision",
    "updated_at",
    "document_json",
]

# Leave headroom below the 50k-per-cell limit
CELL_CHUNK_SIZE = 45000
MAX_DOCUMENT_CHUNKS = 20

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
    "error_message",
    "is_user_action",
]


def _column_letter(index: int) -> str:
    """1-based column index to A1 letters."""
    letters = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

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

    def _get_or_create(self, title: str, columns: list[str], rows: int, cols: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=cols)
            sheet.append_row(columns)
        return sheet

    def get_documents_sheet(self) -> gspread.Worksheet:
        """Get or create the Documents worksheet."""
        return self._get_or_create(
            self._settings.documents_sheet_name,
            DOCUMENT_COLUMNS,
            rows=100,
            cols=len(DOCUMENT_COLUMNS) - 1 + MAX_DOCUMENT_CHUNKS,
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create(
            self._settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
            cols=len(AUDIT_COLUMNS),
        )


class GoogleSheetsDocumentStorage(DocumentStorageInterface):
    """
    Google Sheets implementation of financial document storage.

    Each user's document lives in one row; the document itself is the
    JSON dump of FinancialDocument (without its revision, which has its
    own column).
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @staticmethod
    def _document_to_row(user_id: str, revision: str, document: FinancialDocument) -> list:
        """Convert a document to a spreadsheet row."""
        payload = document.model_dump_json(exclude={"revision"})
        chunks = [
            payload[start:start + CELL_CHUNK_SIZE]
            for start in range(0, len(payload), CELL_CHUNK_SIZE)
        ]
        if len(chunks) > MAX_DOCUMENT_CHUNKS:
            raise StorageError(
                f"Document for {user_id} is too large for the sheet "
                f"({len(payload)} characters)"
            )
        return [user_id, revision, datetime.utcnow().isoformat(), *chunks]

    @staticmethod
    def _row_to_raw(row: list) -> dict[str, Any]:
        """Decode the JSON chunks of a row; the revision is added by the caller."""
        payload = "".join(cell for cell in row[3:] if cell)
        try:
            raw = json.loads(payload) if payload else {}
        except json.JSONDecodeError:
            raw = {}
        # Anything unusable reaches the sanitizer as an empty document
        return raw if isinstance(raw, dict) else {}

    def _find_row(self, sheet: gspread.Worksheet, user_id: str) -> tuple[Optional[int], Optional[list]]:
        """1-based sheet row number and values for a user (header is row 1)."""
        all_rows = sheet.get_all_values()
        for idx, row in enumerate(all_rows[1:], start=2):
            if row and row[0] == user_id:
                return idx, row
        return None, None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def load_raw(self, user_id: str) -> Optional[dict[str, Any]]:
        """Read a user's stored document row."""
        try:
            sheet = self._client.get_documents_sheet()
            _, row = self._find_row(sheet, user_id)
        except Exception as e:
            raise StorageError(f"Failed to load document: {e}")

        if row is None:
            return None
        raw = self._row_to_raw(row)
        raw["revision"] = row[1] if len(row) > 1 and row[1] else None
        return raw

    async def save(
        self,
        user_id: str,
        document: FinancialDocument,
        base_revision: Optional[str],
        force: bool = False,
    ) -> str:
        """Compare-and-swap the user's row."""
        revision = uuid4().hex
        # Oversized documents fail here, outside the retried write
        new_row = self._document_to_row(user_id, revision, document)
        await self._write_row(user_id, new_row, base_revision, force)
        return revision

    @retry(
        retry=retry_if_not_exception_type(ConflictError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _write_row(
        self,
        user_id: str,
        new_row: list,
        base_revision: Optional[str],
        force: bool,
    ) -> None:
        try:
            sheet = self._client.get_documents_sheet()
            row_number, existing = self._find_row(sheet, user_id)
        except Exception as e:
            raise StorageError(f"Failed to save document: {e}")

        stored_revision = None
        if existing is not None:
            stored_revision = existing[1] if len(existing) > 1 and existing[1] else None
        if not force and stored_revision != base_revision:
            raise ConflictError(
                f"Document for {user_id} is at revision {stored_revision}, "
                f"not {base_revision}",
                stored_revision=stored_revision,
            )

        try:
            if row_number is None:
                sheet.append_row(new_row, value_input_option="RAW")
            else:
                # Blank out chunk cells left over from a longer previous document
                padded = new_row + [""] * max(0, len(existing) - len(new_row))
                end_column = _column_letter(len(padded))
                sheet.update(
                    range_name=f"A{row_number}:{end_column}{row_number}",
                    values=[padded],
                    value_input_option="RAW",
                )
        except Exception as e:
            raise StorageError(f"Failed to save document: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _read_events(self, keep) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0] or not keep(row):
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, json.JSONDecodeError):
                # Hand-edited or truncated rows are skipped
                continue
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = self._read_events(
                lambda row: len(row) > 6 and row[6] == str(correlation_id)
            )
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        try:
            events = self._read_events(
                lambda row: len(row) > 5 and row[4] == entity_type and row[5] == entity_id
            )
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
            events = self._read_events(lambda row: True)
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
