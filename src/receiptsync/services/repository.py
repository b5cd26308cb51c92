"""SQLite-backed local receipt store."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any

from receiptsync.models import (
    DocumentFormat,
    LineItem,
    ParsedReceipt,
    ProcessingStatus,
    ReceiptRecord,
)
from receiptsync.models.receipt import utcnow

if TYPE_CHECKING:
    from collections.abc import Iterator

    from receiptsync.models import RawDocument

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when a commit to the local store fails."""


class DuplicateReceiptError(PersistenceError):
    """Raised when a receipt number is already held by another record."""


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS receipts (
        id TEXT PRIMARY KEY,
        receipt_number TEXT,
        vendor_name TEXT NOT NULL,
        store_location TEXT,
        transaction_date TEXT,
        subtotal TEXT NOT NULL,
        tax TEXT NOT NULL,
        total TEXT NOT NULL,
        status TEXT NOT NULL,
        notes TEXT,
        last_sent_subtotal TEXT,
        raw_document BLOB,
        document_format TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS line_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        receipt_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        name TEXT NOT NULL,
        unit_price TEXT NOT NULL,
        quantity INTEGER NOT NULL,
        item_code TEXT,
        category TEXT,
        FOREIGN KEY (receipt_id) REFERENCES receipts(id) ON DELETE CASCADE
    )
    """,
    # SQLite treats NULLs as distinct, so only non-null numbers are constrained
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_receipt_number "
    "ON receipts(receipt_number)",
    "CREATE INDEX IF NOT EXISTS idx_line_items_receipt ON line_items(receipt_id)",
    "CREATE INDEX IF NOT EXISTS idx_transaction_date ON receipts(transaction_date)",
)

_RECEIPT_COLUMNS = (
    "id",
    "receipt_number",
    "vendor_name",
    "store_location",
    "transaction_date",
    "subtotal",
    "tax",
    "total",
    "status",
    "notes",
    "last_sent_subtotal",
    "raw_document",
    "document_format",
    "created_at",
    "updated_at",
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _decimal(value: Decimal | None) -> str | None:
    return f"{value:.2f}" if value is not None else None


class ReceiptRepository:
    """Authoritative local store of ingested receipts.

    Every mutating call is a single transaction: it either lands completely or
    is rolled back and raises ``PersistenceError``. Writes are serialized with
    a lock; reads open their own connection and see the last commit. Nothing
    is cached in memory, so a failed commit cannot leave a stale copy behind.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        """Initialize the repository and its schema."""
        self.db_path = Path(db_path or "data/receipts.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._init_database()

    def _init_database(self) -> None:
        """Initialize the SQLite database schema."""
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection; commit on success, roll back on error."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            if "receipt_number" in str(e):
                msg = f"Receipt number already exists: {e}"
                raise DuplicateReceiptError(msg) from e
            msg = f"Integrity error: {e}"
            raise PersistenceError(msg) from e
        except sqlite3.Error as e:
            conn.rollback()
            msg = f"Database error: {e}"
            raise PersistenceError(msg) from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction."""
        with self._write_lock, self._connect() as conn:
            yield conn

    # Mutations

    def upsert_from_parse(
        self,
        parsed: ParsedReceipt,
        raw_document: RawDocument | None = None,
        *,
        store_location: str | None = None,
    ) -> ReceiptRecord:
        """Create a new pending record from extracted data.

        Local-first ingestion never merges by key; callers are responsible for
        not ingesting the same physical document twice.
        """
        record = ReceiptRecord.from_parsed(
            parsed,
            raw_document=raw_document.content if raw_document else None,
            document_format=raw_document.format if raw_document else None,
            store_location=store_location,
        )
        return self.insert(record)

    def insert(self, record: ReceiptRecord) -> ReceiptRecord:
        """Persist a new record with its line items."""
        with self._transaction() as conn:
            conn.execute(
                f"INSERT INTO receipts ({', '.join(_RECEIPT_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _RECEIPT_COLUMNS)})",
                self._receipt_row(record),
            )
            self._write_line_items(conn, record)
        logger.info(
            "Inserted receipt",
            extra={"receipt_id": record.id, "receipt_number": record.receipt_number},
        )
        return record

    def save(self, record: ReceiptRecord) -> ReceiptRecord:
        """Update parent fields and replace all line items atomically."""
        saved = record.model_copy(update={"updated_at": utcnow()})
        assignments = ", ".join(f"{col} = ?" for col in _RECEIPT_COLUMNS[1:])
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE receipts SET {assignments} WHERE id = ?",  # noqa: S608
                (*self._receipt_row(saved)[1:], saved.id),
            )
            if cursor.rowcount == 0:
                msg = f"Receipt {saved.id} does not exist"
                raise PersistenceError(msg)
            conn.execute("DELETE FROM line_items WHERE receipt_id = ?", (saved.id,))
            self._write_line_items(conn, saved)
        return saved

    def touch(self, record: ReceiptRecord) -> ReceiptRecord:
        """Re-commit only the record's update timestamp."""
        touched = record.model_copy(update={"updated_at": utcnow()})
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE receipts SET updated_at = ? WHERE id = ?",
                (_iso(touched.updated_at), touched.id),
            )
            if cursor.rowcount == 0:
                msg = f"Receipt {touched.id} does not exist"
                raise PersistenceError(msg)
        return touched

    def delete(self, record: ReceiptRecord) -> None:
        """Delete a record; its line items cascade."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM receipts WHERE id = ?", (record.id,))
        logger.info("Deleted receipt", extra={"receipt_id": record.id})

    def delete_all(self) -> int:
        """Delete every record. Returns the number removed."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM receipts")
            removed = cursor.rowcount
        logger.info("Cleared %d local receipts", removed)
        return removed

    # Queries

    def get(self, record_id: str) -> ReceiptRecord | None:
        """Fetch a record by its local identifier."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM receipts WHERE id = ?", (record_id,)
            ).fetchone()
            return self._load(conn, row) if row else None

    def find_by_key(self, receipt_number: str) -> ReceiptRecord | None:
        """Fetch a record by its business key."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM receipts WHERE receipt_number = ?", (receipt_number,)
            ).fetchone()
            return self._load(conn, row) if row else None

    def list(self, filter_text: str | None = None) -> list[ReceiptRecord]:
        """All records, newest transaction first, optionally filtered.

        The filter matches case-insensitively against vendor name, receipt
        number, notes, store location and line-item names.
        """
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM receipts "
                "ORDER BY transaction_date IS NULL, transaction_date DESC, "
                "created_at DESC"
            ).fetchall()
            records = [self._load(conn, row) for row in rows]

        needle = (filter_text or "").strip()
        if not needle:
            return records
        return [record for record in records if record.matches(needle)]

    def count(self) -> int:
        """Number of stored records."""
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM receipts").fetchone()[0])

    # Row mapping

    def _receipt_row(self, record: ReceiptRecord) -> tuple[Any, ...]:
        return (
            record.id,
            record.receipt_number,
            record.vendor_name,
            record.store_location,
            _iso(record.transaction_date),
            _decimal(record.subtotal),
            _decimal(record.tax),
            _decimal(record.total),
            record.status.value,
            record.notes,
            _decimal(record.last_sent_subtotal),
            record.raw_document,
            record.document_format.value if record.document_format else None,
            _iso(record.created_at),
            _iso(record.updated_at),
        )

    def _write_line_items(
        self, conn: sqlite3.Connection, record: ReceiptRecord
    ) -> None:
        conn.executemany(
            """
            INSERT INTO line_items
            (receipt_id, position, name, unit_price, quantity, item_code, category)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    record.id,
                    position,
                    item.name,
                    _decimal(item.unit_price),
                    item.quantity,
                    item.item_code,
                    item.category,
                )
                for position, item in enumerate(record.line_items)
            ],
        )

    def _load(self, conn: sqlite3.Connection, row: sqlite3.Row) -> ReceiptRecord:
        item_rows = conn.execute(
            "SELECT * FROM line_items WHERE receipt_id = ? ORDER BY position",
            (row["id"],),
        ).fetchall()
        return ReceiptRecord(
            id=row["id"],
            receipt_number=row["receipt_number"],
            vendor_name=row["vendor_name"],
            store_location=row["store_location"],
            transaction_date=(
                datetime.fromisoformat(row["transaction_date"])
                if row["transaction_date"]
                else None
            ),
            subtotal=Decimal(row["subtotal"]),
            tax=Decimal(row["tax"]),
            total=Decimal(row["total"]),
            status=ProcessingStatus(row["status"]),
            notes=row["notes"],
            last_sent_subtotal=(
                Decimal(row["last_sent_subtotal"])
                if row["last_sent_subtotal"] is not None
                else None
            ),
            raw_document=row["raw_document"],
            document_format=(
                DocumentFormat(row["document_format"])
                if row["document_format"]
                else None
            ),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            line_items=[
                LineItem(
                    name=item["name"],
                    unit_price=Decimal(item["unit_price"]),
                    quantity=item["quantity"],
                    item_code=item["item_code"],
                    category=item["category"],
                )
                for item in item_rows
            ],
        )
