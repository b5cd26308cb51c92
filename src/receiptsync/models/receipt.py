"""Receipt models shared by extraction, storage and reconciliation."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .document import DocumentFormat
from .money import ZERO, to_money

UNKNOWN_VENDOR = "Unknown Store"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class ProcessingStatus(str, Enum):
    """Processing status of a stored receipt."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class LineItem(BaseModel):
    """Individual purchased item on a receipt."""

    name: str = Field(..., min_length=1, description="Item description")
    unit_price: Decimal = Field(default=ZERO, description="Price per unit")
    quantity: int = Field(default=1, ge=1, description="Item quantity")
    item_code: str | None = Field(None, description="Store item code")
    category: str | None = Field(None, description="Spending category")

    @field_validator("unit_price", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Decimal:  # noqa: ANN401
        """Convert numeric values to Decimal."""
        return to_money(v)

    @property
    def line_total(self) -> Decimal:
        """Unit price times quantity."""
        return to_money(self.unit_price * self.quantity)


class ParsedReceipt(BaseModel):
    """Structured purchase data recovered from a document."""

    vendor_name: str = Field(default=UNKNOWN_VENDOR, description="Merchant name")
    transaction_date: datetime | None = Field(None, description="Purchase date")
    receipt_number: str | None = Field(
        None, description="Receipt/transaction number (business key)"
    )
    subtotal: Decimal = Field(default=ZERO, description="Subtotal before tax")
    tax: Decimal = Field(default=ZERO, description="Tax amount")
    total: Decimal = Field(default=ZERO, description="Total amount paid")
    line_items: list[LineItem] = Field(default_factory=list)

    @field_validator("subtotal", "tax", "total", mode="before")
    @classmethod
    def convert_amounts_to_decimal(cls, v: Any) -> Decimal:  # noqa: ANN401
        """Convert amount values to Decimal."""
        return to_money(v)

    @field_validator("transaction_date")
    @classmethod
    def normalize_timezone(cls, v: datetime | None) -> datetime | None:
        """Store every timestamp as aware UTC."""
        if v is None:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)


class ReceiptRecord(ParsedReceipt):
    """A parsed receipt as persisted in the local store."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    store_location: str | None = None
    status: ProcessingStatus = ProcessingStatus.PENDING
    notes: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    raw_document: bytes | None = Field(None, repr=False)
    document_format: DocumentFormat | None = None
    last_sent_subtotal: Decimal | None = Field(
        None, description="Subtotal most recently pushed to the server"
    )

    @field_validator("last_sent_subtotal", mode="before")
    @classmethod
    def convert_sent_subtotal(cls, v: Any) -> Decimal | None:  # noqa: ANN401
        """Convert the sent subtotal to Decimal when present."""
        return None if v is None else to_money(v)

    @classmethod
    def from_parsed(
        cls,
        parsed: ParsedReceipt,
        *,
        raw_document: bytes | None = None,
        document_format: DocumentFormat | None = None,
        store_location: str | None = None,
    ) -> ReceiptRecord:
        """Create a pending record from freshly extracted data."""
        return cls(
            **parsed.model_dump(),
            store_location=store_location,
            raw_document=raw_document,
            document_format=document_format,
        )

    def matches(self, needle: str) -> bool:
        """Case-insensitive match over the searchable fields."""
        needle = needle.lower()
        haystacks = [
            self.vendor_name,
            self.receipt_number,
            self.notes,
            self.store_location,
            *(item.name for item in self.line_items),
        ]
        return any(needle in value.lower() for value in haystacks if value)
