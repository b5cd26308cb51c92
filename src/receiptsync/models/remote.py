"""Wire-level models for the remote receipt API."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from .money import format_amount, parse_amount_or_zero
from .receipt import LineItem

if TYPE_CHECKING:
    from .receipt import ReceiptRecord

logger = logging.getLogger(__name__)


def parse_iso_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, returning None when it is malformed."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        logger.debug("Unparseable transaction date: %s", value)
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class RemoteLineItem(BaseModel):
    """Line item as returned by the server."""

    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    item_code: str | None = None
    description: str = ""
    price: str = "0.00"
    quantity: int = 1
    total_price: str | None = None
    is_taxable: bool = False
    on_sale: bool = False
    instant_savings: str | None = None
    original_price: str | None = None
    original_total_price: str | None = None

    def to_line_item(self) -> LineItem:
        """Convert to a local line item. Category is never populated remotely."""
        return LineItem(
            name=self.description.strip() or self.item_code or "Item",
            unit_price=parse_amount_or_zero(self.price),
            quantity=max(self.quantity, 1),
            item_code=self.item_code or None,
            category=None,
        )


class RemoteReceipt(BaseModel):
    """Receipt as returned by the server; always passed through reconciliation."""

    model_config = ConfigDict(extra="ignore")

    transaction_number: str
    store_location: str | None = None
    store_number: str | None = None
    transaction_date: str | None = None
    subtotal: str = "0.00"
    tax: str = "0.00"
    total: str = "0.00"
    items_count: int | None = None
    parsed_successfully: bool = False
    parse_error: str | None = None
    instant_savings: str | None = None
    ebt_amount: str | None = None
    file: str | None = None
    items: list[RemoteLineItem] = Field(default_factory=list)

    @property
    def parsed_date(self) -> datetime | None:
        """Transaction date as a timestamp, or None when malformed."""
        return parse_iso_datetime(self.transaction_date)

    @property
    def subtotal_amount(self) -> Decimal:
        """Subtotal parsed to a fixed-point amount (zero on failure)."""
        return parse_amount_or_zero(self.subtotal)

    @property
    def tax_amount(self) -> Decimal:
        """Tax parsed to a fixed-point amount (zero on failure)."""
        return parse_amount_or_zero(self.tax)

    @property
    def total_amount(self) -> Decimal:
        """Total parsed to a fixed-point amount (zero on failure)."""
        return parse_amount_or_zero(self.total)

    def to_line_items(self) -> list[LineItem]:
        """Convert the remote items into local line items."""
        return [item.to_line_item() for item in self.items]


class RemoteReceiptList(BaseModel):
    """Envelope of the receipt list endpoint."""

    model_config = ConfigDict(extra="ignore")

    receipts: list[RemoteReceipt] = Field(default_factory=list)
    count: int | None = None
    price_adjustments_count: int | None = None


class LineItemUpdate(BaseModel):
    """Line item as sent in an update request."""

    id: int | None = None
    item_code: str = ""
    description: str
    price: str
    quantity: int
    total_price: str


class ReceiptUpdateRequest(BaseModel):
    """User edits pushed to the server."""

    accept_manual_edits: bool = True
    store_location: str | None = None
    transaction_date: str | None = None
    subtotal: str | None = None
    tax: str | None = None
    total: str | None = None
    notes: str | None = None
    items: list[LineItemUpdate] | None = None

    @classmethod
    def from_record(cls, record: ReceiptRecord) -> ReceiptUpdateRequest:
        """Build the update payload from a local record."""
        return cls(
            store_location=record.store_location,
            transaction_date=(
                record.transaction_date.isoformat()
                if record.transaction_date
                else None
            ),
            subtotal=format_amount(record.subtotal),
            tax=format_amount(record.tax),
            total=format_amount(record.total),
            notes=record.notes,
            items=[
                LineItemUpdate(
                    item_code=item.item_code or "",
                    description=item.name,
                    price=format_amount(item.unit_price),
                    quantity=item.quantity,
                    total_price=format_amount(item.line_total),
                )
                for item in record.line_items
            ],
        )
