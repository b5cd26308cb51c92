"""Heuristic field extraction over receipt text lines.

Each field is recovered by an independent rule function that scans the line
sequence and returns an optional match. ``FieldExtractor`` runs the rules in
order and assembles a ``ParsedReceipt``; it never raises, absent fields simply
keep their defaults.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from receiptsync.models import UNKNOWN_VENDOR, LineItem, ParsedReceipt
from receiptsync.models.money import ZERO, parse_amount

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence
    from decimal import Decimal

logger = logging.getLogger(__name__)

VENDOR_SCAN_LINES = 5

# Keyword -> canonical vendor name, checked in order
KNOWN_VENDORS: dict[str, str] = {
    "costco": "Costco Wholesale",
    "sam's club": "Sam's Club",
    "sams club": "Sam's Club",
    "walmart": "Walmart",
    "target": "Target",
    "whole foods": "Whole Foods Market",
    "trader joe": "Trader Joe's",
    "kroger": "Kroger",
    "safeway": "Safeway",
    "bj's wholesale": "BJ's Wholesale Club",
}

DATE_PATTERN = re.compile(r"(?<!\d)(\d{1,2}/\d{1,2}/\d{4})(?!\d)")
DATE_FORMAT = "%m/%d/%Y"
AMOUNT_PATTERN = re.compile(r"\d{1,3}(?:,\d{3})+\.\d{2}|\d+\.\d{2}")
LINE_ITEM_PATTERN = re.compile(r"^(.+?)\s+(\d+\.\d{2})\s*$")


@dataclass(frozen=True)
class Totals:
    """Subtotal, tax and total recovered from the bottom of a receipt."""

    subtotal: Decimal | None = None
    tax: Decimal | None = None
    total: Decimal | None = None


def classify_totals_line(line: str) -> str | None:
    """Return the totals bucket a line belongs to, if any."""
    lowered = line.lower()
    if "total" in lowered and "subtotal" not in lowered:
        return "total"
    if "subtotal" in lowered:
        return "subtotal"
    if "tax" in lowered:
        return "tax"
    return None


def extract_amount(line: str) -> Decimal | None:
    """First two-decimal amount on a line."""
    match = AMOUNT_PATTERN.search(line)
    if match is None:
        return None
    return parse_amount(match.group(0))


def match_vendor(
    lines: Sequence[str], vendors: Mapping[str, str] = KNOWN_VENDORS
) -> str | None:
    """Canonical vendor name from the first few lines."""
    for line in lines[:VENDOR_SCAN_LINES]:
        lowered = line.strip().lower()
        for keyword, canonical in vendors.items():
            if keyword in lowered:
                return canonical
    return None


def match_transaction_date(lines: Sequence[str]) -> datetime | None:
    """First M/D/YYYY date that actually parses."""
    for line in lines:
        for candidate in DATE_PATTERN.findall(line):
            try:
                return datetime.strptime(candidate, DATE_FORMAT).replace(tzinfo=UTC)
            except ValueError:
                logger.debug("Skipping invalid date candidate: %s", candidate)
    return None


def match_receipt_number(lines: Sequence[str]) -> str | None:
    """Text after the first '#' on a line mentioning a receipt."""
    for line in lines:
        if "receipt" in line.lower() and "#" in line:
            number = line.split("#", 1)[1].strip()
            if number:
                return number
    return None


def match_totals(lines: Sequence[str]) -> Totals:
    """Scan bottom-up; each bucket keeps the match closest to the end."""
    found: dict[str, Decimal] = {}
    for line in reversed(lines):
        bucket = classify_totals_line(line)
        if bucket is None or bucket in found:
            continue
        amount = extract_amount(line)
        if amount is not None:
            found[bucket] = amount
    return Totals(**found)


def match_line_items(lines: Sequence[str]) -> list[LineItem]:
    """Lines ending in a price, excluding the totals lines."""
    items: list[LineItem] = []
    for line in lines:
        if classify_totals_line(line) is not None:
            continue
        match = LINE_ITEM_PATTERN.match(line)
        if match is None:
            continue
        name = match.group(1).strip()
        price = parse_amount(match.group(2))
        if not name or price is None:
            continue
        items.append(LineItem(name=name, unit_price=price))
    return items


class FieldExtractor:
    """Runs the ordered extraction rules over a document's lines."""

    def __init__(self, vendors: Mapping[str, str] | None = None) -> None:
        """Initialize the extractor.

        Args:
            vendors: Keyword to canonical-name table (defaults to KNOWN_VENDORS)
        """
        self.vendors = dict(vendors) if vendors is not None else dict(KNOWN_VENDORS)
        self.rules: list[tuple[str, Callable[[Sequence[str]], Any]]] = [
            ("vendor_name", lambda lines: match_vendor(lines, self.vendors)),
            ("transaction_date", match_transaction_date),
            ("receipt_number", match_receipt_number),
            ("totals", match_totals),
            ("line_items", match_line_items),
        ]

    def extract(self, lines: Iterable[str]) -> ParsedReceipt:
        """Recover structured fields from text lines."""
        snapshot = tuple(lines)
        results = {name: rule(snapshot) for name, rule in self.rules}

        totals: Totals = results["totals"]
        parsed = ParsedReceipt(
            vendor_name=results["vendor_name"] or UNKNOWN_VENDOR,
            transaction_date=results["transaction_date"],
            receipt_number=results["receipt_number"],
            subtotal=totals.subtotal if totals.subtotal is not None else ZERO,
            tax=totals.tax if totals.tax is not None else ZERO,
            total=totals.total if totals.total is not None else ZERO,
            line_items=results["line_items"],
        )
        logger.debug(
            "Extracted receipt fields",
            extra={
                "vendor_name": parsed.vendor_name,
                "receipt_number": parsed.receipt_number,
                "line_item_count": len(parsed.line_items),
            },
        )
        return parsed
