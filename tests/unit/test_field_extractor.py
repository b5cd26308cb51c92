"""Tests for receipt field extraction heuristics."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from receiptsync.models import UNKNOWN_VENDOR
from receiptsync.services.field_extractor import (
    FieldExtractor,
    Totals,
    classify_totals_line,
    match_line_items,
    match_receipt_number,
    match_totals,
    match_transaction_date,
    match_vendor,
)


class TestFieldExtractor:
    """Tests for the assembled extractor."""

    def test_clean_costco_receipt(self, costco_lines: list[str]) -> None:
        """Test every field of a clean receipt."""
        parsed = FieldExtractor().extract(costco_lines)

        assert parsed.vendor_name == "Costco Wholesale"
        assert parsed.transaction_date == datetime(2025, 7, 10, tzinfo=UTC)
        assert parsed.receipt_number == "123456"
        assert parsed.subtotal == Decimal("19.99")
        assert parsed.tax == Decimal("1.65")
        assert parsed.total == Decimal("21.64")
        assert len(parsed.line_items) == 1
        item = parsed.line_items[0]
        assert item.name == "Kirkland Paper Towels"
        assert item.unit_price == Decimal("19.99")
        assert item.quantity == 1
        assert item.item_code is None
        assert item.category is None

    def test_empty_input_gives_defaults(self) -> None:
        """Test that nothing matched leaves defaults and does not raise."""
        parsed = FieldExtractor().extract([])

        assert parsed.vendor_name == UNKNOWN_VENDOR
        assert parsed.transaction_date is None
        assert parsed.receipt_number is None
        assert parsed.subtotal == Decimal("0.00")
        assert parsed.tax == Decimal("0.00")
        assert parsed.total == Decimal("0.00")
        assert parsed.line_items == []

    def test_garbage_lines_do_not_raise(self) -> None:
        """Test that arbitrary OCR noise still yields a receipt."""
        parsed = FieldExtractor().extract(["@@##", "", "   ", "Total", "tax .5"])

        assert parsed.total == Decimal("0.00")
        assert parsed.tax == Decimal("0.00")

    def test_custom_vendor_table(self) -> None:
        """Test that the keyword table is injectable."""
        extractor = FieldExtractor(vendors={"corner shop": "Corner Shop Ltd"})

        parsed = extractor.extract(["THE CORNER SHOP", "Total 3.00"])

        assert parsed.vendor_name == "Corner Shop Ltd"

    def test_custom_table_replaces_defaults(self) -> None:
        """Test that defaults are not consulted when a table is supplied."""
        extractor = FieldExtractor(vendors={"corner shop": "Corner Shop Ltd"})

        parsed = extractor.extract(["COSTCO WHOLESALE"])

        assert parsed.vendor_name == UNKNOWN_VENDOR


class TestVendorRule:
    """Tests for vendor detection."""

    def test_only_first_five_lines_scanned(self) -> None:
        """Test that a vendor keyword on line six is ignored."""
        lines = ["a", "b", "c", "d", "e", "COSTCO WHOLESALE"]
        assert match_vendor(lines) is None

    def test_case_insensitive(self) -> None:
        """Test case-insensitive keyword matching."""
        assert match_vendor(["  Welcome to Costco  "]) == "Costco Wholesale"

    def test_first_matching_line_wins(self) -> None:
        """Test that the earliest line decides the vendor."""
        assert match_vendor(["WALMART SUPERCENTER", "costco"]) == "Walmart"


class TestDateRule:
    """Tests for transaction date detection."""

    def test_absent_when_no_pattern(self) -> None:
        """Test that no date pattern means no date."""
        assert match_transaction_date(["no dates here", "2025-07-10"]) is None

    def test_first_valid_date_wins(self) -> None:
        """Test that an unparseable candidate is skipped."""
        lines = ["13/45/2025 bogus", "Date: 1/2/2024 10:15"]
        assert match_transaction_date(lines) == datetime(2024, 1, 2, tzinfo=UTC)

    def test_date_is_utc(self) -> None:
        """Test that dates carry a UTC timezone."""
        parsed = match_transaction_date(["07/10/2025"])
        assert parsed is not None
        assert parsed.tzinfo is UTC


class TestReceiptNumberRule:
    """Tests for receipt number detection."""

    def test_text_after_first_hash(self) -> None:
        """Test that everything after the first '#' is kept, trimmed."""
        assert match_receipt_number(["RECEIPT # 12-34 #5 "]) == "12-34 #5"

    def test_requires_receipt_keyword(self) -> None:
        """Test that a '#' alone is not enough."""
        assert match_receipt_number(["Member #111222333"]) is None

    def test_empty_remainder_is_no_match(self) -> None:
        """Test that 'Receipt #' with nothing after it falls through."""
        lines = ["Receipt #", "Receipt #987"]
        assert match_receipt_number(lines) == "987"


class TestTotalsRule:
    """Tests for subtotal/tax/total detection."""

    @pytest.mark.parametrize(
        ("line", "bucket"),
        [
            ("TOTAL 21.64", "total"),
            ("SUBTOTAL 19.99", "subtotal"),
            ("Sales Tax 1.65", "tax"),
            ("Kirkland Paper Towels 19.99", None),
        ],
    )
    def test_classification(self, line: str, bucket: str | None) -> None:
        """Test which bucket a line belongs to."""
        assert classify_totals_line(line) == bucket

    def test_bottom_up_precedence(self) -> None:
        """Test that the match closest to the end wins for each bucket."""
        lines = ["Total 10.00", "Tax 0.50", "Total 12.00"]

        totals = match_totals(lines)

        assert totals.total == Decimal("12.00")
        assert totals.tax == Decimal("0.50")
        assert totals.subtotal is None

    def test_line_without_amount_is_skipped(self) -> None:
        """Test that a totals keyword without an amount keeps scanning."""
        totals = match_totals(["Total 8.00", "Total due"])
        assert totals == Totals(total=Decimal("8.00"))

    def test_thousands_separator(self) -> None:
        """Test amounts with thousands separators."""
        totals = match_totals(["TOTAL 1,234.56"])
        assert totals.total == Decimal("1234.56")


class TestLineItemRule:
    """Tests for line item detection."""

    def test_totals_lines_are_not_items(self, costco_lines: list[str]) -> None:
        """Test that subtotal, tax and total lines are excluded."""
        names = [item.name for item in match_line_items(costco_lines)]
        assert names == ["Kirkland Paper Towels"]

    def test_price_must_end_the_line(self) -> None:
        """Test that trailing text prevents a match."""
        assert match_line_items(["Bananas 1.99 E"]) == []

    def test_multiple_items_in_order(self) -> None:
        """Test that items keep document order."""
        items = match_line_items(["Milk 3.49", "Eggs   5.99", "Bread\t2.50"])

        assert [item.name for item in items] == ["Milk", "Eggs", "Bread"]
        assert [item.unit_price for item in items] == [
            Decimal("3.49"),
            Decimal("5.99"),
            Decimal("2.50"),
        ]
