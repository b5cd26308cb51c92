"""Tests for the reconciliation engine."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from receiptsync.models import (
    UNKNOWN_VENDOR,
    LineItem,
    ProcessingStatus,
    ReceiptRecord,
    RemoteReceipt,
)
from receiptsync.services.reconciliation import (
    MergeAction,
    ReconciliationEngine,
    server_accepted,
)
from receiptsync.services.repository import PersistenceError, ReceiptRepository

if TYPE_CHECKING:
    from collections.abc import Callable

KEY = "21134300501862307241523"


@pytest.fixture
def edited_local(
    repository: ReceiptRepository, sample_line_items: list[LineItem]
) -> ReceiptRecord:
    """A local record whose 50.00 subtotal was pushed to the server."""
    record = ReceiptRecord(
        receipt_number=KEY,
        vendor_name="Costco Wholesale",
        store_location="My Costco",
        transaction_date=datetime(2025, 7, 9, tzinfo=UTC),
        subtotal="50.00",
        tax="4.00",
        total="54.00",
        notes="edited by hand",
        status=ProcessingStatus.COMPLETED,
        line_items=sample_line_items,
        last_sent_subtotal="50.00",
    )
    return repository.insert(record)


class TestServerAccepted:
    """Tests for the threshold predicate."""

    @pytest.mark.parametrize(
        ("sent", "remote", "accepted"),
        [
            (None, "99.99", True),
            ("50.00", "50.00", True),
            ("50.00", "50.01", True),
            ("50.00", "49.99", True),
            ("50.00", "50.02", False),
            ("50.00", "45.00", False),
        ],
    )
    def test_threshold_is_inclusive(
        self, sent: str | None, remote: str, accepted: bool
    ) -> None:
        """Test the 0.01 boundary."""
        sent_amount = Decimal(sent) if sent is not None else None
        assert server_accepted(sent_amount, Decimal(remote)) is accepted

    def test_custom_threshold(self) -> None:
        """Test a wider tolerance."""
        assert server_accepted(Decimal("50.00"), Decimal("50.50"), Decimal("1.00"))


class TestReconcile:
    """Tests for ReconciliationEngine.reconcile."""

    def test_inserts_unknown_receipts(
        self,
        engine: ReconciliationEngine,
        repository: ReceiptRepository,
        make_remote: Callable[..., RemoteReceipt],
    ) -> None:
        """Test that new remote receipts are created locally."""
        report = engine.reconcile([make_remote(KEY)])

        assert report.inserted == [KEY]
        record = repository.find_by_key(KEY)
        assert record is not None
        assert record.vendor_name == "Costco Seattle #113"
        assert record.store_location == "Costco Seattle #113"
        assert record.transaction_date == datetime(2025, 7, 10, 14, 30, tzinfo=UTC)
        assert record.subtotal == Decimal("50.00")
        assert record.tax == Decimal("4.13")
        assert record.total == Decimal("54.13")
        assert record.status is ProcessingStatus.COMPLETED
        assert [item.name for item in record.line_items] == ["KS WATER 40PK"]
        assert record.line_items[0].category is None

    def test_insert_defaults(
        self,
        engine: ReconciliationEngine,
        repository: ReceiptRepository,
        make_remote: Callable[..., RemoteReceipt],
    ) -> None:
        """Test fallbacks for missing store, bad amounts and bad dates."""
        remote = make_remote(
            KEY,
            store_location=None,
            subtotal="n/a",
            transaction_date="sometime",
            parsed_successfully=False,
        )

        engine.reconcile([remote])

        record = repository.find_by_key(KEY)
        assert record is not None
        assert record.vendor_name == UNKNOWN_VENDOR
        assert record.subtotal == Decimal("0.00")
        assert record.transaction_date is None
        assert record.status is ProcessingStatus.FAILED

    def test_pull_is_idempotent(
        self,
        engine: ReconciliationEngine,
        repository: ReceiptRepository,
        make_remote: Callable[..., RemoteReceipt],
    ) -> None:
        """Test that reconciling the same batch twice changes nothing."""
        batch = [make_remote("A"), make_remote("B", subtotal="10.00")]

        def snapshot() -> dict[str | None, dict]:
            return {
                r.receipt_number: r.model_dump(exclude={"updated_at"})
                for r in repository.list()
            }

        engine.reconcile(batch)
        first = snapshot()
        report = engine.reconcile(batch)
        second = snapshot()

        assert first == second
        assert repository.count() == 2
        assert report.inserted == []
        assert sorted(report.updated) == ["A", "B"]

    def test_duplicate_keys_in_batch(
        self,
        engine: ReconciliationEngine,
        repository: ReceiptRepository,
        make_remote: Callable[..., RemoteReceipt],
    ) -> None:
        """Test that a key repeated in one batch yields one record."""
        batch = [make_remote(KEY, total="1.00"), make_remote(KEY, total="2.00")]

        report = engine.reconcile(batch)

        assert repository.count() == 1
        assert report.inserted == [KEY]
        record = repository.find_by_key(KEY)
        assert record is not None
        assert record.total == Decimal("2.00")

    def test_stale_write_rejected(
        self,
        engine: ReconciliationEngine,
        repository: ReceiptRepository,
        edited_local: ReceiptRecord,
        make_remote: Callable[..., RemoteReceipt],
    ) -> None:
        """Test that a remote echo drifting past the threshold keeps local data."""
        report = engine.reconcile([make_remote(KEY, subtotal="45.00")])

        assert report.kept_local == [KEY]
        record = repository.find_by_key(KEY)
        assert record is not None
        assert record.model_dump(exclude={"updated_at"}) == edited_local.model_dump(
            exclude={"updated_at"}
        )
        assert record.updated_at >= edited_local.updated_at

    def test_accepted_update(
        self,
        engine: ReconciliationEngine,
        repository: ReceiptRepository,
        edited_local: ReceiptRecord,
        make_remote: Callable[..., RemoteReceipt],
    ) -> None:
        """Test that an echo within the threshold overwrites local data."""
        report = engine.reconcile([make_remote(KEY, subtotal="50.00")])

        assert report.updated == [KEY]
        record = repository.find_by_key(KEY)
        assert record is not None
        assert record.id == edited_local.id
        assert record.subtotal == Decimal("50.00")
        assert record.tax == Decimal("4.13")
        assert record.total == Decimal("54.13")
        assert record.status is ProcessingStatus.COMPLETED
        assert [item.name for item in record.line_items] == ["KS WATER 40PK"]
        assert record.store_location == "Costco Seattle #113"
        assert record.notes == "edited by hand"
        assert record.last_sent_subtotal is None

    def test_boundary_difference_is_accepted(
        self,
        engine: ReconciliationEngine,
        edited_local: ReceiptRecord,
        make_remote: Callable[..., RemoteReceipt],
    ) -> None:
        """Test that exactly 0.01 of drift still counts as accepted."""
        report = engine.reconcile([make_remote(KEY, subtotal="50.01")])
        assert report.updated == [KEY]

    def test_unparseable_remote_date_keeps_local(
        self,
        engine: ReconciliationEngine,
        repository: ReceiptRepository,
        edited_local: ReceiptRecord,
        make_remote: Callable[..., RemoteReceipt],
    ) -> None:
        """Test that a malformed remote date does not wipe the local one."""
        engine.reconcile([make_remote(KEY, transaction_date="not a date")])

        record = repository.find_by_key(KEY)
        assert record is not None
        assert record.transaction_date == edited_local.transaction_date

    def test_failure_is_per_record(
        self,
        engine: ReconciliationEngine,
        repository: ReceiptRepository,
        make_remote: Callable[..., RemoteReceipt],
    ) -> None:
        """Test that one failing commit does not stop the batch."""
        original_insert = repository.insert

        def flaky_insert(record: ReceiptRecord) -> ReceiptRecord:
            if record.receipt_number == "bad":
                msg = "disk full"
                raise PersistenceError(msg)
            return original_insert(record)

        with patch.object(repository, "insert", side_effect=flaky_insert):
            report = engine.reconcile(
                [make_remote("good-1"), make_remote("bad"), make_remote("good-2")]
            )

        assert report.inserted == ["good-1", "good-2"]
        assert report.failed == {"bad": "disk full"}
        assert repository.find_by_key("bad") is None
        assert report.processed == 2


class TestDecide:
    """Tests for decision computation."""

    def test_decisions(
        self,
        engine: ReconciliationEngine,
        edited_local: ReceiptRecord,
        make_remote: Callable[..., RemoteReceipt],
    ) -> None:
        """Test each merge action."""
        assert engine.decide(make_remote("new")).action is MergeAction.INSERT
        assert (
            engine.decide(make_remote(KEY, subtotal="50.00")).action
            is MergeAction.ACCEPT_REMOTE
        )
        assert (
            engine.decide(make_remote(KEY, subtotal="60.00")).action
            is MergeAction.KEEP_LOCAL
        )
