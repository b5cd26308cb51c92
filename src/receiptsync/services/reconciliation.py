"""Merge remote receipt batches into the local store."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from receiptsync.models import UNKNOWN_VENDOR, ProcessingStatus, ReceiptRecord
from receiptsync.services.repository import PersistenceError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from receiptsync.models import RemoteReceipt
    from receiptsync.services.repository import ReceiptRepository

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = Decimal("0.01")


class MergeAction(str, Enum):
    """What reconciliation decided for one remote receipt."""

    INSERT = "insert"
    ACCEPT_REMOTE = "accept_remote"
    KEEP_LOCAL = "keep_local"


@dataclass(frozen=True)
class MergeDecision:
    """Decision for one remote receipt, computed before any commit."""

    action: MergeAction
    remote: RemoteReceipt
    local: ReceiptRecord | None = None


class ReconciliationReport(BaseModel):
    """Outcome of one reconciliation pass."""

    inserted: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    kept_local: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)

    @property
    def processed(self) -> int:
        """Number of remote receipts that were committed."""
        return len(self.inserted) + len(self.updated) + len(self.kept_local)


def status_from_remote(remote: RemoteReceipt) -> ProcessingStatus:
    """Completed when the server parsed the receipt, failed otherwise."""
    if remote.parsed_successfully:
        return ProcessingStatus.COMPLETED
    return ProcessingStatus.FAILED


def server_accepted(
    last_sent_subtotal: Decimal | None,
    remote_subtotal: Decimal,
    threshold: Decimal = DEFAULT_THRESHOLD,
) -> bool:
    """Did the server apply the last update we sent?

    The remote system silently drops some field updates, so an echo whose
    subtotal drifted from what we last sent by more than the threshold means
    our write did not take. The threshold is inclusive. With nothing sent,
    the server copy is canonical.
    """
    if last_sent_subtotal is None:
        return True
    return abs(last_sent_subtotal - remote_subtotal) <= threshold


class ReconciliationEngine:
    """Applies the last-sent-subtotal conflict policy against the repository."""

    def __init__(
        self,
        repository: ReceiptRepository,
        threshold: Decimal = DEFAULT_THRESHOLD,
    ) -> None:
        """Initialize the engine.

        Args:
            repository: Local receipt store to merge into
            threshold: Max subtotal drift for a pushed edit to count as accepted
        """
        self.repository = repository
        self.threshold = threshold

    def decide(self, remote: RemoteReceipt) -> MergeDecision:
        """Look up the local copy and pick a merge action."""
        local = self.repository.find_by_key(remote.transaction_number)
        if local is None:
            return MergeDecision(action=MergeAction.INSERT, remote=remote)
        if server_accepted(
            local.last_sent_subtotal, remote.subtotal_amount, self.threshold
        ):
            return MergeDecision(
                action=MergeAction.ACCEPT_REMOTE, remote=remote, local=local
            )
        return MergeDecision(action=MergeAction.KEEP_LOCAL, remote=remote, local=local)

    def reconcile(self, remote_batch: Iterable[RemoteReceipt]) -> ReconciliationReport:
        """Merge a batch of remote receipts, committing each one on its own.

        One record's failure is logged and recorded in the report; the rest of
        the batch is still processed.
        """
        report = ReconciliationReport()
        for remote in self._dedupe(remote_batch):
            key = remote.transaction_number
            try:
                decision = self.decide(remote)
                self.apply(decision)
            except PersistenceError as e:
                logger.error("Failed to reconcile receipt %s: %s", key, e)
                report.failed[key] = str(e)
                continue

            if decision.action is MergeAction.INSERT:
                report.inserted.append(key)
            elif decision.action is MergeAction.ACCEPT_REMOTE:
                report.updated.append(key)
            else:
                report.kept_local.append(key)

        logger.info(
            "Reconciliation complete",
            extra={
                "inserted": len(report.inserted),
                "updated": len(report.updated),
                "kept_local": len(report.kept_local),
                "failed": len(report.failed),
            },
        )
        return report

    def apply(self, decision: MergeDecision) -> ReceiptRecord:
        """Commit a merge decision."""
        remote = decision.remote
        if decision.action is MergeAction.INSERT:
            return self.repository.insert(self.record_from_remote(remote))

        local = decision.local
        if local is None:
            msg = f"No local record for {remote.transaction_number}"
            raise PersistenceError(msg)

        if decision.action is MergeAction.KEEP_LOCAL:
            logger.warning(
                "Server ignored our update; keeping local changes",
                extra={
                    "receipt_number": remote.transaction_number,
                    "sent_subtotal": local.last_sent_subtotal,
                    "server_subtotal": remote.subtotal_amount,
                },
            )
            return self.repository.touch(local)

        return self.repository.save(self.merge_remote_into(local, remote))

    def record_from_remote(self, remote: RemoteReceipt) -> ReceiptRecord:
        """Build a new local record from server data."""
        return ReceiptRecord(
            receipt_number=remote.transaction_number,
            vendor_name=remote.store_location or UNKNOWN_VENDOR,
            store_location=remote.store_location,
            transaction_date=remote.parsed_date,
            subtotal=remote.subtotal_amount,
            tax=remote.tax_amount,
            total=remote.total_amount,
            status=status_from_remote(remote),
            line_items=remote.to_line_items(),
        )

    def merge_remote_into(
        self, local: ReceiptRecord, remote: RemoteReceipt
    ) -> ReceiptRecord:
        """Overwrite local fields with the server copy and replace line items."""
        return local.model_copy(
            update={
                "receipt_number": remote.transaction_number,
                "vendor_name": remote.store_location or local.vendor_name,
                "store_location": remote.store_location or local.store_location,
                "transaction_date": remote.parsed_date or local.transaction_date,
                "subtotal": remote.subtotal_amount,
                "tax": remote.tax_amount,
                "total": remote.total_amount,
                "status": status_from_remote(remote),
                "line_items": remote.to_line_items(),
                "last_sent_subtotal": None,
            }
        )

    def _dedupe(self, remote_batch: Iterable[RemoteReceipt]) -> list[RemoteReceipt]:
        """Collapse repeated keys in a batch; the last occurrence wins."""
        by_key: dict[str, RemoteReceipt] = {}
        for remote in remote_batch:
            by_key.pop(remote.transaction_number, None)
            by_key[remote.transaction_number] = remote
        return list(by_key.values())
