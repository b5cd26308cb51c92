"""Pipeline driver: ingest, upload, pull and push receipts."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from receiptsync.models import ReceiptUpdateRequest
from receiptsync.services.api_client import ReceiptAPIError
from receiptsync.services.repository import PersistenceError
from receiptsync.services.text_acquirer import ExtractionError

if TYPE_CHECKING:
    from receiptsync.models import RawDocument, ReceiptRecord, RemoteReceipt
    from receiptsync.services.api_client import ReceiptAPIClient
    from receiptsync.services.field_extractor import FieldExtractor
    from receiptsync.services.reconciliation import (
        ReconciliationEngine,
        ReconciliationReport,
    )
    from receiptsync.services.repository import ReceiptRepository
    from receiptsync.services.text_acquirer import TextAcquirer

logger = logging.getLogger(__name__)


class OrchestrationError(Exception):
    """Base exception for pipeline operations."""


class IngestError(OrchestrationError):
    """Raised when a document cannot be turned into a local record."""


class DuplicateIngestError(IngestError):
    """Raised when the same document is already being ingested."""


class SyncError(OrchestrationError):
    """Raised when talking to the remote service fails."""


class SyncOrchestrator:
    """Single entry point for the presentation layer.

    Local-first: a document becomes a local draft before anything touches the
    network, and a failed upload never removes it. Server responses always go
    through the reconciliation engine.
    """

    def __init__(
        self,
        acquirer: TextAcquirer,
        extractor: FieldExtractor,
        repository: ReceiptRepository,
        engine: ReconciliationEngine,
        api: ReceiptAPIClient,
        *,
        retain_raw_documents: bool = True,
    ) -> None:
        """Initialize the orchestrator with its collaborators."""
        self.acquirer = acquirer
        self.extractor = extractor
        self.repository = repository
        self.engine = engine
        self.api = api
        self.retain_raw_documents = retain_raw_documents
        self._in_flight: set[str] = set()
        self._record_locks: dict[str, asyncio.Lock] = {}
        self._uploads: set[asyncio.Task[ReceiptRecord]] = set()

    @property
    def pending_uploads(self) -> int:
        """Number of uploads still running in the background."""
        return len(self._uploads)

    async def ingest(
        self,
        document: RawDocument,
        *,
        wait_for_upload: bool = False,
        store_location: str | None = None,
    ) -> ReceiptRecord:
        """Turn a document into a local record and schedule its upload.

        Args:
            document: The receipt bytes
            wait_for_upload: Await the upload and return the reconciled record
            store_location: Optional location recorded on the draft

        Raises:
            DuplicateIngestError: If this document is already being ingested
            IngestError: If text acquisition or the local commit fails
        """
        content_hash = document.content_hash
        if content_hash in self._in_flight:
            msg = f"Document {document.filename} is already being ingested"
            raise DuplicateIngestError(msg)
        self._in_flight.add(content_hash)

        try:
            record = await self._create_draft(document, store_location)
        except BaseException:
            self._in_flight.discard(content_hash)
            raise

        task = asyncio.create_task(self._upload(record, document))
        self._uploads.add(task)
        task.add_done_callback(self._upload_finished)

        if wait_for_upload:
            return await task
        return record

    async def _create_draft(
        self, document: RawDocument, store_location: str | None
    ) -> ReceiptRecord:
        try:
            text = await self.acquirer.acquire(document)
        except ExtractionError as e:
            logger.error("Text acquisition failed for %s: %s", document.filename, e)
            msg = f"Could not read {document.filename}: {e}"
            raise IngestError(msg) from e

        parsed = self.extractor.extract(text.lines)
        try:
            record = self.repository.upsert_from_parse(
                parsed,
                document if self.retain_raw_documents else None,
                store_location=store_location,
            )
        except PersistenceError as e:
            msg = f"Could not store {document.filename}: {e}"
            raise IngestError(msg) from e

        logger.info(
            "Created local draft",
            extra={
                "receipt_id": record.id,
                "vendor_name": record.vendor_name,
                "text_source": text.source.value,
            },
        )
        return record

    async def _upload(
        self, record: ReceiptRecord, document: RawDocument
    ) -> ReceiptRecord:
        """Upload the document and fold the server copy back in."""
        try:
            try:
                remote = await self.api.upload_receipt(
                    document.content, document.filename
                )
            except ReceiptAPIError as e:
                logger.warning(
                    "Upload failed, keeping local draft: %s",
                    e,
                    extra={"receipt_id": record.id},
                )
                return record

            try:
                if not self._attach_remote_key(record, remote):
                    await self._discard_remote(remote)
                    return record
                self.engine.reconcile([remote])
            except PersistenceError as e:
                logger.error("Failed to store upload result for %s: %s", record.id, e)
                return record

            return (
                self.repository.get(record.id)
                or self.repository.find_by_key(remote.transaction_number)
                or record
            )
        finally:
            self._in_flight.discard(document.content_hash)

    def _attach_remote_key(self, record: ReceiptRecord, remote: RemoteReceipt) -> bool:
        """Give the draft the server's receipt number so reconciliation finds it.

        Returns False when the draft was deleted while the upload was running.
        """
        current = self.repository.get(record.id)
        if current is None:
            logger.info("Draft %s was deleted before upload finished", record.id)
            return False

        key = remote.transaction_number
        if current.receipt_number == key:
            return True

        holder = self.repository.find_by_key(key)
        if holder is not None:
            logger.warning(
                "Receipt number already held by another record, leaving draft as is",
                extra={"receipt_id": current.id, "receipt_number": key},
            )
            return True

        if current.receipt_number:
            logger.info(
                "Server assigned %s, replacing parsed number %s",
                key,
                current.receipt_number,
            )
        self.repository.save(current.model_copy(update={"receipt_number": key}))
        return True

    async def _discard_remote(self, remote: RemoteReceipt) -> None:
        """Propagate a delete that happened while the upload was running."""
        key = remote.transaction_number
        if self.repository.find_by_key(key) is not None:
            return
        try:
            await self.api.delete_receipt(key)
        except ReceiptAPIError as e:
            logger.warning("Remote delete failed for %s: %s", key, e)
            return
        logger.info("Deleted remote copy of a draft removed during upload: %s", key)

    def _upload_finished(self, task: asyncio.Task[ReceiptRecord]) -> None:
        self._uploads.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Background upload crashed: %s", error, exc_info=error)

    async def wait_for_uploads(self) -> None:
        """Wait until every scheduled upload has finished."""
        while self._uploads:
            await asyncio.gather(*list(self._uploads), return_exceptions=True)

    async def pull(self) -> ReconciliationReport:
        """Fetch the full remote list and reconcile it.

        Raises:
            SyncError: If the remote list cannot be fetched
        """
        try:
            remotes = await self.api.list_receipts()
        except ReceiptAPIError as e:
            msg = f"Could not fetch remote receipts: {e}"
            raise SyncError(msg) from e
        return self.engine.reconcile(remotes)

    async def push_edits(self, record: ReceiptRecord) -> ReceiptRecord:
        """Send user edits to the server and reconcile the echo.

        The subtotal being sent is recorded before the call, so a later pull
        can tell whether the server applied it. Only one update per record is
        in flight at a time.

        Raises:
            SyncError: If the record has no receipt number or the call fails
            PersistenceError: If the local commit fails
        """
        if not record.receipt_number:
            msg = f"Receipt {record.id} has not been synced yet"
            raise SyncError(msg)

        lock = self._record_locks.setdefault(record.id, asyncio.Lock())
        async with lock:
            pending = self.repository.save(
                record.model_copy(update={"last_sent_subtotal": record.subtotal})
            )
            request = ReceiptUpdateRequest.from_record(pending)
            try:
                echo = await self.api.update_receipt(pending.receipt_number, request)
            except ReceiptAPIError as e:
                msg = f"Could not push edits for {pending.receipt_number}: {e}"
                raise SyncError(msg) from e

            if echo is not None:
                self.engine.reconcile([echo])
            return self.repository.get(pending.id) or pending

    async def delete(self, record: ReceiptRecord) -> bool:
        """Delete locally, then best-effort on the server.

        Returns:
            True if the remote delete succeeded (or was not needed)
        """
        self.repository.delete(record)
        self._record_locks.pop(record.id, None)
        if not record.receipt_number:
            return True
        try:
            await self.api.delete_receipt(record.receipt_number)
        except ReceiptAPIError as e:
            logger.warning(
                "Remote delete failed for %s: %s", record.receipt_number, e
            )
            return False
        return True

    def delete_all_local(self) -> int:
        """Clear the local store without touching the server."""
        return self.repository.delete_all()

    async def close(self) -> None:
        """Finish pending uploads and release the HTTP client."""
        await self.wait_for_uploads()
        await self.api.close()
