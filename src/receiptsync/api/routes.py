"""Receipt, sync and analytics routes."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any

from fastapi import APIRouter, File, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, Field

from receiptsync.core.dependencies import (
    AnalyticsDep,
    OrchestratorDep,
    RepositoryDep,
)
from receiptsync.models import (
    DocumentFormat,
    LineItem,
    ProcessingStatus,
    RawDocument,
    ReceiptRecord,
)
from receiptsync.models.money import ZERO
from receiptsync.services.analytics import SpendingSummary
from receiptsync.services.orchestrator import (
    DuplicateIngestError,
    IngestError,
    SyncError,
)
from receiptsync.services.reconciliation import ReconciliationReport
from receiptsync.services.repository import (
    DuplicateReceiptError,
    PersistenceError,
    ReceiptRepository,
)
from receiptsync.services.text_acquirer import ExtractionError

logger = logging.getLogger(__name__)
router = APIRouter(tags=["receipts"])

SUPPORTED_FORMATS = {".pdf", ".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp"}
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB


class ReceiptResponse(BaseModel):
    """Receipt as exposed over HTTP (without the raw document bytes)."""

    id: str
    receipt_number: str | None
    vendor_name: str
    store_location: str | None
    transaction_date: datetime | None
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    status: ProcessingStatus
    notes: str | None
    line_items: list[LineItem]
    has_document: bool
    document_format: DocumentFormat | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: ReceiptRecord) -> ReceiptResponse:
        """Project a stored record."""
        return cls(
            **record.model_dump(exclude={"raw_document", "last_sent_subtotal"}),
            has_document=record.raw_document is not None,
        )


class ReceiptListResponse(BaseModel):
    """List envelope."""

    receipts: list[ReceiptResponse]
    count: int


class ReceiptEditRequest(BaseModel):
    """User edits to a stored receipt."""

    notes: str | None = None
    store_location: str | None = None
    subtotal: Decimal | None = Field(None, ge=0)
    tax: Decimal | None = Field(None, ge=0)
    total: Decimal | None = Field(None, ge=0)
    line_items: list[LineItem] | None = None


def _lookup(repository: ReceiptRepository, key: str) -> ReceiptRecord:
    """Find a record by receipt number, falling back to the local id."""
    record = repository.find_by_key(key) or repository.get(key)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Receipt {key} not found",
        )
    return record


def _ingest_error_status(error: IngestError) -> int:
    if isinstance(error, DuplicateIngestError):
        return status.HTTP_409_CONFLICT
    if isinstance(error.__cause__, ExtractionError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(error.__cause__, DuplicateReceiptError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.get("/receipts", response_model=ReceiptListResponse)
async def list_receipts(
    repository: RepositoryDep,
    q: Annotated[str | None, Query(description="Search text")] = None,
) -> ReceiptListResponse:
    """List stored receipts, newest first."""
    records = repository.list(q)
    return ReceiptListResponse(
        receipts=[ReceiptResponse.from_record(record) for record in records],
        count=len(records),
    )


@router.get("/receipts/{key}", response_model=ReceiptResponse)
async def get_receipt(key: str, repository: RepositoryDep) -> ReceiptResponse:
    """Fetch one receipt by receipt number or local id."""
    return ReceiptResponse.from_record(_lookup(repository, key))


@router.post(
    "/receipts",
    response_model=ReceiptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_receipt(
    receipt_file: Annotated[UploadFile, File(description="Receipt PDF or image")],
    orchestrator: OrchestratorDep,
    wait: Annotated[
        bool, Query(description="Wait for the upload and reconciliation")
    ] = False,
) -> ReceiptResponse:
    """Ingest a receipt document.

    The local record is created before the upload starts; with ``wait=false``
    the response is the local draft and the upload continues in the
    background.

    Example usage:
        curl -X POST http://localhost:8000/api/v1/receipts \
            -F "receipt_file=@/path/to/receipt.pdf"
    """
    if not receipt_file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided"
        )

    file_ext = f".{receipt_file.filename.rsplit('.', 1)[-1]}".lower()
    if file_ext not in SUPPORTED_FORMATS:
        supported = ", ".join(sorted(SUPPORTED_FORMATS))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported file format '{file_ext}'. Supported: {supported}",
        )

    content = await receipt_file.read()
    if not content:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file"
        )
    if len(content) > MAX_FILE_SIZE:
        size_mb = len(content) / (1024 * 1024)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large ({size_mb:.1f}MB). Maximum size: 10MB",
        )

    logger.info(
        "Ingesting receipt file: filename=%s, size=%d bytes",
        receipt_file.filename,
        len(content),
    )
    document = RawDocument.from_bytes(content, filename=receipt_file.filename)
    try:
        record = await orchestrator.ingest(document, wait_for_upload=wait)
    except IngestError as e:
        raise HTTPException(status_code=_ingest_error_status(e), detail=str(e)) from e
    return ReceiptResponse.from_record(record)


@router.patch("/receipts/{key}", response_model=ReceiptResponse)
async def edit_receipt(
    key: str,
    edits: ReceiptEditRequest,
    repository: RepositoryDep,
    orchestrator: OrchestratorDep,
) -> ReceiptResponse:
    """Apply user edits locally and push them to the server.

    Edits are kept locally even when the push fails (502). New line items
    without explicit amounts recompute the subtotal from the items and the
    total from subtotal plus tax.
    """
    record = _lookup(repository, key)
    changes = edits.model_dump(exclude_unset=True)
    if edits.line_items is not None:
        if edits.subtotal is None:
            changes["subtotal"] = sum(
                (item.line_total for item in edits.line_items), ZERO
            )
        if edits.total is None:
            tax = record.tax if edits.tax is None else edits.tax
            changes["total"] = changes["subtotal"] + tax
    edited = ReceiptRecord.model_validate({**record.model_dump(), **changes})

    try:
        if not edited.receipt_number:
            return ReceiptResponse.from_record(repository.save(edited))
        pushed = await orchestrator.push_edits(edited)
    except SyncError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Saved locally, but the server update failed: {e}",
        ) from e
    except PersistenceError as e:
        logger.error("Could not save edits for %s: %s", key, e)
        code = (
            status.HTTP_409_CONFLICT
            if isinstance(e, DuplicateReceiptError)
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        raise HTTPException(
            status_code=code, detail=f"Could not save edits: {e}"
        ) from e
    return ReceiptResponse.from_record(pushed)


@router.delete("/receipts/{key}")
async def delete_receipt(
    key: str, repository: RepositoryDep, orchestrator: OrchestratorDep
) -> dict[str, Any]:
    """Delete a receipt locally and, best effort, on the server."""
    record = _lookup(repository, key)
    remote_deleted = await orchestrator.delete(record)
    return {"deleted": key, "remote_deleted": remote_deleted}


@router.post("/sync", response_model=ReconciliationReport)
async def sync_receipts(orchestrator: OrchestratorDep) -> ReconciliationReport:
    """Pull the remote receipt list and reconcile it."""
    try:
        return await orchestrator.pull()
    except SyncError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)
        ) from e


@router.get("/analytics", response_model=SpendingSummary)
async def spending_analytics(
    analytics: AnalyticsDep,
    start: Annotated[datetime | None, Query(description="Range start")] = None,
    end: Annotated[datetime | None, Query(description="Range end")] = None,
) -> SpendingSummary:
    """Spending totals by month and category."""
    return analytics.summary(start, end)
