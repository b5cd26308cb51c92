"""receiptsync services."""

from .analytics import SpendingAnalytics, SpendingSummary
from .api_client import ReceiptAPIClient, ReceiptAPIError
from .field_extractor import FieldExtractor
from .orchestrator import (
    DuplicateIngestError,
    IngestError,
    OrchestrationError,
    SyncError,
    SyncOrchestrator,
)
from .reconciliation import ReconciliationEngine, ReconciliationReport
from .repository import DuplicateReceiptError, PersistenceError, ReceiptRepository
from .text_acquirer import (
    ExtractionError,
    InvalidDocumentError,
    RecognitionFailedError,
    TextAcquirer,
)

__all__ = [
    "DuplicateIngestError",
    "DuplicateReceiptError",
    "ExtractionError",
    "FieldExtractor",
    "IngestError",
    "InvalidDocumentError",
    "OrchestrationError",
    "PersistenceError",
    "ReceiptAPIClient",
    "ReceiptAPIError",
    "ReceiptRepository",
    "RecognitionFailedError",
    "ReconciliationEngine",
    "ReconciliationReport",
    "SpendingAnalytics",
    "SpendingSummary",
    "SyncError",
    "SyncOrchestrator",
    "TextAcquirer",
]
