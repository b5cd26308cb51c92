"""receiptsync models package."""

from .document import DocumentFormat, ExtractedText, RawDocument, TextSource
from .receipt import (
    UNKNOWN_VENDOR,
    LineItem,
    ParsedReceipt,
    ProcessingStatus,
    ReceiptRecord,
)
from .remote import (
    LineItemUpdate,
    ReceiptUpdateRequest,
    RemoteLineItem,
    RemoteReceipt,
    RemoteReceiptList,
)

__all__ = [
    "UNKNOWN_VENDOR",
    "DocumentFormat",
    "ExtractedText",
    "LineItem",
    "LineItemUpdate",
    "ParsedReceipt",
    "ProcessingStatus",
    "RawDocument",
    "ReceiptRecord",
    "ReceiptUpdateRequest",
    "RemoteLineItem",
    "RemoteReceipt",
    "RemoteReceiptList",
    "TextSource",
]
