"""Document and extracted-text models."""

from __future__ import annotations

import hashlib
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class DocumentFormat(str, Enum):
    """Format hint for a raw document."""

    PDF = "pdf"
    IMAGE = "image"
    UNKNOWN = "unknown"

    @classmethod
    def detect(cls, content: bytes) -> DocumentFormat:
        """Detect the document format from its leading bytes."""
        if content.startswith(b"%PDF"):
            return cls.PDF
        if content.startswith(
            (b"\xff\xd8\xff", b"\x89PNG\r\n\x1a\n", b"GIF87a", b"GIF89a", b"BM")
        ):
            return cls.IMAGE
        if content.startswith((b"II*\x00", b"MM\x00*")):  # TIFF
            return cls.IMAGE
        if content.startswith(b"RIFF") and b"WEBP" in content[:20]:
            return cls.IMAGE
        return cls.UNKNOWN

    @classmethod
    def from_extension(cls, filename: str) -> DocumentFormat:
        """Guess the document format from a file extension."""
        ext = Path(filename).suffix.lower()
        if ext == ".pdf":
            return cls.PDF
        if ext in {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tif", ".tiff", ".webp"}:
            return cls.IMAGE
        return cls.UNKNOWN


class RawDocument(BaseModel):
    """Opaque document payload as supplied by the document provider."""

    model_config = ConfigDict(frozen=True)

    content: bytes = Field(..., min_length=1, repr=False)
    format: DocumentFormat = DocumentFormat.UNKNOWN
    filename: str = "receipt.pdf"

    @classmethod
    def from_bytes(cls, content: bytes, filename: str | None = None) -> RawDocument:
        """Build a document, detecting its format from content then filename."""
        detected = DocumentFormat.detect(content)
        if detected is DocumentFormat.UNKNOWN and filename:
            detected = DocumentFormat.from_extension(filename)
        if not filename:
            is_image = detected is DocumentFormat.IMAGE
            filename = "receipt.png" if is_image else "receipt.pdf"
        return cls(content=content, format=detected, filename=filename)

    @classmethod
    def from_path(cls, path: Path) -> RawDocument:
        """Read a document from disk."""
        return cls.from_bytes(path.read_bytes(), filename=path.name)

    @property
    def content_hash(self) -> str:
        """SHA-256 of the payload, used to spot duplicate ingestion."""
        return hashlib.sha256(self.content).hexdigest()


class TextSource(str, Enum):
    """How the text of a document was obtained."""

    DIRECT = "direct"
    OCR = "ocr"


class ExtractedText(BaseModel):
    """Ordered text lines produced once per document."""

    model_config = ConfigDict(frozen=True)

    lines: tuple[str, ...] = ()
    source: TextSource = TextSource.DIRECT

    @classmethod
    def from_text(cls, text: str, source: TextSource) -> ExtractedText:
        """Split a block of text into lines."""
        return cls(lines=tuple(text.splitlines()), source=source)

    @property
    def text(self) -> str:
        """The lines joined back into one block."""
        return "\n".join(self.lines)

    @property
    def is_empty(self) -> bool:
        """True when no line carries any visible text."""
        return not any(line.strip() for line in self.lines)
