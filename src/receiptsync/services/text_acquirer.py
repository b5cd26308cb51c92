"""Text acquisition: direct PDF text extraction with an OCR fallback."""

from __future__ import annotations

import asyncio
import io
import logging
import threading
from typing import TYPE_CHECKING

import pytesseract
from pdf2image import convert_from_bytes
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFSyntaxError,
)
from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from receiptsync.models import DocumentFormat, ExtractedText, RawDocument, TextSource

if TYPE_CHECKING:
    from collections.abc import Callable

    from receiptsync.core.config import Settings

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Base exception for text acquisition failures."""


class InvalidDocumentError(ExtractionError):
    """Raised when the document cannot be opened at all."""


class RecognitionFailedError(ExtractionError):
    """Raised when OCR errors out or recognizes nothing usable."""


class AcquisitionProgress:
    """Progress of a single acquisition, in [0, 1] and never moving backwards."""

    def __init__(self, on_progress: Callable[[float], None] | None = None) -> None:
        self.value = 0.0
        self.on_progress = on_progress

    def publish(self, value: float) -> None:
        """Advance the progress value and notify the callback."""
        value = min(max(value, self.value), 1.0)
        if value == self.value:
            return
        self.value = value
        if self.on_progress is not None:
            self.on_progress(value)


def _finish(text: ExtractedText, progress: AcquisitionProgress) -> ExtractedText:
    progress.publish(1.0)
    return text


class TextAcquirer:
    """Turns a raw document into text lines.

    Machine-encoded PDF text is used when present; otherwise the first page is
    rasterized and run through Tesseract. The blocking work runs in a worker
    thread so the event loop stays responsive.

    One instance may serve overlapping acquisitions. Each call tracks its own
    progress; ``progress`` reports the most recently started call and
    ``is_processing`` stays true while any call is running.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        on_progress: Callable[[float], None] | None = None,
    ) -> None:
        """Initialize the acquirer.

        Args:
            settings: Application settings (OCR language, engine config, DPI)
            on_progress: Default callback receiving progress values in [0, 1]
        """
        self.language = settings.ocr_language
        self.engine_config = settings.ocr_engine_config
        self.dpi = settings.ocr_dpi
        self.on_progress = on_progress
        self._lock = threading.Lock()
        self._active = 0
        self._latest = AcquisitionProgress()

        if settings.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = settings.tesseract_cmd

    @property
    def is_processing(self) -> bool:
        """True while at least one acquisition is running."""
        with self._lock:
            return self._active > 0

    @property
    def progress(self) -> float:
        """Progress of the most recently started acquisition."""
        return self._latest.value

    async def acquire(
        self,
        document: RawDocument,
        *,
        on_progress: Callable[[float], None] | None = None,
    ) -> ExtractedText:
        """Extract text lines from a document.

        Args:
            document: The document to read
            on_progress: Callback for this call only, instead of the
                instance callback

        Raises:
            InvalidDocumentError: If the document cannot be opened
            RecognitionFailedError: If OCR fails or yields no text
        """
        return await asyncio.to_thread(
            self.acquire_sync, document, on_progress=on_progress
        )

    def acquire_sync(
        self,
        document: RawDocument,
        *,
        on_progress: Callable[[float], None] | None = None,
    ) -> ExtractedText:
        """Blocking variant of ``acquire``."""
        progress = AcquisitionProgress(on_progress or self.on_progress)
        with self._lock:
            self._active += 1
            self._latest = progress
        try:
            return self._acquire(document, progress)
        finally:
            with self._lock:
                self._active -= 1

    def _acquire(
        self, document: RawDocument, progress: AcquisitionProgress
    ) -> ExtractedText:
        if document.format is DocumentFormat.IMAGE:
            image = self._open_image(document.content)
            progress.publish(0.5)
            return _finish(self._recognize(image), progress)

        reader = self._open_pdf(document)
        if reader is None:
            # Unknown format that isn't a PDF; give the image decoder a try
            image = self._open_image(document.content)
            progress.publish(0.5)
            return _finish(self._recognize(image), progress)

        progress.publish(0.2)
        text = self._extract_pdf_text(reader)
        progress.publish(0.5)
        if text:
            logger.info(
                "Extracted text directly from PDF",
                extra={"pages": len(reader.pages), "characters": len(text)},
            )
            return _finish(ExtractedText.from_text(text, TextSource.DIRECT), progress)

        logger.info("PDF has no machine-encoded text, falling back to OCR")
        image = self._rasterize_first_page(document.content)
        progress.publish(0.6)
        return _finish(self._recognize(image), progress)

    def _open_pdf(self, document: RawDocument) -> PdfReader | None:
        """Open a PDF, or return None if an unknown-format payload isn't one."""
        try:
            reader = PdfReader(io.BytesIO(document.content))
            if len(reader.pages) == 0:
                msg = "PDF has no pages"
                raise InvalidDocumentError(msg)
        except (PyPdfError, ValueError, OSError, KeyError) as e:
            if document.format is DocumentFormat.UNKNOWN:
                return None
            msg = f"Invalid or corrupted PDF file: {e}"
            raise InvalidDocumentError(msg) from e
        return reader

    def _open_image(self, content: bytes) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(content))
            image.load()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            msg = f"Unable to open document: {e}"
            raise InvalidDocumentError(msg) from e
        return image

    def _extract_pdf_text(self, reader: PdfReader) -> str:
        """Concatenate page text in page order, one line break between pages."""
        pages: list[str] = []
        for index, page in enumerate(reader.pages):
            try:
                pages.append(page.extract_text() or "")
            except (PyPdfError, ValueError, KeyError) as e:
                logger.warning("Failed to extract text from page %d: %s", index, e)
                pages.append("")
        return "\n".join(pages).strip()

    def _rasterize_first_page(self, content: bytes) -> Image.Image:
        try:
            images = convert_from_bytes(
                content,
                dpi=self.dpi,
                first_page=1,
                last_page=1,
            )
        except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError) as e:
            msg = f"Failed to rasterize PDF page: {e}"
            raise RecognitionFailedError(msg) from e
        if not images:
            msg = "No image generated for the first page"
            raise RecognitionFailedError(msg)
        return images[0]

    def _recognize(self, image: Image.Image) -> ExtractedText:
        """Run Tesseract and keep one string per recognized text line."""
        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.language,
                config=self.engine_config,
                output_type=pytesseract.Output.DICT,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
            msg = f"OCR processing failed: {e}"
            raise RecognitionFailedError(msg) from e

        lines: dict[tuple[int, int, int], list[str]] = {}
        for index, word in enumerate(data.get("text", [])):
            word = (word or "").strip()
            if not word or float(data["conf"][index]) < 0:
                continue
            key = (
                int(data["block_num"][index]),
                int(data["par_num"][index]),
                int(data["line_num"][index]),
            )
            lines.setdefault(key, []).append(word)

        recognized = tuple(" ".join(words) for words in lines.values())
        if not recognized:
            msg = "OCR produced no text"
            raise RecognitionFailedError(msg)

        logger.info("Recognized %d text lines with OCR", len(recognized))
        return ExtractedText(lines=recognized, source=TextSource.OCR)
