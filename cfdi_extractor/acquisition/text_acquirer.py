"""Per-kind text acquisition: XML attributes, PDF text layer, or OCR."""

import asyncio
from dataclasses import dataclass, field

from cfdi_extractor.errors import NoTextDetected, OCRFailure
from cfdi_extractor.models import (
    AcquiredText,
    AcquisitionMethod,
    DocumentKind,
    FieldCandidate,
    RawDocument,
)
from cfdi_extractor.ocr.engine import OCREngine, OCRResult
from cfdi_extractor.utils.logger import get_logger

from .pdf_handler import PAGE_BREAK, PDFHandler
from .xml_reader import CFDIXMLReader

logger = get_logger(__name__)


@dataclass
class AcquisitionResult:
    """Transcript of a document plus any structured candidates."""

    text: AcquiredText
    candidates: dict[str, FieldCandidate] = field(default_factory=dict)


class TextAcquirer:
    """Obtains a transcript for each document kind.

    Args:
        ocr_engine: Backend for images and scanned PDFs. When ``None``,
            only XML and text-layer PDFs can be processed.
        pdf_handler: PDF text reader and rasterizer.
        language_hints: Hints forwarded to the OCR engine.
    """

    def __init__(
        self,
        ocr_engine: OCREngine | None,
        pdf_handler: PDFHandler | None = None,
        language_hints: list[str] | None = None,
    ) -> None:
        self.ocr_engine = ocr_engine
        self.pdf_handler = pdf_handler or PDFHandler()
        self.language_hints = language_hints or ["es", "en"]
        self.xml_reader = CFDIXMLReader()

    async def acquire(self, document: RawDocument, kind: DocumentKind) -> AcquisitionResult:
        """Produce the transcript for a classified document.

        Args:
            document: The raw input.
            kind: Result of classification.

        Returns:
            Acquired text and, for XML, attribute candidates.

        Raises:
            UnsupportedFormat: If an XML input is not a CFDI.
            OCRFailure: If OCR is needed but fails or is unavailable.
            NoTextDetected: If the transcript is empty.
        """
        if kind is DocumentKind.XML:
            read = self.xml_reader.read(document.data)
            return AcquisitionResult(text=read.text, candidates=read.candidates)

        if kind is DocumentKind.PDF:
            acquired = await self._acquire_pdf(document.data)
        else:
            result = await self._ocr(document.data)
            acquired = AcquiredText(
                text=result.text,
                method=AcquisitionMethod.OCR,
                ocr_confidence=result.confidence,
            )

        if not acquired.text.strip():
            raise NoTextDetected(f"no text found in {kind} document")
        return AcquisitionResult(text=acquired)

    async def _acquire_pdf(self, data: bytes) -> AcquiredText:
        text, page_count = "", 0
        try:
            text, page_count = await asyncio.to_thread(
                self.pdf_handler.extract_text_layer, data
            )
        except RuntimeError as exc:
            logger.warning("Falling back to OCR: %s", exc)

        if self.pdf_handler.has_usable_text(text):
            return AcquiredText(
                text=text,
                method=AcquisitionMethod.PDF_TEXT,
                page_count=page_count,
            )

        logger.info("PDF has no usable text layer, running OCR")
        try:
            pages = await asyncio.to_thread(self.pdf_handler.pdf_to_png_pages, data)
        except RuntimeError as exc:
            raise OCRFailure(str(exc)) from exc

        results = await asyncio.gather(*(self._ocr(page) for page in pages))
        texts = [r.text for r in results if r.text.strip()]
        confidence = (
            sum(r.confidence for r in results) / len(results) if results else 0.0
        )
        return AcquiredText(
            text=PAGE_BREAK.join(texts),
            method=AcquisitionMethod.OCR,
            ocr_confidence=confidence,
            page_count=len(pages),
        )

    async def _ocr(self, image_bytes: bytes) -> OCRResult:
        if self.ocr_engine is None:
            raise OCRFailure("no OCR engine configured")
        return await self.ocr_engine.recognize(image_bytes, self.language_hints)
