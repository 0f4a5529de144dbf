"""PDF text-layer extraction and page rasterization.

Digital CFDI PDFs carry an embedded text layer that is read directly;
scanned PDFs are rendered to PNG pages for OCR.
"""

import io

import pdfplumber
from pdf2image import convert_from_bytes

from cfdi_extractor.utils.logger import get_logger

logger = get_logger(__name__)

PAGE_BREAK = "\n\n--- Page Break ---\n\n"


class PDFHandler:
    """Reads embedded text from PDFs and renders pages for OCR.

    Args:
        dpi: Resolution for page rendering. Higher values produce
            better OCR results but use more memory.
        max_pages: Maximum number of pages rendered for OCR.
        min_text_length: Shortest text layer, in non-blank characters,
            that is trusted without OCR.
    """

    def __init__(
        self,
        dpi: int = 300,
        max_pages: int = 10,
        min_text_length: int = 50,
    ) -> None:
        self.dpi = dpi
        self.max_pages = max_pages
        self.min_text_length = min_text_length

    def extract_text_layer(self, pdf_bytes: bytes) -> tuple[str, int]:
        """Read the embedded text of every page.

        Args:
            pdf_bytes: Raw PDF bytes.

        Returns:
            Tuple of (joined page text, page count).

        Raises:
            RuntimeError: If the PDF cannot be opened.
        """
        try:
            with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                pages = [page.extract_text() or "" for page in pdf.pages]
        except Exception as exc:
            raise RuntimeError(f"PDF text extraction failed: {exc}") from exc

        text = PAGE_BREAK.join(p for p in pages if p.strip())
        logger.info(
            "PDF text layer: %d pages, %d characters", len(pages), len(text.strip())
        )
        return text, len(pages)

    def has_usable_text(self, text: str) -> bool:
        """Return whether a text layer is long enough to skip OCR."""
        return len(text.strip()) >= self.min_text_length

    def pdf_to_png_pages(self, pdf_bytes: bytes) -> list[bytes]:
        """Render PDF pages to PNG-encoded images.

        Args:
            pdf_bytes: Raw PDF bytes.

        Returns:
            List of PNG bytes, one per rendered page.

        Raises:
            RuntimeError: If PDF conversion fails.
        """
        try:
            pil_images = convert_from_bytes(
                pdf_bytes, dpi=self.dpi, last_page=self.max_pages
            )
        except Exception as exc:
            raise RuntimeError(f"PDF conversion failed: {exc}") from exc

        pages: list[bytes] = []
        for image in pil_images:
            buf = io.BytesIO()
            image.save(buf, format="PNG")
            pages.append(buf.getvalue())
        logger.info("Rendered %d PDF pages at %d DPI", len(pages), self.dpi)
        return pages
