"""Tests for PDF handling and per-kind text acquisition."""

from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

from cfdi_extractor.acquisition.pdf_handler import PAGE_BREAK, PDFHandler
from cfdi_extractor.acquisition.text_acquirer import TextAcquirer
from cfdi_extractor.errors import NoTextDetected, OCRFailure, UnsupportedFormat
from cfdi_extractor.models import AcquisitionMethod, DocumentKind, RawDocument


def _mock_pdf(*page_texts: str | None) -> MagicMock:
    """Create a pdfplumber module mock whose PDF has the given pages."""
    pages = []
    for text in page_texts:
        page = MagicMock()
        page.extract_text.return_value = text
        pages.append(page)
    module = MagicMock()
    module.open.return_value.__enter__.return_value.pages = pages
    return module


class TestPDFHandler:
    """Tests for the PDFHandler class."""

    def test_init_defaults(self) -> None:
        handler = PDFHandler()
        assert handler.dpi == 300
        assert handler.max_pages == 10
        assert handler.min_text_length == 50

    def test_extract_text_layer_joins_pages(self) -> None:
        mock_pdf = _mock_pdf("Factura pagina uno", None, "Total $1,160.00")
        with patch("cfdi_extractor.acquisition.pdf_handler.pdfplumber", mock_pdf):
            text, page_count = PDFHandler().extract_text_layer(b"%PDF-1.4")

        assert page_count == 3
        assert text == f"Factura pagina uno{PAGE_BREAK}Total $1,160.00"

    def test_extract_text_layer_failure(self) -> None:
        mock_pdf = MagicMock()
        mock_pdf.open.side_effect = ValueError("not a PDF")
        with patch("cfdi_extractor.acquisition.pdf_handler.pdfplumber", mock_pdf):
            with pytest.raises(RuntimeError, match="PDF text extraction failed"):
                PDFHandler().extract_text_layer(b"garbage")

    def test_has_usable_text(self) -> None:
        handler = PDFHandler(min_text_length=10)
        assert handler.has_usable_text("RFC AAA010101AAA")
        assert not handler.has_usable_text("   \n  abc   ")

    @patch("cfdi_extractor.acquisition.pdf_handler.convert_from_bytes")
    def test_pdf_to_png_pages(self, mock_convert: MagicMock) -> None:
        mock_convert.return_value = [Image.new("RGB", (30, 20)), Image.new("L", (30, 20))]
        handler = PDFHandler(dpi=200, max_pages=2)

        pages = handler.pdf_to_png_pages(b"%PDF-1.4 fake content")

        assert len(pages) == 2
        assert all(p.startswith(b"\x89PNG") for p in pages)
        mock_convert.assert_called_once_with(b"%PDF-1.4 fake content", dpi=200, last_page=2)

    @patch("cfdi_extractor.acquisition.pdf_handler.convert_from_bytes")
    def test_pdf_to_png_pages_failure(self, mock_convert: MagicMock) -> None:
        mock_convert.side_effect = Exception("poppler not installed")
        with pytest.raises(RuntimeError, match="PDF conversion failed"):
            PDFHandler().pdf_to_png_pages(b"%PDF-1.4")


class TestTextAcquirer:
    """Tests for the TextAcquirer class."""

    @pytest.mark.asyncio
    async def test_xml_yields_candidates_without_ocr(
        self, cfdi_xml: bytes, fake_ocr
    ) -> None:
        engine = fake_ocr("unused")
        acquirer = TextAcquirer(engine)

        result = await acquirer.acquire(RawDocument.from_bytes(cfdi_xml), DocumentKind.XML)

        assert result.text.method is AcquisitionMethod.XML_ATTR
        assert result.candidates["uuid"].value == "5fb2822e-396d-4725-8521-cdc4bdd20ccf"
        assert engine.calls == 0

    @pytest.mark.asyncio
    async def test_image_runs_ocr(self, png_header: bytes, fake_ocr) -> None:
        acquirer = TextAcquirer(fake_ocr("TOTAL $10.00", confidence=0.8))

        result = await acquirer.acquire(
            RawDocument.from_bytes(png_header), DocumentKind.IMAGE
        )

        assert result.text.text == "TOTAL $10.00"
        assert result.text.method is AcquisitionMethod.OCR
        assert result.text.ocr_confidence == 0.8
        assert result.candidates == {}

    @pytest.mark.asyncio
    async def test_empty_ocr_raises_no_text(self, png_header: bytes, fake_ocr) -> None:
        acquirer = TextAcquirer(fake_ocr("   \n"))
        with pytest.raises(NoTextDetected):
            await acquirer.acquire(RawDocument.from_bytes(png_header), DocumentKind.IMAGE)

    @pytest.mark.asyncio
    async def test_image_without_engine_fails(self, png_header: bytes) -> None:
        acquirer = TextAcquirer(None)
        with pytest.raises(OCRFailure, match="no OCR engine"):
            await acquirer.acquire(RawDocument.from_bytes(png_header), DocumentKind.IMAGE)

    @pytest.mark.asyncio
    async def test_pdf_with_text_layer_skips_ocr(self, fake_ocr) -> None:
        engine = fake_ocr("unused")
        handler = PDFHandler(min_text_length=10)
        handler.extract_text_layer = MagicMock(return_value=("R.F.C.: SEM950215S98", 1))
        acquirer = TextAcquirer(engine, handler)

        result = await acquirer.acquire(
            RawDocument.from_bytes(b"%PDF-1.7"), DocumentKind.PDF
        )

        assert result.text.method is AcquisitionMethod.PDF_TEXT
        assert result.text.text == "R.F.C.: SEM950215S98"
        assert engine.calls == 0

    @pytest.mark.asyncio
    async def test_scanned_pdf_falls_back_to_ocr(self, fake_ocr) -> None:
        engine = fake_ocr("TOTAL $1,160.00", confidence=0.7)
        handler = PDFHandler()
        handler.extract_text_layer = MagicMock(return_value=("", 2))
        handler.pdf_to_png_pages = MagicMock(return_value=[b"page1", b"page2"])
        acquirer = TextAcquirer(engine, handler)

        result = await acquirer.acquire(
            RawDocument.from_bytes(b"%PDF-1.7"), DocumentKind.PDF
        )

        assert result.text.method is AcquisitionMethod.OCR
        assert result.text.page_count == 2
        assert result.text.text == f"TOTAL $1,160.00{PAGE_BREAK}TOTAL $1,160.00"
        assert result.text.ocr_confidence == pytest.approx(0.7)
        assert engine.calls == 2

    @pytest.mark.asyncio
    async def test_unreadable_pdf_raises_ocr_failure(self, fake_ocr) -> None:
        handler = PDFHandler()
        handler.extract_text_layer = MagicMock(side_effect=RuntimeError("broken"))
        handler.pdf_to_png_pages = MagicMock(side_effect=RuntimeError("broken"))
        acquirer = TextAcquirer(fake_ocr("unused"), handler)

        with pytest.raises(OCRFailure):
            await acquirer.acquire(RawDocument.from_bytes(b"%PDF-1.7"), DocumentKind.PDF)

    @pytest.mark.asyncio
    async def test_non_cfdi_xml_is_unsupported(self) -> None:
        acquirer = TextAcquirer(None)
        with pytest.raises(UnsupportedFormat):
            await acquirer.acquire(RawDocument.from_bytes(b"<root/>"), DocumentKind.XML)
