"""Shared test fixtures for the CFDI extraction test suite."""

import asyncio
import io
from collections.abc import Callable
from pathlib import Path

import pytest
from PIL import Image

from cfdi_extractor.ocr.engine import OCRResult
from cfdi_extractor.pipeline import FiscalExtractionPipeline
from cfdi_extractor.utils.config import AIConfig, AppConfig, OCRConfig

SAMSUNG_TICKET = """SAMSUNG ELECTRONICS MEXICO S.A. DE C.V.
R.F.C.: SEM950215S98
AV. PASEO DE LOS TAMARINDOS 100
FECHA: 15/03/2024 14:32
1 GALAXY BUDS2 $3,568.19
SUBTOTAL $3,568.19
IVA 16% $571.00
TOTAL MXN $4,139.19
PAGO CON TARJETA DE CREDITO VISA
"""

SAT_INVOICE_TEXT = """FACTURA ELECTRONICA
R.F.C.: XYZ010101AB1
FECHA DE EMISION: 2024-01-15
TOTAL: $999.00
https://verificacfdi.facturaelectronica.sat.gob.mx/default.aspx?id=5FB2822E-396D-4725-8521-CDC4BDD20CCF&re=AAA010101AAA&rr=XAXX010101000&tt=1160.00&fe=ABCD1234
"""

CFDI_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<cfdi:Comprobante xmlns:cfdi="http://www.sat.gob.mx/cfd/4"
    xmlns:tfd="http://www.sat.gob.mx/TimbreFiscalDigital"
    Version="4.0" Fecha="2024-01-15T10:30:00" FormaPago="04"
    SubTotal="1000.00" Total="1160.00" Moneda="MXN">
  <cfdi:Emisor Rfc="AAA010101AAA" Nombre="ACME COMERCIAL" RegimenFiscal="601"/>
  <cfdi:Receptor Rfc="XAXX010101000" Nombre="PUBLICO EN GENERAL" UsoCFDI="G03"/>
  <cfdi:Conceptos>
    <cfdi:Concepto Cantidad="2" Descripcion="Servicio de consultoria"
        ValorUnitario="500.00" Importe="1000.00">
      <cfdi:Impuestos>
        <cfdi:Traslados>
          <cfdi:Traslado Base="1000.00" Impuesto="002" TasaOCuota="0.160000" Importe="160.00"/>
        </cfdi:Traslados>
      </cfdi:Impuestos>
    </cfdi:Concepto>
  </cfdi:Conceptos>
  <cfdi:Impuestos TotalImpuestosTrasladados="160.00"/>
  <cfdi:Complemento>
    <tfd:TimbreFiscalDigital Version="1.1"
        UUID="5fb2822e-396d-4725-8521-cdc4bdd20ccf"
        FechaTimbrado="2024-01-15T10:31:00" RfcProvCertif="SNF171020F3A"/>
  </cfdi:Complemento>
</cfdi:Comprobante>
"""

PNG_HEADER = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeOCREngine:
    """OCR engine returning a fixed transcript and recording its calls."""

    def __init__(
        self, text: str = "", confidence: float = 0.9, delay_s: float = 0.0
    ) -> None:
        self.text = text
        self.confidence = confidence
        self.delay_s = delay_s
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def recognize(
        self, image_bytes: bytes, language_hints: list[str]
    ) -> OCRResult:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            return OCRResult(text=self.text, confidence=self.confidence)
        finally:
            self.active -= 1

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def samsung_ticket() -> str:
    return SAMSUNG_TICKET


@pytest.fixture
def sat_invoice_text() -> str:
    return SAT_INVOICE_TEXT


@pytest.fixture
def cfdi_xml() -> bytes:
    return CFDI_XML


@pytest.fixture
def png_header() -> bytes:
    """Bytes that classify as PNG without being a decodable image."""
    return PNG_HEADER


@pytest.fixture
def png_bytes() -> bytes:
    """A small, decodable white PNG image."""
    buf = io.BytesIO()
    Image.new("RGB", (200, 100), "white").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def offline_config() -> AppConfig:
    """Configuration that never reaches a remote service."""
    return AppConfig(ocr=OCRConfig(provider="tesseract"), ai=AIConfig(enabled=False))


@pytest.fixture
def fake_ocr() -> Callable[..., FakeOCREngine]:
    return FakeOCREngine


@pytest.fixture
def make_pipeline(
    offline_config: AppConfig,
) -> Callable[..., FiscalExtractionPipeline]:
    """Build a pipeline around a fake OCR engine and optional AI mapper."""

    def build(text: str = "", confidence: float = 0.9, ai_mapper=None, **config):
        cfg = offline_config.model_copy(update=config)
        return FiscalExtractionPipeline(
            cfg, FakeOCREngine(text, confidence), ai_mapper=ai_mapper
        )

    return build


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the configs directory path."""
    return project_root / "configs"
