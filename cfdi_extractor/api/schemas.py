"""Pydantic request/response schemas for the FastAPI endpoints."""

from pydantic import BaseModel, Field


class ConceptoResponse(BaseModel):
    """Response schema for a single line item."""

    descripcion: str
    cantidad: str | None = None
    importe: str | None = None


class FiscalRecordResponse(BaseModel):
    """Response schema for an extracted fiscal record.

    Amounts are decimal strings with two places, e.g. ``"4139.19"``.
    """

    uuid: str | None = None
    rfc_emisor: str | None = None
    rfc_receptor: str | None = None
    total: str | None = None
    subtotal: str | None = None
    iva: str | None = None
    fecha: str | None = None
    forma_pago: str | None = None
    establecimiento: str | None = None
    conceptos: list[ConceptoResponse] = Field(default_factory=list)
    field_provenance: dict[str, str] = Field(default_factory=dict)
    overall_confidence: float = 0.0


class ErrorResponse(BaseModel):
    """Response schema for a pipeline error."""

    kind: str
    message: str


class ExtractionResponse(BaseModel):
    """Response schema for a document extraction request."""

    success: bool
    document_id: str
    filename: str | None = None
    record: FiscalRecordResponse | None = None
    error: ErrorResponse | None = None
    states: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    processing_time_ms: float = 0.0


class BatchExtractionResponse(BaseModel):
    """Response schema for batch extraction of multiple documents."""

    success: bool
    total_documents: int
    successful: int
    failed: int
    results: list[ExtractionResponse]


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    ocr_provider: str
    tesseract_available: bool
    ai_enabled: bool
