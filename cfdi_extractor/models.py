"""Core data types flowing through the extraction pipeline."""

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from cfdi_extractor.errors import ExtractionError


class DocumentKind(StrEnum):
    """Input formats the classifier recognizes."""

    XML = "xml"
    PDF = "pdf"
    IMAGE = "image"


class AcquisitionMethod(StrEnum):
    """How the text transcript of a document was obtained."""

    XML_ATTR = "xml-attr"
    PDF_TEXT = "pdf-text"
    OCR = "ocr"


class ExtractionMethod(StrEnum):
    """Where the surviving value of a field came from."""

    XML_ATTR = "xml-attr"
    PATTERN = "pattern"
    AI = "ai"
    DERIVED = "derived"


class PipelineState(StrEnum):
    """States of a single document's trip through the pipeline."""

    RECEIVED = "RECEIVED"
    CLASSIFIED = "CLASSIFIED"
    TEXT_ACQUIRED = "TEXT_ACQUIRED"
    PATTERN_EXTRACTED = "PATTERN_EXTRACTED"
    AI_AUGMENTED = "AI_AUGMENTED"
    NORMALIZED = "NORMALIZED"
    ASSEMBLED = "ASSEMBLED"
    FAILED = "FAILED"


# Candidate priorities; higher wins.
PRIORITY_XML = 100
PRIORITY_SAT_URL = 90
PRIORITY_LABELED = 70
PRIORITY_GENERIC = 40
PRIORITY_AI = 20

FIELD_NAMES = (
    "uuid",
    "rfc_emisor",
    "rfc_receptor",
    "total",
    "subtotal",
    "iva",
    "fecha",
    "forma_pago",
    "establecimiento",
    "conceptos",
)

# Fields whose absence lowers confidence and triggers the AI pass.
CORE_FIELDS = ("uuid", "rfc_emisor", "rfc_receptor", "total", "fecha")

AMOUNT_FIELDS = ("total", "subtotal", "iva")

# A record needs at least one of these to count as a fiscal document.
FISCAL_FIELDS = ("uuid", "rfc_emisor", "rfc_receptor", *AMOUNT_FIELDS, "fecha")


@dataclass(frozen=True)
class RawDocument:
    """Raw input bytes plus what the caller declared about them."""

    id: str
    data: bytes
    mime_type: str | None = None
    source_filename: str | None = None

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        mime_type: str | None = None,
        source_filename: str | None = None,
    ) -> "RawDocument":
        """Build a document whose id is derived from its content."""
        digest = hashlib.sha256(data).hexdigest()[:16]
        return cls(
            id=digest,
            data=data,
            mime_type=mime_type,
            source_filename=source_filename,
        )


@dataclass(frozen=True)
class AcquiredText:
    """Transcript of a document and how it was produced."""

    text: str
    method: AcquisitionMethod
    ocr_confidence: float | None = None
    page_count: int = 1


@dataclass(frozen=True)
class FieldCandidate:
    """A proposed value for one field, before normalization."""

    field: str
    value: Any
    method: ExtractionMethod
    priority: int
    source_snippet: str = ""
    strategy: str = ""


@dataclass(frozen=True)
class Concepto:
    """A single line item of an invoice or ticket."""

    descripcion: str
    cantidad: Decimal | None = None
    importe: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "descripcion": self.descripcion,
            "cantidad": _decimal_to_str(self.cantidad),
            "importe": _decimal_to_str(self.importe),
        }


def _decimal_to_str(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


@dataclass(frozen=True)
class FiscalRecord:
    """Normalized, confidence-scored result of one extraction.

    Amounts are ``Decimal`` values quantized to cents. ``field_provenance``
    maps every non-null field to the method that produced it.
    """

    uuid: str | None = None
    rfc_emisor: str | None = None
    rfc_receptor: str | None = None
    total: Decimal | None = None
    subtotal: Decimal | None = None
    iva: Decimal | None = None
    fecha: str | None = None
    forma_pago: str | None = None
    establecimiento: str | None = None
    conceptos: tuple[Concepto, ...] = ()
    field_provenance: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )
    overall_confidence: float = 0.0

    def __post_init__(self) -> None:
        if not isinstance(self.field_provenance, MappingProxyType):
            object.__setattr__(
                self, "field_provenance", MappingProxyType(dict(self.field_provenance))
            )

    def has_fiscal_field(self) -> bool:
        return any(getattr(self, name) is not None for name in FISCAL_FIELDS)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready dictionary with amounts as strings."""
        return {
            "uuid": self.uuid,
            "rfc_emisor": self.rfc_emisor,
            "rfc_receptor": self.rfc_receptor,
            "total": _decimal_to_str(self.total),
            "subtotal": _decimal_to_str(self.subtotal),
            "iva": _decimal_to_str(self.iva),
            "fecha": self.fecha,
            "forma_pago": self.forma_pago,
            "establecimiento": self.establecimiento,
            "conceptos": [c.to_dict() for c in self.conceptos],
            "field_provenance": dict(sorted(self.field_provenance.items())),
            "overall_confidence": self.overall_confidence,
        }

    def to_json(self) -> str:
        """Serialize deterministically; equal records give equal bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, ensure_ascii=False)


@dataclass(frozen=True)
class ExtractionOutcome:
    """Tagged result returned by the pipeline: a record or an error."""

    document_id: str
    record: FiscalRecord | None = None
    error: ExtractionError | None = None
    states: tuple[PipelineState, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.record is not None and self.error is None

    def unwrap(self) -> FiscalRecord:
        """Return the record or raise the captured error."""
        if self.error is not None:
            raise self.error
        assert self.record is not None
        return self.record

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "success": self.ok,
            "record": self.record.to_dict() if self.record else None,
            "error": self.error.to_dict() if self.error else None,
            "states": [str(s) for s in self.states],
            "warnings": list(self.warnings),
        }
