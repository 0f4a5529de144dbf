"""Builds the immutable ``FiscalRecord`` and its overall confidence.

Confidence is the product of three factors:

* source: OCR confidence for OCR transcripts, 0.95 for PDF text layers,
  1.0 for CFDI XML;
* fields: mean per-field weight over the core fields, where the weight
  depends on how the surviving value was obtained;
* reconciliation: 1.0 when the amounts agreed as extracted, 0.9 when
  some were back-computed, 0.8 when extracted amounts conflicted.
"""

from cfdi_extractor.models import (
    CORE_FIELDS,
    PRIORITY_GENERIC,
    PRIORITY_SAT_URL,
    AcquiredText,
    AcquisitionMethod,
    ExtractionMethod,
    FiscalRecord,
)
from cfdi_extractor.utils.logger import get_logger
from cfdi_extractor.validation.normalizer import NormalizedFields
from cfdi_extractor.validation.reconciliation import (
    Reconciliation,
    ReconciliationStatus,
)

logger = get_logger(__name__)

SOURCE_FACTORS = {
    AcquisitionMethod.XML_ATTR: 1.0,
    AcquisitionMethod.PDF_TEXT: 0.95,
}

METHOD_WEIGHTS = {
    ExtractionMethod.XML_ATTR: 1.0,
    ExtractionMethod.AI: 0.5,
    ExtractionMethod.DERIVED: 0.6,
}
# Pattern weights depend on the strategy tier.
PATTERN_WEIGHT_SAT_URL = 1.0
PATTERN_WEIGHT_LABELED = 0.85
PATTERN_WEIGHT_GENERIC = 0.6

RECONCILIATION_FACTORS = {
    ReconciliationStatus.CONSISTENT: 1.0,
    ReconciliationStatus.INCOMPLETE: 1.0,
    ReconciliationStatus.DERIVED: 0.9,
    ReconciliationStatus.OVERRIDDEN: 0.8,
}


class ResultAssembler:
    """Combines normalized fields and reconciled amounts into a record."""

    def assemble(
        self,
        acquired: AcquiredText,
        fields: NormalizedFields,
        reconciliation: Reconciliation,
    ) -> FiscalRecord:
        """Build the final record.

        Args:
            acquired: Transcript metadata, used for the source factor.
            fields: Normalized values and their source candidates.
            reconciliation: Reconciled amounts.

        Returns:
            The immutable fiscal record.
        """
        provenance: dict[str, str] = {
            name: str(candidate.method) for name, candidate in fields.sources.items()
        }
        for name in reconciliation.derived_fields:
            provenance[name] = str(ExtractionMethod.DERIVED)

        weights = [self._field_weight(name, fields, provenance) for name in CORE_FIELDS]
        field_score = sum(weights) / len(weights)

        if acquired.method is AcquisitionMethod.OCR:
            source_factor = acquired.ocr_confidence or 0.0
        else:
            source_factor = SOURCE_FACTORS[acquired.method]

        confidence = round(
            source_factor * field_score * RECONCILIATION_FACTORS[reconciliation.status],
            4,
        )
        values = fields.values
        record = FiscalRecord(
            uuid=values.get("uuid"),
            rfc_emisor=values.get("rfc_emisor"),
            rfc_receptor=values.get("rfc_receptor"),
            total=reconciliation.total,
            subtotal=reconciliation.subtotal,
            iva=reconciliation.iva,
            fecha=values.get("fecha"),
            forma_pago=values.get("forma_pago"),
            establecimiento=values.get("establecimiento"),
            conceptos=values.get("conceptos", ()),
            field_provenance=dict(sorted(provenance.items())),
            overall_confidence=confidence,
        )
        logger.info(
            "Assembled record with %d fields, confidence %.4f",
            len(provenance),
            confidence,
        )
        return record

    def _field_weight(
        self, name: str, fields: NormalizedFields, provenance: dict[str, str]
    ) -> float:
        if name not in provenance:
            return 0.0
        method = ExtractionMethod(provenance[name])
        if method is not ExtractionMethod.PATTERN:
            return METHOD_WEIGHTS[method]
        priority = fields.sources[name].priority
        if priority >= PRIORITY_SAT_URL:
            return PATTERN_WEIGHT_SAT_URL
        if priority > PRIORITY_GENERIC:
            return PATTERN_WEIGHT_LABELED
        return PATTERN_WEIGHT_GENERIC
