"""Tests for record assembly and confidence scoring."""

import dataclasses
import json
from decimal import Decimal
from types import MappingProxyType

import pytest

from cfdi_extractor.assembler import ResultAssembler
from cfdi_extractor.models import (
    PRIORITY_GENERIC,
    PRIORITY_LABELED,
    PRIORITY_SAT_URL,
    PRIORITY_XML,
    AcquiredText,
    AcquisitionMethod,
    Concepto,
    ExtractionMethod,
    FieldCandidate,
)
from cfdi_extractor.validation.normalizer import NormalizedFields
from cfdi_extractor.validation.reconciliation import (
    Reconciliation,
    ReconciliationStatus,
)


def _fields(**sources: tuple[object, ExtractionMethod, int]) -> NormalizedFields:
    """Build normalized fields from name=(value, method, priority)."""
    result = NormalizedFields()
    for name, (value, method, priority) in sources.items():
        result.values[name] = value
        result.sources[name] = FieldCandidate(name, value, method, priority)
    return result


class TestResultAssembler:
    """Tests for the ResultAssembler class."""

    def setup_method(self) -> None:
        self.assembler = ResultAssembler()
        self.xml_text = AcquiredText("<cfdi/>", AcquisitionMethod.XML_ATTR)

    def test_complete_xml_record(self) -> None:
        xml = ExtractionMethod.XML_ATTR
        fields = _fields(
            uuid=("5FB2822E-396D-4725-8521-CDC4BDD20CCF", xml, PRIORITY_XML),
            rfc_emisor=("AAA010101AAA", xml, PRIORITY_XML),
            rfc_receptor=("XAXX010101000", xml, PRIORITY_XML),
            total=(Decimal("1160.00"), xml, PRIORITY_XML),
            subtotal=(Decimal("1000.00"), xml, PRIORITY_XML),
            iva=(Decimal("160.00"), xml, PRIORITY_XML),
            fecha=("2024-01-15", xml, PRIORITY_XML),
        )
        reconciliation = Reconciliation(
            Decimal("1160.00"),
            Decimal("1000.00"),
            Decimal("160.00"),
            ReconciliationStatus.CONSISTENT,
        )

        record = self.assembler.assemble(self.xml_text, fields, reconciliation)

        assert record.overall_confidence == 1.0
        assert record.uuid == "5FB2822E-396D-4725-8521-CDC4BDD20CCF"
        assert record.total == Decimal("1160.00")
        assert set(record.field_provenance.values()) == {"xml-attr"}

    def test_ocr_confidence_and_derived_amounts(self) -> None:
        acquired = AcquiredText("TOTAL $116.00", AcquisitionMethod.OCR, ocr_confidence=0.8)
        fields = _fields(
            total=(Decimal("116.00"), ExtractionMethod.PATTERN, PRIORITY_LABELED)
        )
        reconciliation = Reconciliation(
            Decimal("116.00"),
            Decimal("100.00"),
            Decimal("16.00"),
            ReconciliationStatus.DERIVED,
            derived_fields=("subtotal", "iva"),
        )

        record = self.assembler.assemble(acquired, fields, reconciliation)

        assert record.overall_confidence == pytest.approx(0.8 * (0.85 / 5) * 0.9, abs=1e-4)
        assert dict(record.field_provenance) == {
            "iva": "derived",
            "subtotal": "derived",
            "total": "pattern",
        }
        assert record.subtotal == Decimal("100.00")

    def test_pattern_weights_follow_strategy_tier(self) -> None:
        pdf = AcquiredText("...", AcquisitionMethod.PDF_TEXT)
        pattern = ExtractionMethod.PATTERN
        fields = _fields(
            uuid=("5FB2822E-396D-4725-8521-CDC4BDD20CCF", pattern, PRIORITY_SAT_URL),
            rfc_emisor=("AAA010101AAA", pattern, PRIORITY_GENERIC),
            fecha=("2024-01-15", ExtractionMethod.AI, 20),
        )
        reconciliation = Reconciliation(None, None, None, ReconciliationStatus.INCOMPLETE)

        record = self.assembler.assemble(pdf, fields, reconciliation)

        expected = 0.95 * (1.0 + 0.6 + 0.5) / 5
        assert record.overall_confidence == pytest.approx(expected, abs=1e-4)

    def test_conflicting_amounts_lower_confidence(self) -> None:
        fields = _fields(
            total=(Decimal("116.00"), ExtractionMethod.XML_ATTR, PRIORITY_XML)
        )
        reconciliation = Reconciliation(
            Decimal("116.00"),
            Decimal("100.00"),
            Decimal("16.00"),
            ReconciliationStatus.OVERRIDDEN,
            derived_fields=("iva",),
        )
        record = self.assembler.assemble(self.xml_text, fields, reconciliation)
        assert record.overall_confidence == pytest.approx(0.2 * 0.8)

    def test_missing_ocr_confidence_counts_as_zero(self) -> None:
        acquired = AcquiredText("x", AcquisitionMethod.OCR)
        fields = _fields(fecha=("2024-01-15", ExtractionMethod.PATTERN, PRIORITY_LABELED))
        reconciliation = Reconciliation(None, None, None, ReconciliationStatus.INCOMPLETE)
        record = self.assembler.assemble(acquired, fields, reconciliation)
        assert record.overall_confidence == 0.0
        assert record.fecha == "2024-01-15"


class TestFiscalRecord:
    """Tests for the assembled record's immutability and serialization."""

    def setup_method(self) -> None:
        fields = _fields(
            total=(Decimal("4139.19"), ExtractionMethod.PATTERN, PRIORITY_LABELED),
            conceptos=(
                (Concepto("GALAXY BUDS2", Decimal("1.00"), Decimal("3568.19")),),
                ExtractionMethod.PATTERN,
                PRIORITY_GENERIC,
            ),
        )
        reconciliation = Reconciliation(
            Decimal("4139.19"),
            Decimal("3568.27"),
            Decimal("570.92"),
            ReconciliationStatus.DERIVED,
            derived_fields=("subtotal", "iva"),
        )
        acquired = AcquiredText("...", AcquisitionMethod.OCR, ocr_confidence=0.9)
        self.record = ResultAssembler().assemble(acquired, fields, reconciliation)

    def test_record_is_frozen(self) -> None:
        with pytest.raises(dataclasses.FrozenInstanceError):
            self.record.total = Decimal("1.00")

    def test_provenance_is_read_only(self) -> None:
        assert isinstance(self.record.field_provenance, MappingProxyType)
        with pytest.raises(TypeError):
            self.record.field_provenance["total"] = "ai"

    def test_to_dict_uses_strings_for_amounts(self) -> None:
        data = self.record.to_dict()
        assert data["total"] == "4139.19"
        assert data["iva"] == "570.92"
        assert data["conceptos"] == [
            {"descripcion": "GALAXY BUDS2", "cantidad": "1.00", "importe": "3568.19"}
        ]
        assert data["uuid"] is None

    def test_to_json_is_deterministic(self) -> None:
        first = self.record.to_json()
        rebuilt = dataclasses.replace(self.record)
        assert rebuilt.to_json() == first
        assert json.loads(first)["field_provenance"]["subtotal"] == "derived"

    def test_has_fiscal_field(self) -> None:
        assert self.record.has_fiscal_field()
        shop_only = dataclasses.replace(
            self.record,
            total=None,
            subtotal=None,
            iva=None,
            establecimiento="SAMSUNG ELECTRONICS MEXICO",
        )
        assert shop_only.conceptos
        assert not shop_only.has_fiscal_field()
