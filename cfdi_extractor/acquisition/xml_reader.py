"""CFDI XML reader producing structured field candidates.

CFDI 3.3 and 4.0 share the attribute names used here, so elements are
matched by local name and the namespace version is ignored.
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

from cfdi_extractor.errors import UnsupportedFormat
from cfdi_extractor.models import (
    PRIORITY_XML,
    AcquiredText,
    AcquisitionMethod,
    ExtractionMethod,
    FieldCandidate,
)
from cfdi_extractor.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class XMLReadResult:
    """Transcript and candidates read from a CFDI document."""

    text: AcquiredText
    candidates: dict[str, FieldCandidate] = field(default_factory=dict)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find(element: ET.Element, name: str) -> ET.Element | None:
    for child in element.iter():
        if _local(child.tag) == name:
            return child
    return None


def _children(element: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in element if _local(child.tag) == name]


def _candidate(name: str, value: object, snippet: str) -> FieldCandidate:
    return FieldCandidate(
        field=name,
        value=value,
        method=ExtractionMethod.XML_ATTR,
        priority=PRIORITY_XML,
        source_snippet=snippet,
        strategy="cfdi_xml",
    )


class CFDIXMLReader:
    """Reads fiscal fields from the attributes of a CFDI document."""

    def read(self, data: bytes) -> XMLReadResult:
        """Parse CFDI bytes into field candidates.

        Args:
            data: Raw XML bytes.

        Returns:
            The decoded transcript plus one candidate per attribute found.

        Raises:
            UnsupportedFormat: If the XML is malformed or not a CFDI.
        """
        try:
            root = ET.fromstring(data)
        except ET.ParseError as exc:
            raise UnsupportedFormat(f"malformed XML: {exc}") from exc

        comprobante = root if _local(root.tag) == "Comprobante" else _find(
            root, "Comprobante"
        )
        if comprobante is None:
            raise UnsupportedFormat("XML document has no Comprobante element")

        candidates: dict[str, FieldCandidate] = {}

        def put(name: str, value: str | None, snippet: str) -> None:
            if value is not None and value.strip():
                candidates[name] = _candidate(name, value.strip(), snippet)

        attrs = comprobante.attrib
        put("fecha", attrs.get("Fecha"), "Comprobante@Fecha")
        put("total", attrs.get("Total"), "Comprobante@Total")
        put("subtotal", attrs.get("SubTotal"), "Comprobante@SubTotal")
        put("forma_pago", attrs.get("FormaPago"), "Comprobante@FormaPago")

        emisor = _find(comprobante, "Emisor")
        if emisor is not None:
            put("rfc_emisor", emisor.get("Rfc"), "Emisor@Rfc")
            put("establecimiento", emisor.get("Nombre"), "Emisor@Nombre")

        receptor = _find(comprobante, "Receptor")
        if receptor is not None:
            put("rfc_receptor", receptor.get("Rfc"), "Receptor@Rfc")

        timbre = _find(comprobante, "TimbreFiscalDigital")
        if timbre is not None:
            put("uuid", timbre.get("UUID"), "TimbreFiscalDigital@UUID")

        # Comprobante-level Impuestos, not the per-concept ones.
        impuestos = _children(comprobante, "Impuestos")
        if impuestos:
            put(
                "iva",
                impuestos[0].get("TotalImpuestosTrasladados"),
                "Impuestos@TotalImpuestosTrasladados",
            )

        conceptos = self._read_conceptos(comprobante)
        if conceptos:
            candidates["conceptos"] = _candidate(
                "conceptos", tuple(conceptos), "Conceptos/Concepto"
            )

        logger.info("CFDI XML yielded %d field candidates", len(candidates))
        text = data.decode("utf-8", errors="replace")
        return XMLReadResult(
            text=AcquiredText(text=text, method=AcquisitionMethod.XML_ATTR),
            candidates=candidates,
        )

    def _read_conceptos(self, comprobante: ET.Element) -> list[dict[str, str]]:
        items: list[dict[str, str]] = []
        for container in _children(comprobante, "Conceptos"):
            for concepto in _children(container, "Concepto"):
                descripcion = (concepto.get("Descripcion") or "").strip()
                if not descripcion:
                    continue
                items.append(
                    {
                        "descripcion": descripcion,
                        "cantidad": concepto.get("Cantidad", ""),
                        "importe": concepto.get("Importe", ""),
                    }
                )
        return items

