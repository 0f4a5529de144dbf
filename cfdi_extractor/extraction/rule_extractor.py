"""Prioritized pattern cascade over fiscal-document transcripts.

Each field owns an ordered list of strategies: SAT verification URL
parameters first, then labeled fields, then generic scans. The first
strategy that yields an acceptable candidate wins; every candidate is
kept in an attempt log for debugging.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from cfdi_extractor.models import (
    FIELD_NAMES,
    PRIORITY_GENERIC,
    PRIORITY_LABELED,
    PRIORITY_SAT_URL,
    FieldCandidate,
)
from cfdi_extractor.utils.logger import get_logger
from cfdi_extractor.validation.normalizer import (
    DEFAULT_AMOUNT_CEILING,
    is_valid,
    normalize_amount,
    normalize_date,
    normalize_establecimiento,
    normalize_payment_method,
)

from . import patterns as p
from .strategies import (
    ExtractionStrategy,
    HeaderLineStrategy,
    LineItemStrategy,
    RegexStrategy,
    RfcScanStrategy,
    TrailingAmountStrategy,
    rfc_allowed,
)

logger = get_logger(__name__)


@dataclass
class PatternExtractionResult:
    """Selected candidate per field plus every candidate produced."""

    selected: dict[str, FieldCandidate] = field(default_factory=dict)
    attempts: list[FieldCandidate] = field(default_factory=list)


def default_strategies(
    ceiling: Decimal = DEFAULT_AMOUNT_CEILING,
) -> dict[str, list[ExtractionStrategy]]:
    """Build the standard strategy cascade for every field.

    Args:
        ceiling: Exclusive upper bound of plausible amounts.

    Returns:
        Field name to strategies, highest priority first.
    """
    amount_ok = is_valid(lambda v: normalize_amount(v, ceiling))
    iva_ok = is_valid(lambda v: normalize_amount(v, ceiling, allow_zero=True))

    def party(role: str):
        return lambda v: rfc_allowed(v, role)

    return {
        "uuid": [
            RegexStrategy(
                "uuid", "sat_url", PRIORITY_SAT_URL, [p.sat_url_pattern("ID", p.UUID_BODY)]
            ),
            RegexStrategy("uuid", "labeled", PRIORITY_LABELED, p.UUID_LABEL_PATTERNS),
            RegexStrategy(
                "uuid", "cadena_original", PRIORITY_LABELED, p.UUID_CADENA_PATTERNS
            ),
            RegexStrategy(
                "uuid", "generic_uuid_scan", PRIORITY_GENERIC, p.UUID_GENERIC_PATTERNS
            ),
        ],
        "rfc_emisor": [
            RegexStrategy(
                "rfc_emisor",
                "sat_url",
                PRIORITY_SAT_URL,
                [p.sat_url_pattern("RE", p.RFC_BODY)],
                accept=party("emisor"),
            ),
            RegexStrategy(
                "rfc_emisor",
                "labeled",
                PRIORITY_LABELED,
                p.RFC_EMISOR_LABEL_PATTERNS,
                accept=party("emisor"),
            ),
            RfcScanStrategy("emisor"),
        ],
        "rfc_receptor": [
            RegexStrategy(
                "rfc_receptor",
                "sat_url",
                PRIORITY_SAT_URL,
                [p.sat_url_pattern("RR", p.RFC_BODY)],
                accept=party("receptor"),
            ),
            RegexStrategy(
                "rfc_receptor",
                "labeled",
                PRIORITY_LABELED,
                p.RFC_RECEPTOR_LABEL_PATTERNS,
                accept=party("receptor"),
            ),
            RfcScanStrategy("receptor"),
        ],
        "total": [
            RegexStrategy(
                "total",
                "sat_url",
                PRIORITY_SAT_URL,
                [p.sat_url_pattern("TT", r"\d+(?:\.\d+)?")],
                accept=amount_ok,
            ),
            RegexStrategy(
                "total", "labeled", PRIORITY_LABELED, p.TOTAL_LABEL_PATTERNS, amount_ok
            ),
            TrailingAmountStrategy(ceiling),
        ],
        "subtotal": [
            RegexStrategy(
                "subtotal",
                "labeled",
                PRIORITY_LABELED,
                p.SUBTOTAL_LABEL_PATTERNS,
                amount_ok,
            ),
        ],
        "iva": [
            RegexStrategy("iva", "labeled", PRIORITY_LABELED, p.IVA_LABEL_PATTERNS, iva_ok),
        ],
        "fecha": [
            RegexStrategy(
                "fecha",
                "labeled",
                PRIORITY_LABELED,
                p.FECHA_LABEL_PATTERNS,
                is_valid(normalize_date),
            ),
            RegexStrategy(
                "fecha",
                "iso_timestamp",
                PRIORITY_LABELED,
                p.FECHA_ISO_PATTERNS,
                is_valid(normalize_date),
            ),
            RegexStrategy(
                "fecha",
                "generic_date_scan",
                PRIORITY_GENERIC,
                p.FECHA_GENERIC_PATTERNS,
                is_valid(normalize_date),
            ),
        ],
        "forma_pago": [
            RegexStrategy(
                "forma_pago",
                "labeled",
                PRIORITY_LABELED,
                p.FORMA_PAGO_LABEL_PATTERNS,
                is_valid(normalize_payment_method),
            ),
            RegexStrategy(
                "forma_pago",
                "keyword_scan",
                PRIORITY_GENERIC,
                p.FORMA_PAGO_KEYWORD_PATTERNS,
            ),
        ],
        "establecimiento": [
            RegexStrategy(
                "establecimiento",
                "labeled",
                PRIORITY_LABELED,
                p.ESTABLECIMIENTO_LABEL_PATTERNS,
                is_valid(normalize_establecimiento),
            ),
            RegexStrategy(
                "establecimiento",
                "company_suffix",
                PRIORITY_LABELED,
                p.ESTABLECIMIENTO_COMPANY_PATTERNS,
            ),
            HeaderLineStrategy(),
        ],
        "conceptos": [LineItemStrategy()],
    }


class PatternExtractionEngine:
    """Runs the strategy cascade for every target field.

    Args:
        amount_ceiling: Exclusive upper bound of plausible amounts.
        strategies: Custom cascade; defaults to ``default_strategies``.
    """

    def __init__(
        self,
        amount_ceiling: float = 10_000_000.0,
        strategies: dict[str, list[ExtractionStrategy]] | None = None,
    ) -> None:
        self.strategies = strategies or default_strategies(Decimal(str(amount_ceiling)))

    def extract(
        self, text: str, fields: list[str] | None = None
    ) -> PatternExtractionResult:
        """Extract candidates for the requested fields.

        Args:
            text: Document transcript.
            fields: Field names to extract. If ``None``, extracts all.

        Returns:
            Winning candidate per field and the full attempt log.
        """
        corrected = p.correct_ocr_text(text)
        result = PatternExtractionResult()

        for field_name in fields or list(FIELD_NAMES):
            for strategy in self.strategies.get(field_name, []):
                candidate = strategy.extract(corrected, result.selected)
                if candidate is None:
                    continue
                result.attempts.append(candidate)
                if field_name not in result.selected:
                    result.selected[field_name] = candidate
                    logger.debug(
                        "%s <- %s (%s)", field_name, candidate.value, strategy.name
                    )

        logger.info(
            "Pattern extraction selected %d of %d fields (%d attempts)",
            len(result.selected),
            len(fields or FIELD_NAMES),
            len(result.attempts),
        )
        return result
