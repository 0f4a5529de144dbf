"""Field normalization and validation.

Each ``normalize_*`` function returns the canonical form of one field or
raises ``ValidationFailure``. ``Normalizer`` applies them to the merged
candidate lists, keeping exactly one value per field.
"""

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from cfdi_extractor.errors import ValidationFailure
from cfdi_extractor.models import AMOUNT_FIELDS, Concepto, FieldCandidate
from cfdi_extractor.utils.logger import get_logger

logger = get_logger(__name__)

CENT = Decimal("0.01")
DEFAULT_AMOUNT_CEILING = Decimal("10000000")

RFC_RE = re.compile(r"^[A-ZÑ&]{3,4}\d{6}[A-Z\d]{3}$")
UUID_RE = re.compile(
    r"^[0-9A-F]{8}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{12}$"
)

DATE_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%Y-%m-%d", "%Y/%m/%d")

PAYMENT_METHODS = ("efectivo", "tarjeta_credito", "tarjeta_debito", "transferencia")

# SAT catalog c_FormaPago.
SAT_PAYMENT_CODES = {
    "01": "efectivo",
    "03": "transferencia",
    "04": "tarjeta_credito",
    "28": "tarjeta_debito",
}

# Debit is checked before the generic card synonyms.
_PAYMENT_SYNONYMS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"D[EÉ]BITO|DEBIT", re.IGNORECASE), "tarjeta_debito"),
    (re.compile(r"TRANSFER|SPEI", re.IGNORECASE), "transferencia"),
    (re.compile(r"EFECTIVO|CASH", re.IGNORECASE), "efectivo"),
    (
        re.compile(
            r"CR[EÉ]DITO|CREDIT|TARJETA|CARD|VISA|MASTER\s*CARD|AMEX|AMERICAN\s*EXPRESS",
            re.IGNORECASE,
        ),
        "tarjeta_credito",
    ),
]

_AMOUNT_NOISE = re.compile(r"\$|MXN|M\.?N\.?|[,\s]", re.IGNORECASE)


def normalize_rfc(value: Any) -> str:
    """Uppercase an RFC, drop separators, and check its shape."""
    cleaned = re.sub(r"[\s\-./]", "", str(value)).upper()
    if not RFC_RE.match(cleaned):
        raise ValidationFailure("rfc", value, "not a valid RFC")
    return cleaned


def normalize_uuid(value: Any) -> str:
    cleaned = re.sub(r"\s", "", str(value)).upper()
    if not UUID_RE.match(cleaned):
        raise ValidationFailure("uuid", value, "not a valid fiscal UUID")
    return cleaned


def normalize_date(value: Any) -> str:
    """Convert a supported date representation to ``YYYY-MM-DD``.

    Accepts ``DD/MM/YYYY``, ``DD-MM-YYYY``, ``YYYY-MM-DD`` and
    ``YYYY/MM/DD``, optionally followed by an ISO time part.
    """
    text = str(value).strip()
    text = re.split(r"[T\s]", text, maxsplit=1)[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    raise ValidationFailure("fecha", value, "unrecognized or impossible date")


def normalize_amount(
    value: Any,
    ceiling: Decimal = DEFAULT_AMOUNT_CEILING,
    allow_zero: bool = False,
) -> Decimal:
    """Parse a monetary amount and quantize it to cents.

    Args:
        value: Number or text such as ``"$ 4,139.19 MXN"``.
        ceiling: Exclusive upper bound of plausible amounts.
        allow_zero: Whether ``0.00`` is acceptable.

    Returns:
        The amount as a two-decimal ``Decimal``.

    Raises:
        ValidationFailure: If the value is not a number in range.
    """
    if isinstance(value, bool):
        raise ValidationFailure("amount", value, "not a number")
    if isinstance(value, int | float | Decimal):
        text = str(value)
    else:
        text = _AMOUNT_NOISE.sub("", str(value))
    try:
        amount = Decimal(text).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise ValidationFailure("amount", value, "not a number") from exc

    lower_ok = amount >= 0 if allow_zero else amount > 0
    if not lower_ok or amount >= ceiling:
        raise ValidationFailure("amount", value, "outside plausible range")
    return amount


def normalize_payment_method(value: Any) -> str:
    """Map a payment description or SAT code to a canonical method."""
    text = str(value).strip()
    code = re.match(r"^(\d{2})\b", text)
    if code and code.group(1) in SAT_PAYMENT_CODES:
        return SAT_PAYMENT_CODES[code.group(1)]
    for pattern, method in _PAYMENT_SYNONYMS:
        if pattern.search(text):
            return method
    raise ValidationFailure("forma_pago", value, "unmapped payment method")


def normalize_establecimiento(value: Any) -> str:
    text = re.sub(r"\s+", " ", str(value)).strip(" :-.,")
    if len(text) < 2 or not re.search(r"[A-Za-zÑñ]", text):
        raise ValidationFailure("establecimiento", value, "not a business name")
    return text


def _optional_decimal(value: Any) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return normalize_amount(value, allow_zero=True)
    except ValidationFailure:
        return None


def normalize_conceptos(value: Any) -> tuple[Concepto, ...]:
    """Build line items from mappings with descripcion/cantidad/importe."""
    if isinstance(value, str | bytes) or not isinstance(value, Iterable):
        raise ValidationFailure("conceptos", value, "not a list of line items")
    items: list[Concepto] = []
    for item in value:
        if isinstance(item, Concepto):
            items.append(item)
            continue
        if not isinstance(item, Mapping):
            continue
        descripcion = re.sub(r"\s+", " ", str(item.get("descripcion") or "")).strip()
        if not descripcion:
            continue
        items.append(
            Concepto(
                descripcion=descripcion,
                cantidad=_optional_decimal(item.get("cantidad")),
                importe=_optional_decimal(item.get("importe")),
            )
        )
    if not items:
        raise ValidationFailure("conceptos", value, "no usable line items")
    return tuple(items)


def is_valid(normalize: Callable[[Any], Any]) -> Callable[[Any], bool]:
    """Turn a normalizer into a predicate."""

    def check(value: Any) -> bool:
        try:
            normalize(value)
        except ValidationFailure:
            return False
        return True

    return check


@dataclass
class NormalizedFields:
    """Canonical field values and the candidate each one came from."""

    values: dict[str, Any] = field(default_factory=dict)
    sources: dict[str, FieldCandidate] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class Normalizer:
    """Reduces ordered candidate lists to one canonical value per field.

    Candidates are tried in precedence order; the first one that
    normalizes wins. Failures become warnings and the field stays null
    when no candidate survives.

    Args:
        amount_ceiling: Exclusive upper bound of plausible amounts.
    """

    def __init__(self, amount_ceiling: float = 10_000_000.0) -> None:
        ceiling = Decimal(str(amount_ceiling))
        self._normalizers: dict[str, Callable[[Any], Any]] = {
            "uuid": normalize_uuid,
            "rfc_emisor": normalize_rfc,
            "rfc_receptor": normalize_rfc,
            "total": lambda v: normalize_amount(v, ceiling),
            "subtotal": lambda v: normalize_amount(v, ceiling),
            "iva": lambda v: normalize_amount(v, ceiling, allow_zero=True),
            "fecha": normalize_date,
            "forma_pago": normalize_payment_method,
            "establecimiento": normalize_establecimiento,
            "conceptos": normalize_conceptos,
        }

    def normalize(self, candidates: Mapping[str, list[FieldCandidate]]) -> NormalizedFields:
        """Normalize every field that has at least one candidate.

        Args:
            candidates: Field name to candidates, highest precedence first.

        Returns:
            Surviving values, their source candidates, and warnings.
        """
        result = NormalizedFields()
        for name, normalize in self._normalizers.items():
            for candidate in candidates.get(name, []):
                try:
                    result.values[name] = normalize(candidate.value)
                except ValidationFailure as exc:
                    message = f"{name} from {candidate.method}: {exc.reason}"
                    logger.debug("Rejected candidate %s", message)
                    result.warnings.append(message)
                    continue
                result.sources[name] = candidate
                break

        logger.info(
            "Normalized %d fields (%d amounts)",
            len(result.values),
            sum(1 for f in AMOUNT_FIELDS if f in result.values),
        )
        return result
