"""Regular expressions and reference sets for Mexican fiscal documents.

Pattern tables hold ``(regex, flags)`` pairs tried in order; group 1 of
each regex captures the field value.
"""

import re

RFC_BODY = r"[A-ZÑ&]{3,4}\d{6}[A-Z\d]{3}"
# Tolerates a space or hyphen between the RFC blocks; must not run into a
# longer token.
RFC_LOOSE = r"[A-ZÑ&]{3,4}[\s\-]?\d{6}[\s\-]?[A-Z\d]{3}(?![A-Z\d])"
RFC_TOKEN = rf"(?<![A-ZÑ&\d])({RFC_BODY})(?![A-Z\d])"
UUID_BODY = r"[0-9A-F]{8}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{12}"
MONEY = r"([\d,]*\d\.\d{2})(?!\d)"

# Certification providers stamp their own RFC on every invoice.
PAC_RFCS = frozenset(
    {
        "SNF171020F3A",
        "FLI081010EK2",
        "TSO211020B22",
        "SAT970701NN3",
        "MAS0810247C0",
        "SFE0807172W7",
        "LSO1306189R5",
    }
)

# Public-at-large and foreign-customer RFCs; receivers only.
GENERIC_RFCS = frozenset({"XAXX010101000", "XEXX010101000"})

_I = re.IGNORECASE
_IM = re.IGNORECASE | re.MULTILINE

_RFC_LABEL = r"R\.?\s*F\.?\s*C\.?"
_SEP = r"[\s:.#\-]*"

UUID_LABEL_PATTERNS: list[tuple[str, int]] = [
    (rf"FOLIO\s*FISCAL{_SEP}({UUID_BODY})", _I),
    (rf"UUID{_SEP}({UUID_BODY})", _I),
]

# SAT "cadena original del complemento de certificacion": ||1.1|UUID|...
UUID_CADENA_PATTERNS: list[tuple[str, int]] = [
    (rf"\|\|\s*1\.[01]\s*\|\s*({UUID_BODY})\s*\|", _I),
]

UUID_GENERIC_PATTERNS: list[tuple[str, int]] = [
    (rf"(?<![0-9A-F])({UUID_BODY})(?![0-9A-F])", _I),
]

RFC_EMISOR_LABEL_PATTERNS: list[tuple[str, int]] = [
    (rf"{_RFC_LABEL}\s*(?:DEL\s*)?EMISOR{_SEP}({RFC_LOOSE})", _I),
    (rf"(?:EMISOR|QUIEN\s*FACTURA){_SEP}(?:{_RFC_LABEL})?{_SEP}({RFC_LOOSE})", _I),
    (
        rf"{_RFC_LABEL}(?!\s*(?:DEL\s*)?(?:RECEPTOR|CLIENTE)){_SEP}({RFC_LOOSE})",
        _I,
    ),
]

RFC_RECEPTOR_LABEL_PATTERNS: list[tuple[str, int]] = [
    (rf"{_RFC_LABEL}\s*(?:DEL\s*)?(?:RECEPTOR|CLIENTE){_SEP}({RFC_LOOSE})", _I),
    (rf"(?:RECEPTOR|CLIENTE){_SEP}(?:{_RFC_LABEL})?{_SEP}({RFC_LOOSE})", _I),
]

# Ordered from most to least specific.
TOTAL_LABEL_PATTERNS: list[tuple[str, int]] = [
    (rf"TOTAL\s*A\s*PAGAR{_SEP}(?:MXN|M\.?N\.?)?[\s:$]*{MONEY}", _I),
    (rf"IMPORTE\s*TOTAL{_SEP}(?:MXN|M\.?N\.?)?[\s:$]*{MONEY}", _I),
    (rf"TOTAL\s*(?:DEL\s*)?COMPROBANTE{_SEP}(?:MXN|M\.?N\.?)?[\s:$]*{MONEY}", _I),
    (
        r"(?<!SUB)(?<!SUB\s)(?<!SUB-)\bTOTAL\b(?!\s*(?:IVA|IMPUESTOS|DE\s+IMPUESTOS))"
        rf"{_SEP}(?:MXN|M\.?N\.?)?[\s:$]*{MONEY}",
        _I,
    ),
]

SUBTOTAL_LABEL_PATTERNS: list[tuple[str, int]] = [
    (rf"SUB\s*-?\s*TOTAL{_SEP}(?:MXN|M\.?N\.?)?[\s:$]*{MONEY}", _I),
]

IVA_LABEL_PATTERNS: list[tuple[str, int]] = [
    (
        r"(?:\bI\.?\s*V\.?\s*A\.?|IMPUESTOS?\s*TRASLADADOS?)"
        r"(?:\s*\(?\s*\d{1,2}(?:\.\d+)?\s*%\s*\)?)?"
        rf"{_SEP}(?:MXN|M\.?N\.?)?[\s:$]*{MONEY}",
        _I,
    ),
]

# Any dollar amount; used as the last resort for totals.
DOLLAR_AMOUNT = rf"\$\s*{MONEY}"

_DATE_BODY = r"\d{1,2}[/\-]\d{1,2}[/\-]\d{4}|\d{4}[/\-]\d{1,2}[/\-]\d{1,2}"

FECHA_LABEL_PATTERNS: list[tuple[str, int]] = [
    (
        r"FECHA(?:\s*(?:Y\s*HORA\s*)?DE\s*(?:EMISI[OÓ]N|EXPEDICI[OÓ]N))?"
        rf"{_SEP}({_DATE_BODY})",
        _I,
    ),
]

FECHA_ISO_PATTERNS: list[tuple[str, int]] = [
    (r"(?<!\d)(\d{4}-\d{2}-\d{2})T\d{2}:\d{2}(?::\d{2})?", 0),
]

FECHA_GENERIC_PATTERNS: list[tuple[str, int]] = [
    (rf"(?<![\d/\-])({_DATE_BODY})(?![\d/\-])", 0),
]

FORMA_PAGO_LABEL_PATTERNS: list[tuple[str, int]] = [
    (r"FORMA\s*DE\s*PAGO[\s:.\-]*([^\n]{2,40})", _I),
]

FORMA_PAGO_KEYWORD_PATTERNS: list[tuple[str, int]] = [
    (
        r"\b(TARJETA\s*DE\s*D[EÉ]BITO|T\.?\s*D[EÉ]BITO|D[EÉ]BITO"
        r"|TARJETA\s*DE\s*CR[EÉ]DITO|CR[EÉ]DITO|TARJETA|VISA|MASTERCARD|AMEX"
        r"|TRANSFERENCIA|SPEI|EFECTIVO|CASH)\b",
        _I,
    ),
]

ESTABLECIMIENTO_LABEL_PATTERNS: list[tuple[str, int]] = [
    (r"(?:RAZ[OÓ]N\s*SOCIAL|NOMBRE\s*(?:DEL\s*)?EMISOR)[\s:.\-]*([^\n]{3,80})", _IM),
]

ESTABLECIMIENTO_COMPANY_PATTERNS: list[tuple[str, int]] = [
    (
        r"^\s*([^\n]{2,80}?\b(?:S\.?\s*A\.?\s*B?\.?\s*DE\s*C\.?\s*V\.?"
        r"|S\.?\s*DE\s*R\.?\s*L\.?(?:\s*DE\s*C\.?\s*V\.?)?|S\.?\s*C\.?))\s*$",
        _IM,
    ),
]

# Lines in a ticket header that never name the business.
HEADER_EXCLUDE = re.compile(
    r"RFC|R\.F\.C|TEL|FECHA|HORA|TOTAL|IVA|TICKET|FOLIO|CAJA|SUCURSAL|C\.?P\.?\s*\d",
    re.IGNORECASE,
)

# Ticket lines that are never line items.
ITEM_EXCLUDE = re.compile(
    r"TOTAL|IVA|CAMBIO|FECHA|HORA|FOLIO|RFC|R\.F\.C|EFECTIVO|TARJETA|PAGO|UUID"
    r"|IMPORTE|DESCUENTO|PROPINA",
    re.IGNORECASE,
)

# (regex, index of description group, index of quantity group or 0, amount group)
ITEM_PATTERNS: list[tuple[re.Pattern[str], int, int, int]] = [
    (re.compile(rf"^\s*(\d{{1,3}})\s+(.{{2,60}}?)\s+\$?\s*{MONEY}\s*$"), 2, 1, 3),
    (re.compile(rf"^\s*(.{{2,60}}?)\s+(\d{{1,3}})\s+\$?\s*{MONEY}\s*$"), 1, 2, 3),
    (re.compile(rf"^\s*([^\d$].{{1,60}}?)\s+\$?\s*{MONEY}\s*$"), 1, 0, 2),
]

_SPLIT_RFC = re.compile(
    r"(?<![A-ZÑ&\d])([A-ZÑ&]{3,4})[ \-](\d{6})[ \-]?([A-Z\d]{3})(?![A-Z\d])"
)
_RFC_DIGIT_O = re.compile(r"(?<![A-ZÑ&\d])([A-ZÑ&]{3,4})([\dO]{6})([A-Z\d]{3})(?![A-Z\d])")
_SPACED_UUID = re.compile(
    r"([0-9A-F]{8})\s*-\s*([0-9A-F]{4})\s*-\s*([0-9A-F]{4})\s*-\s*([0-9A-F]{4})"
    r"\s*-\s*([0-9A-F]{12})",
    re.IGNORECASE,
)


def _fix_rfc_digits(match: re.Match[str]) -> str:
    letters, digits, homoclave = match.groups()
    if "O" not in digits or sum(c.isdigit() for c in digits) < 4:
        return match.group(0)
    return letters + digits.replace("O", "0") + homoclave


def correct_ocr_text(text: str) -> str:
    """Repair OCR confusions that break RFC and UUID tokens.

    Rejoins RFCs split by a space or hyphen, turns a letter ``O`` inside
    an RFC date block into a zero, and removes spaces around UUID hyphens.
    """
    text = _SPACED_UUID.sub(lambda m: "-".join(m.groups()), text)
    text = _SPLIT_RFC.sub(lambda m: "".join(m.groups()), text)
    return _RFC_DIGIT_O.sub(_fix_rfc_digits, text)


def sat_url_pattern(param: str, value: str) -> tuple[str, int]:
    """Pattern for one parameter of the SAT verification URL querystring."""
    return rf"[?&](?:amp;)?{param}=({value})(?=&|\s|$)", _I
