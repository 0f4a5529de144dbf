"""Extraction strategies: each proposes at most one value for one field.

Strategies receive the (OCR-corrected) transcript and the candidates
already resolved for earlier fields, so party resolution can avoid
assigning the same RFC twice.
"""

import re
from collections.abc import Callable, Mapping
from decimal import Decimal
from typing import Any, Protocol

from cfdi_extractor.errors import ValidationFailure
from cfdi_extractor.models import (
    PRIORITY_GENERIC,
    ExtractionMethod,
    FieldCandidate,
)
from cfdi_extractor.validation.normalizer import normalize_amount

from .patterns import (
    DOLLAR_AMOUNT,
    GENERIC_RFCS,
    HEADER_EXCLUDE,
    ITEM_EXCLUDE,
    ITEM_PATTERNS,
    PAC_RFCS,
    RFC_TOKEN,
)

Resolved = Mapping[str, FieldCandidate]

_SNIPPET_MARGIN = 30


def _snippet(text: str, start: int, end: int) -> str:
    lo = max(0, start - _SNIPPET_MARGIN)
    hi = min(len(text), end + _SNIPPET_MARGIN)
    return re.sub(r"\s+", " ", text[lo:hi]).strip()


def clean_rfc(value: str) -> str:
    return re.sub(r"[\s\-]", "", value).upper()


def rfc_allowed(value: str, role: str) -> bool:
    """Apply the PAC and generic-RFC exclusion rules for a party role."""
    rfc = clean_rfc(value)
    if rfc in PAC_RFCS:
        return False
    if role == "emisor" and rfc in GENERIC_RFCS:
        return False
    return True


class ExtractionStrategy(Protocol):
    """Proposes a candidate for ``field`` from a transcript."""

    field: str
    name: str
    priority: int

    def extract(self, text: str, resolved: Resolved) -> FieldCandidate | None: ...


class RegexStrategy:
    """Tries ``(regex, flags)`` pairs in order; first accepted match wins.

    Args:
        field: Target field name.
        name: Strategy identifier recorded on candidates.
        priority: Candidate priority.
        patterns: Ordered ``(regex, flags)`` pairs; group 1 is the value.
        accept: Optional plausibility check on the captured value.
    """

    def __init__(
        self,
        field: str,
        name: str,
        priority: int,
        patterns: list[tuple[str, int]],
        accept: Callable[[str], bool] | None = None,
    ) -> None:
        self.field = field
        self.name = name
        self.priority = priority
        self.patterns = [re.compile(p, flags) for p, flags in patterns]
        self.accept = accept

    def extract(self, text: str, resolved: Resolved) -> FieldCandidate | None:
        for compiled in self.patterns:
            for match in compiled.finditer(text):
                value = match.group(1).strip()
                if self.accept is not None and not self.accept(value):
                    continue
                return FieldCandidate(
                    field=self.field,
                    value=value,
                    method=ExtractionMethod.PATTERN,
                    priority=self.priority,
                    source_snippet=_snippet(text, match.start(), match.end()),
                    strategy=self.name,
                )
        return None


class RfcScanStrategy:
    """Assigns emitter and receiver from every RFC-shaped token.

    PAC RFCs are ignored. The emitter is the first non-generic RFC; the
    receiver is the first remaining distinct RFC, generic ones included.
    When the emitter was already resolved by another strategy, that
    value is used to pick the receiver.
    """

    priority = PRIORITY_GENERIC

    def __init__(self, role: str) -> None:
        self.role = role
        self.field = f"rfc_{role}"
        self.name = "generic_rfc_scan"
        self._token = re.compile(RFC_TOKEN, re.IGNORECASE)

    def extract(self, text: str, resolved: Resolved) -> FieldCandidate | None:
        tokens: list[tuple[str, re.Match[str]]] = []
        seen: set[str] = set()
        for match in self._token.finditer(text):
            rfc = match.group(1).upper()
            if rfc in PAC_RFCS or rfc in seen:
                continue
            seen.add(rfc)
            tokens.append((rfc, match))

        if self.role == "emisor":
            chosen = next(((r, m) for r, m in tokens if r not in GENERIC_RFCS), None)
        else:
            if "rfc_emisor" in resolved:
                emitter = clean_rfc(str(resolved["rfc_emisor"].value))
            else:
                emitter = next((r for r, _ in tokens if r not in GENERIC_RFCS), None)
            chosen = next(((r, m) for r, m in tokens if r != emitter), None)

        if chosen is None:
            return None
        rfc, match = chosen
        return FieldCandidate(
            field=self.field,
            value=rfc,
            method=ExtractionMethod.PATTERN,
            priority=self.priority,
            source_snippet=_snippet(text, match.start(), match.end()),
            strategy=self.name,
        )


class TrailingAmountStrategy:
    """Largest dollar amount in the last third of the transcript."""

    field = "total"
    name = "trailing_amount"
    priority = PRIORITY_GENERIC

    def __init__(self, ceiling: Decimal) -> None:
        self.ceiling = ceiling
        self._pattern = re.compile(DOLLAR_AMOUNT)

    def extract(self, text: str, resolved: Resolved) -> FieldCandidate | None:
        cutoff = len(text) * 2 // 3
        best: tuple[Decimal, re.Match[str]] | None = None
        for match in self._pattern.finditer(text, cutoff):
            try:
                amount = normalize_amount(match.group(1), self.ceiling)
            except ValidationFailure:
                continue
            if best is None or amount > best[0]:
                best = (amount, match)
        if best is None:
            return None
        _, match = best
        return FieldCandidate(
            field=self.field,
            value=match.group(1),
            method=ExtractionMethod.PATTERN,
            priority=self.priority,
            source_snippet=_snippet(text, match.start(), match.end()),
            strategy=self.name,
        )


class HeaderLineStrategy:
    """First plausible business name among the top lines of a ticket."""

    field = "establecimiento"
    name = "header_line"
    priority = PRIORITY_GENERIC

    def __init__(self, max_lines: int = 5) -> None:
        self.max_lines = max_lines

    def extract(self, text: str, resolved: Resolved) -> FieldCandidate | None:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        for line in lines[: self.max_lines]:
            if len(line) < 3 or HEADER_EXCLUDE.search(line):
                continue
            if re.fullmatch(r"[\d\s$.,/\-:]+", line):
                continue
            return FieldCandidate(
                field=self.field,
                value=line,
                method=ExtractionMethod.PATTERN,
                priority=self.priority,
                source_snippet=line,
                strategy=self.name,
            )
        return None


class LineItemStrategy:
    """Ticket line items such as ``2 COCA COLA $30.00``."""

    field = "conceptos"
    name = "ticket_lines"
    priority = PRIORITY_GENERIC

    def extract(self, text: str, resolved: Resolved) -> FieldCandidate | None:
        items: list[dict[str, Any]] = []
        matched_lines: list[str] = []
        for line in text.splitlines():
            if not line.strip() or ITEM_EXCLUDE.search(line):
                continue
            for pattern, desc_group, qty_group, amount_group in ITEM_PATTERNS:
                match = pattern.match(line)
                if match is None:
                    continue
                items.append(
                    {
                        "descripcion": match.group(desc_group).strip(),
                        "cantidad": match.group(qty_group) if qty_group else "1",
                        "importe": match.group(amount_group),
                    }
                )
                matched_lines.append(line.strip())
                break
        if not items:
            return None
        return FieldCandidate(
            field=self.field,
            value=tuple(items),
            method=ExtractionMethod.PATTERN,
            priority=self.priority,
            source_snippet=" | ".join(matched_lines[:3]),
            strategy=self.name,
        )
