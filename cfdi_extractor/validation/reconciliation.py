"""Totals reconciliation: keeps subtotal + IVA equal to the total.

Missing amounts are back-computed at the configured VAT rate. Computed
values are reported so the assembler can mark them as derived.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum

from cfdi_extractor.models import Concepto
from cfdi_extractor.utils.logger import get_logger

logger = get_logger(__name__)

CENT = Decimal("0.01")
TOLERANCE = Decimal("0.01")
# Line items may exclude discounts or tips.
ITEMS_TOLERANCE_RATIO = Decimal("0.05")


class ReconciliationStatus(StrEnum):
    CONSISTENT = "consistent"
    DERIVED = "derived"
    OVERRIDDEN = "overridden"
    INCOMPLETE = "incomplete"


@dataclass
class Reconciliation:
    """Amounts after reconciliation and how they were obtained."""

    total: Decimal | None
    subtotal: Decimal | None
    iva: Decimal | None
    status: ReconciliationStatus
    derived_fields: tuple[str, ...] = ()
    warnings: list[str] = field(default_factory=list)


def _q(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _split_total(total: Decimal, rate: Decimal) -> tuple[Decimal, Decimal]:
    subtotal = _q(total / (Decimal(1) + rate))
    return subtotal, total - subtotal


def reconcile_totals(
    total: Decimal | None,
    subtotal: Decimal | None,
    iva: Decimal | None,
    vat_rate: float = 0.16,
) -> Reconciliation:
    """Fill in or correct amounts so that ``subtotal + iva == total``.

    Args:
        total: Normalized total, if known.
        subtotal: Normalized subtotal, if known.
        iva: Normalized VAT amount, if known.
        vat_rate: Rate used when an amount must be back-computed.

    Returns:
        The reconciled amounts and a status describing what changed.
    """
    rate = Decimal(str(vat_rate))
    consistent = ReconciliationStatus.CONSISTENT
    derived = ReconciliationStatus.DERIVED

    if total is not None and subtotal is not None and iva is not None:
        if abs(subtotal + iva - total) <= TOLERANCE:
            return Reconciliation(total, subtotal, iva, consistent)
        message = f"subtotal {subtotal} + iva {iva} != total {total}; total kept"
        logger.warning("Totals did not reconcile: %s", message)
        if subtotal <= total:
            new_subtotal, new_iva, changed = subtotal, total - subtotal, ("iva",)
        else:
            new_subtotal, new_iva = _split_total(total, rate)
            changed = ("subtotal", "iva")
        return Reconciliation(
            total,
            new_subtotal,
            new_iva,
            ReconciliationStatus.OVERRIDDEN,
            derived_fields=changed,
            warnings=[message],
        )

    if total is not None:
        if subtotal is not None and subtotal <= total:
            return Reconciliation(
                total, subtotal, total - subtotal, derived, derived_fields=("iva",)
            )
        if iva is not None and iva <= total:
            return Reconciliation(
                total, total - iva, iva, derived, derived_fields=("subtotal",)
            )
        warnings = []
        if subtotal is not None or iva is not None:
            warnings.append("partial amounts exceeded total; recomputed from total")
        new_subtotal, new_iva = _split_total(total, rate)
        return Reconciliation(
            total,
            new_subtotal,
            new_iva,
            derived,
            derived_fields=("subtotal", "iva"),
            warnings=warnings,
        )

    if subtotal is not None and iva is not None:
        return Reconciliation(
            subtotal + iva, subtotal, iva, derived, derived_fields=("total",)
        )

    if subtotal is not None:
        new_iva = _q(subtotal * rate)
        return Reconciliation(
            subtotal + new_iva, subtotal, new_iva, derived, derived_fields=("total", "iva")
        )

    return Reconciliation(total, subtotal, iva, ReconciliationStatus.INCOMPLETE)


def check_line_items(
    conceptos: Sequence[Concepto],
    subtotal: Decimal | None,
    total: Decimal | None,
) -> str | None:
    """Compare line-item amounts against the subtotal or total.

    Returns:
        A warning message when the sum is off by more than 5%, else None.
    """
    amounts = [c.importe for c in conceptos if c.importe is not None]
    if not amounts:
        return None
    items_sum = sum(amounts, Decimal(0))
    for reference in (subtotal, total):
        if reference is None:
            continue
        if abs(items_sum - reference) <= reference * ITEMS_TOLERANCE_RATIO:
            return None
    reference = subtotal if subtotal is not None else total
    if reference is None:
        return None
    return f"line items sum ({items_sum}) does not match {reference}"
