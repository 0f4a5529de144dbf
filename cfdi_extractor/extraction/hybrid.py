"""Merging of structured/pattern candidates with AI candidates.

XML attributes and pattern matches always take precedence. AI
candidates are queued behind them, so they only surface for fields the
pattern engine left empty or whose value failed normalization. AI
taxpayer IDs go through the same PAC and generic-RFC exclusions as
pattern matches.
"""

from collections.abc import Mapping

from cfdi_extractor.models import CORE_FIELDS, FIELD_NAMES, FieldCandidate
from cfdi_extractor.utils.logger import get_logger

from .strategies import clean_rfc, rfc_allowed

logger = get_logger(__name__)

_RFC_ROLES = {"rfc_emisor": "emisor", "rfc_receptor": "receptor"}


class HybridMerger:
    """Builds per-field candidate queues in precedence order.

    Args:
        core_fields: Fields whose absence justifies an AI pass.
    """

    def __init__(self, core_fields: tuple[str, ...] = CORE_FIELDS) -> None:
        self.core_fields = core_fields

    def missing_core_fields(self, primary: Mapping[str, FieldCandidate]) -> list[str]:
        return [name for name in self.core_fields if name not in primary]

    def merge(
        self,
        primary: Mapping[str, FieldCandidate],
        ai: Mapping[str, FieldCandidate] | None = None,
    ) -> dict[str, list[FieldCandidate]]:
        """Order candidates so that higher-precedence sources come first.

        Args:
            primary: XML or pattern candidates, at most one per field.
            ai: Candidates proposed by the AI mapper.

        Returns:
            Field name to candidate queue; fields with no candidate are
            omitted.
        """
        ai = self._screen_rfcs(primary, ai or {})
        merged: dict[str, list[FieldCandidate]] = {}
        filled_by_ai: list[str] = []

        for name in FIELD_NAMES:
            queue = [c for c in (primary.get(name), ai.get(name)) if c is not None]
            queue.sort(key=lambda c: c.priority, reverse=True)
            if not queue:
                continue
            merged[name] = queue
            if name not in primary:
                filled_by_ai.append(name)

        if filled_by_ai:
            logger.info("AI candidates fill empty fields: %s", ", ".join(filled_by_ai))
        return merged

    def _screen_rfcs(
        self,
        primary: Mapping[str, FieldCandidate],
        ai: Mapping[str, FieldCandidate],
    ) -> dict[str, FieldCandidate]:
        """Drop AI RFCs that are excluded for their role or repeat the emitter."""
        screened = dict(ai)
        for name, role in _RFC_ROLES.items():
            candidate = screened.get(name)
            if candidate is not None and not rfc_allowed(str(candidate.value), role):
                logger.info("Discarding AI %s %s: excluded RFC", name, candidate.value)
                del screened[name]

        emitter = primary.get("rfc_emisor") or screened.get("rfc_emisor")
        receiver = screened.get("rfc_receptor")
        if (
            emitter is not None
            and receiver is not None
            and clean_rfc(str(receiver.value)) == clean_rfc(str(emitter.value))
        ):
            logger.info("Discarding AI rfc_receptor: same as the emitter")
            del screened["rfc_receptor"]
        return screened
