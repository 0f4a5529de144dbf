"""End-to-end fiscal extraction pipeline.

Drives one document through classification, text acquisition, pattern
extraction, optional AI augmentation, normalization, and assembly.
Every failure is captured in the returned ``ExtractionOutcome``; the
pipeline never raises extraction errors to its caller.
"""

import asyncio
import contextlib
from collections.abc import Sequence
from dataclasses import dataclass, field

from cfdi_extractor.acquisition.classifier import classify
from cfdi_extractor.acquisition.pdf_handler import PDFHandler
from cfdi_extractor.acquisition.text_acquirer import TextAcquirer
from cfdi_extractor.assembler import ResultAssembler
from cfdi_extractor.errors import (
    Cancelled,
    ExtractionError,
    NoFieldsExtracted,
    TransientServiceError,
)
from cfdi_extractor.extraction.ai_mapper import GeminiFieldMapper
from cfdi_extractor.extraction.hybrid import HybridMerger
from cfdi_extractor.extraction.rule_extractor import PatternExtractionEngine
from cfdi_extractor.models import (
    FISCAL_FIELDS,
    DocumentKind,
    ExtractionOutcome,
    FieldCandidate,
    FiscalRecord,
    PipelineState,
    RawDocument,
)
from cfdi_extractor.ocr.engine import OCREngine, build_ocr_engine
from cfdi_extractor.utils.config import AppConfig
from cfdi_extractor.utils.logger import get_logger
from cfdi_extractor.validation.normalizer import Normalizer
from cfdi_extractor.validation.reconciliation import check_line_items, reconcile_totals

logger = get_logger(__name__)


@dataclass
class _RunTrace:
    """States visited and warnings raised while processing one document."""

    document_id: str
    states: list[PipelineState] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def advance(self, state: PipelineState) -> None:
        self.states.append(state)
        logger.debug("[%s] -> %s", self.document_id, state)

    def outcome(
        self,
        record: FiscalRecord | None = None,
        error: ExtractionError | None = None,
    ) -> ExtractionOutcome:
        return ExtractionOutcome(
            document_id=self.document_id,
            record=record,
            error=error,
            states=tuple(self.states),
            warnings=tuple(self.warnings),
        )


class FiscalExtractionPipeline:
    """Extracts ``FiscalRecord`` values from raw document bytes.

    Args:
        config: Application configuration, passed explicitly.
        ocr_engine: OCR backend; ``None`` limits input to XML and PDFs
            with a text layer.
        ai_mapper: Optional AI field mapper.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        ocr_engine: OCREngine | None = None,
        ai_mapper: GeminiFieldMapper | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.ocr_engine = ocr_engine
        self.ai_mapper = ai_mapper
        ocr_cfg = self.config.ocr
        self.acquirer = TextAcquirer(
            ocr_engine,
            PDFHandler(
                dpi=ocr_cfg.pdf_dpi,
                max_pages=ocr_cfg.pdf_max_pages,
                min_text_length=ocr_cfg.pdf_min_text_length,
            ),
            language_hints=ocr_cfg.language_hints,
        )
        ceiling = self.config.pipeline.amount_ceiling
        self.pattern_engine = PatternExtractionEngine(amount_ceiling=ceiling)
        self.merger = HybridMerger()
        self.normalizer = Normalizer(amount_ceiling=ceiling)
        self.assembler = ResultAssembler()

    @classmethod
    def from_config(cls, config: AppConfig) -> "FiscalExtractionPipeline":
        """Build the pipeline and its remote clients from configuration."""
        try:
            ocr_engine = build_ocr_engine(config.ocr)
        except ValueError as exc:
            logger.warning("OCR disabled: %s", exc)
            ocr_engine = None
        return cls(config, ocr_engine, GeminiFieldMapper.from_config(config.ai))

    async def __aenter__(self) -> "FiscalExtractionPipeline":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self.ocr_engine is not None:
            await self.ocr_engine.aclose()
        if self.ai_mapper is not None:
            await self.ai_mapper.aclose()

    async def extract(
        self,
        data: bytes,
        declared_mime: str | None = None,
        filename: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExtractionOutcome:
        """Extract a fiscal record from raw bytes.

        Args:
            data: Document bytes.
            declared_mime: MIME type reported by the caller.
            filename: Original file name.
            cancel_event: When set, aborts the run and yields a
                ``Cancelled`` outcome.

        Returns:
            The record, or the error that stopped the pipeline.
        """
        document = RawDocument.from_bytes(data, declared_mime, filename)
        return await self.extract_document(document, cancel_event)

    async def extract_document(
        self,
        document: RawDocument,
        cancel_event: asyncio.Event | None = None,
    ) -> ExtractionOutcome:
        trace = _RunTrace(document.id)
        trace.advance(PipelineState.RECEIVED)
        try:
            if cancel_event is None:
                record = await self._run(document, trace)
            else:
                record = await self._run_cancellable(document, trace, cancel_event)
        except ExtractionError as exc:
            logger.warning("Extraction of %s failed: %s", document.id, exc)
            trace.advance(PipelineState.FAILED)
            return trace.outcome(error=exc)
        except Exception as exc:
            logger.exception("Unexpected failure extracting %s", document.id)
            trace.advance(PipelineState.FAILED)
            return trace.outcome(error=ExtractionError(f"{type(exc).__name__}: {exc}"))
        return trace.outcome(record=record)

    async def _run_cancellable(
        self,
        document: RawDocument,
        trace: _RunTrace,
        cancel_event: asyncio.Event,
    ) -> FiscalRecord:
        work = asyncio.ensure_future(self._run(document, trace))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await work
        if work.cancelled():
            raise Cancelled(f"extraction of {document.id} cancelled")
        return work.result()

    async def _run(self, document: RawDocument, trace: _RunTrace) -> FiscalRecord:
        kind = classify(document.data, document.mime_type, document.source_filename)
        trace.advance(PipelineState.CLASSIFIED)

        acquisition = await self.acquirer.acquire(document, kind)
        trace.advance(PipelineState.TEXT_ACQUIRED)
        text = acquisition.text.text

        if kind is DocumentKind.XML:
            primary = acquisition.candidates
        else:
            primary = self.pattern_engine.extract(text).selected
        trace.advance(PipelineState.PATTERN_EXTRACTED)

        ai_candidates: dict[str, FieldCandidate] = {}
        if kind is not DocumentKind.XML:
            ai_candidates = await self._augment(text, primary, trace)

        merged = self.merger.merge(primary, ai_candidates)
        if not any(name in merged for name in FISCAL_FIELDS):
            raise NoFieldsExtracted("no field matched in the transcript")

        normalized = self.normalizer.normalize(merged)
        trace.warnings.extend(normalized.warnings)
        values = normalized.values
        reconciliation = reconcile_totals(
            values.get("total"),
            values.get("subtotal"),
            values.get("iva"),
            vat_rate=self.config.pipeline.vat_rate,
        )
        trace.warnings.extend(reconciliation.warnings)
        items_warning = check_line_items(
            values.get("conceptos", ()), reconciliation.subtotal, reconciliation.total
        )
        if items_warning:
            trace.warnings.append(items_warning)
        trace.advance(PipelineState.NORMALIZED)

        record = self.assembler.assemble(acquisition.text, normalized, reconciliation)
        if not record.has_fiscal_field():
            raise NoFieldsExtracted("every fiscal candidate failed validation")
        trace.advance(PipelineState.ASSEMBLED)
        return record

    async def _augment(
        self,
        text: str,
        primary: dict[str, FieldCandidate],
        trace: _RunTrace,
    ) -> dict[str, FieldCandidate]:
        if self.ai_mapper is None:
            return {}
        missing = self.merger.missing_core_fields(primary)
        if self.config.ai.only_when_incomplete and not missing:
            return {}

        try:
            candidates = await self.ai_mapper.map_fields(text)
        except (ExtractionError, TransientServiceError) as exc:
            logger.warning("AI step skipped: %s", exc)
            trace.warnings.append(f"AI step skipped: {exc}")
            return {}
        trace.advance(PipelineState.AI_AUGMENTED)
        return candidates

    async def extract_batch(
        self,
        documents: Sequence[RawDocument],
        max_concurrency: int | None = None,
    ) -> list[ExtractionOutcome]:
        """Extract many documents with bounded concurrency.

        Args:
            documents: Documents to process.
            max_concurrency: Simultaneous extractions; defaults to the
                configured ``pipeline.max_concurrency``.

        Returns:
            One outcome per document, in input order.
        """
        limit = max_concurrency or self.config.pipeline.max_concurrency
        semaphore = asyncio.Semaphore(max(1, limit))

        async def run_one(document: RawDocument) -> ExtractionOutcome:
            async with semaphore:
                return await self.extract_document(document)

        logger.info("Extracting %d documents (concurrency %d)", len(documents), limit)
        return list(await asyncio.gather(*(run_one(d) for d in documents)))

    def extract_sync(
        self,
        data: bytes,
        declared_mime: str | None = None,
        filename: str | None = None,
    ) -> ExtractionOutcome:
        """Blocking wrapper around ``extract`` for synchronous callers."""

        async def run() -> ExtractionOutcome:
            try:
                return await self.extract(data, declared_mime, filename)
            finally:
                await self.aclose()

        return asyncio.run(run())
