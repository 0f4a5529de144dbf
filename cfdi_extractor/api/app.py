"""FastAPI application for the CFDI extraction API.

Provides REST endpoints for single and batch extraction and a health
check. Pipeline errors are mapped to HTTP status codes by error kind.
"""

import shutil
import time
from typing import Annotated

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from cfdi_extractor import __version__
from cfdi_extractor.models import ExtractionOutcome, RawDocument
from cfdi_extractor.pipeline import FiscalExtractionPipeline
from cfdi_extractor.utils.config import load_config
from cfdi_extractor.utils.logger import get_logger

from .schemas import (
    BatchExtractionResponse,
    ExtractionResponse,
    HealthResponse,
)

logger = get_logger(__name__)

app = FastAPI(
    title="CFDI Extraction API",
    description="Extract fiscal fields from Mexican CFDI invoices and tickets",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_STATUS_CODES = {
    "unsupported_format": 415,
    "no_text_detected": 422,
    "no_fields_extracted": 422,
    "ocr_failure": 502,
    "cancelled": 499,
}


def _get_pipeline() -> FiscalExtractionPipeline:
    """Build the extraction pipeline from the application configuration."""
    return FiscalExtractionPipeline.from_config(load_config())


def _to_response(
    outcome: ExtractionOutcome, filename: str | None, started: float
) -> ExtractionResponse:
    payload = outcome.to_dict()
    return ExtractionResponse(
        **payload,
        filename=filename,
        processing_time_ms=(time.time() - started) * 1000,
    )


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return system health status."""
    config = load_config()
    return HealthResponse(
        status="healthy",
        version=__version__,
        ocr_provider=config.ocr.provider,
        tesseract_available=shutil.which("tesseract") is not None,
        ai_enabled=config.ai.enabled and config.ai.api_key is not None,
    )


@app.post("/extract", response_model=ExtractionResponse)
async def extract_document(
    file: Annotated[UploadFile, File(...)],
) -> ExtractionResponse:
    """Extract fiscal fields from an uploaded CFDI XML, PDF, or image.

    Args:
        file: Uploaded document file.

    Returns:
        The extracted record with provenance, states and warnings.

    Raises:
        HTTPException: With a status derived from the pipeline error kind.
    """
    start_time = time.time()
    content = await file.read()
    pipeline = _get_pipeline()
    try:
        outcome = await pipeline.extract(content, file.content_type, file.filename)
    finally:
        await pipeline.aclose()

    if outcome.error is not None:
        status = ERROR_STATUS_CODES.get(outcome.error.kind, 500)
        logger.error(
            "Extraction of %s failed with %s", file.filename, outcome.error.kind
        )
        raise HTTPException(status_code=status, detail=outcome.error.to_dict())

    return _to_response(outcome, file.filename, start_time)


@app.post("/extract/batch", response_model=BatchExtractionResponse)
async def extract_batch(
    files: Annotated[list[UploadFile], File(...)],
) -> BatchExtractionResponse:
    """Extract fiscal fields from multiple uploaded documents.

    Failures are reported per document; the request itself succeeds.

    Args:
        files: List of uploaded document files.

    Returns:
        Batch extraction results in upload order.
    """
    start_time = time.time()
    documents = [
        RawDocument.from_bytes(await f.read(), f.content_type, f.filename)
        for f in files
    ]
    pipeline = _get_pipeline()
    try:
        outcomes = await pipeline.extract_batch(documents)
    finally:
        await pipeline.aclose()

    results = [
        _to_response(outcome, document.source_filename, start_time)
        for outcome, document in zip(outcomes, documents, strict=True)
    ]
    successful = sum(1 for r in results if r.success)

    return BatchExtractionResponse(
        success=successful > 0,
        total_documents=len(files),
        successful=successful,
        failed=len(files) - successful,
        results=results,
    )
