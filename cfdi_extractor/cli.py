"""Command-line interface for CFDI extraction and CSV/JSON export.

Provides subcommands for extracting a single document and for
processing folders of documents into a CSV or JSON report.
"""

import argparse
import asyncio
import csv
import json
import sys
import time
from pathlib import Path

from cfdi_extractor.models import ExtractionOutcome, RawDocument
from cfdi_extractor.pipeline import FiscalExtractionPipeline
from cfdi_extractor.utils.config import AppConfig, load_config
from cfdi_extractor.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)

_SUPPORTED_EXTENSIONS = (
    "*.xml",
    "*.pdf",
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.tiff",
    "*.tif",
    "*.webp",
)
_META_COLUMNS = [
    "filename",
    "status",
    "document_id",
    "overall_confidence",
    "error_kind",
    "error",
    "warnings",
]
_RECORD_COLUMNS = [
    "uuid",
    "rfc_emisor",
    "rfc_receptor",
    "fecha",
    "subtotal",
    "iva",
    "total",
    "forma_pago",
    "establecimiento",
    "conceptos",
]


def _find_documents(input_dir: Path) -> list[Path]:
    """Find all supported document files in a directory.

    Args:
        input_dir: Directory to scan for documents.

    Returns:
        Sorted list of document file paths.
    """
    files: list[Path] = []
    for ext in _SUPPORTED_EXTENSIONS:
        files.extend(input_dir.glob(ext))
        files.extend(input_dir.glob(ext.upper()))
    return sorted(set(files))


def _outcome_row(filename: str, outcome: ExtractionOutcome) -> dict[str, object]:
    """Flatten an outcome into one CSV row."""
    row: dict[str, object] = {
        "filename": filename,
        "status": "success" if outcome.ok else "failed",
        "document_id": outcome.document_id,
        "warnings": "; ".join(outcome.warnings),
    }
    if outcome.error is not None:
        row["error_kind"] = outcome.error.kind
        row["error"] = outcome.error.message
    if outcome.record is not None:
        record = outcome.record.to_dict()
        row["overall_confidence"] = record["overall_confidence"]
        for name in _RECORD_COLUMNS:
            row[name] = record[name]
        row["conceptos"] = len(record["conceptos"])
    return row


async def _run_batch(
    config: AppConfig, documents: list[RawDocument], concurrency: int | None
) -> list[ExtractionOutcome]:
    async with FiscalExtractionPipeline.from_config(config) as pipeline:
        return await pipeline.extract_batch(documents, concurrency)


def process_folder(
    input_dir: Path,
    output: Path,
    config: AppConfig,
    output_format: str = "csv",
    concurrency: int | None = None,
    verbose: bool = False,
) -> dict[str, int]:
    """Process all documents in a folder and export the results.

    Args:
        input_dir: Directory containing document files.
        output: Path for the CSV or JSON report.
        config: Application configuration.
        output_format: ``csv`` or ``json``.
        concurrency: Simultaneous extractions; defaults to the config.
        verbose: Whether to print per-file status.

    Returns:
        Summary dict with total, successful, and failed counts.
    """
    files = _find_documents(input_dir)
    if not files:
        logger.warning("No documents found in %s", input_dir)
        return {"total": 0, "successful": 0, "failed": 0}

    logger.info("Found %d documents to process", len(files))
    documents = [RawDocument.from_bytes(f.read_bytes(), None, f.name) for f in files]

    start_time = time.time()
    outcomes = asyncio.run(_run_batch(config, documents, concurrency))
    logger.info("Batch finished in %.2fs", time.time() - start_time)

    successful = 0
    for file_path, outcome in zip(files, outcomes, strict=True):
        if outcome.ok:
            successful += 1
        if verbose:
            status = "ok" if outcome.ok else f"failed ({outcome.error.kind})"
            print(f"{file_path.name}: {status}")

    if output_format == "json":
        payload = [
            {"filename": f.name, **o.to_dict()}
            for f, o in zip(files, outcomes, strict=True)
        ]
        _write_json(payload, output)
    else:
        rows = [_outcome_row(f.name, o) for f, o in zip(files, outcomes, strict=True)]
        _write_csv(rows, output)
    logger.info("Results written to %s", output)

    summary = {
        "total": len(files),
        "successful": successful,
        "failed": len(files) - successful,
    }
    _print_summary(summary, output)
    return summary


def _write_csv(results: list[dict[str, object]], output_path: Path) -> None:
    """Write extraction results to a CSV file.

    Args:
        results: List of result dictionaries.
        output_path: Path for the output CSV file.
    """
    if not results:
        return

    columns = _META_COLUMNS + _RECORD_COLUMNS

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(results)


def _write_json(payload: object, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8"
    )


def _print_summary(summary: dict[str, int], output: Path) -> None:
    """Print batch processing summary to stdout.

    Args:
        summary: Counts of total, successful, and failed documents.
        output: Path to the report.
    """
    print(f"\n{'=' * 50}")
    print("Batch Processing Complete")
    print(f"{'=' * 50}")
    print(f"Total:      {summary['total']}")
    print(f"Successful: {summary['successful']}")
    print(f"Failed:     {summary['failed']}")
    print(f"Output:     {output}")


def extract_single(file_path: Path, config: AppConfig) -> dict[str, object]:
    """Process a single document and return the serialized outcome.

    Args:
        file_path: Path to the document file.
        config: Application configuration.

    Returns:
        Dictionary with filename plus the outcome fields.
    """
    pipeline = FiscalExtractionPipeline.from_config(config)
    outcome = pipeline.extract_sync(file_path.read_bytes(), None, file_path.name)
    return {"filename": file_path.name, **outcome.to_dict()}


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate command.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(
        description="CFDI fiscal field extractor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="YAML configuration file (default: configs/config.yaml)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    batch_parser = subparsers.add_parser("batch", help="Process a folder of documents")
    batch_parser.add_argument(
        "input_dir", type=Path, help="Input directory with documents"
    )
    batch_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("results.csv"),
        help="Output file (default: results.csv)",
    )
    batch_parser.add_argument(
        "-f",
        "--format",
        choices=["csv", "json"],
        default="csv",
        dest="output_format",
        help="Report format (default: csv)",
    )
    batch_parser.add_argument(
        "-j",
        "--concurrency",
        type=int,
        default=None,
        help="Documents processed at once (default: from config)",
    )
    batch_parser.add_argument(
        "--no-ai", action="store_true", help="Disable AI field mapping"
    )
    batch_parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose output"
    )

    single_parser = subparsers.add_parser("extract", help="Process a single document")
    single_parser.add_argument("file", type=Path, help="Document file to process")
    single_parser.add_argument(
        "--no-ai", action="store_true", help="Disable AI field mapping"
    )
    single_parser.add_argument("-o", "--output", type=Path, help="Output JSON file")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    config = load_config(args.config)
    setup_logging(config.log_level)
    if args.no_ai:
        config.ai.enabled = False

    if args.command == "batch":
        if not args.input_dir.is_dir():
            print(f"Error: {args.input_dir} is not a directory", file=sys.stderr)
            sys.exit(1)
        process_folder(
            args.input_dir,
            args.output,
            config,
            args.output_format,
            args.concurrency,
            args.verbose,
        )
    elif args.command == "extract":
        if not args.file.exists():
            print(f"Error: {args.file} does not exist", file=sys.stderr)
            sys.exit(1)
        result = extract_single(args.file, config)
        output_str = json.dumps(result, indent=2, ensure_ascii=False)
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            args.output.write_text(output_str, encoding="utf-8")
            print(f"Output written to {args.output}")
        else:
            print(output_str)
        if not result["success"]:
            sys.exit(2)


if __name__ == "__main__":
    main()
