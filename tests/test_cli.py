"""Tests for the batch processing CLI and CSV/JSON export."""

import csv
import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cfdi_extractor.cli import (
    _find_documents,
    _print_summary,
    _write_csv,
    extract_single,
    main,
    process_folder,
)
from cfdi_extractor.utils.config import AppConfig


@pytest.fixture
def invoice_dir(tmp_path: Path, cfdi_xml: bytes) -> Path:
    """A folder with one CFDI, one non-CFDI XML and an unrelated file."""
    folder = tmp_path / "facturas"
    folder.mkdir()
    (folder / "a_factura.xml").write_bytes(cfdi_xml)
    (folder / "b_otro.xml").write_bytes(b"<root/>")
    (folder / "readme.txt").write_text("not a document")
    return folder


class TestFindDocuments:
    """Tests for document discovery."""

    def test_find_supported_files(self, tmp_path: Path) -> None:
        for name in ("a.xml", "b.pdf", "c.png", "d.jpg", "e.tiff", "f.webp", "g.txt"):
            (tmp_path / name).touch()
        files = _find_documents(tmp_path)
        assert [f.name for f in files] == [
            "a.xml",
            "b.pdf",
            "c.png",
            "d.jpg",
            "e.tiff",
            "f.webp",
        ]

    def test_find_no_documents(self, tmp_path: Path) -> None:
        (tmp_path / "readme.txt").touch()
        assert _find_documents(tmp_path) == []

    def test_find_uppercase_extensions(self, tmp_path: Path) -> None:
        (tmp_path / "FACTURA.XML").touch()
        assert len(_find_documents(tmp_path)) == 1


class TestWriteCsv:
    """Tests for CSV writing."""

    def test_write_csv_content(self, tmp_path: Path) -> None:
        results = [
            {
                "filename": "ticket.png",
                "status": "success",
                "rfc_emisor": "SEM950215S98",
                "total": "4139.19",
                "unknown_column": "dropped",
            }
        ]
        output = tmp_path / "results.csv"
        _write_csv(results, output)

        with open(output, encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert len(rows) == 1
        assert rows[0]["rfc_emisor"] == "SEM950215S98"
        assert rows[0]["uuid"] == ""
        assert "unknown_column" not in rows[0]

    def test_write_csv_empty_results(self, tmp_path: Path) -> None:
        output = tmp_path / "results.csv"
        _write_csv([], output)
        assert not output.exists()

    def test_write_csv_creates_parent_dirs(self, tmp_path: Path) -> None:
        output = tmp_path / "subdir" / "results.csv"
        _write_csv([{"filename": "a.xml", "status": "success"}], output)
        assert output.exists()

    def test_csv_meta_columns_first(self, tmp_path: Path) -> None:
        output = tmp_path / "results.csv"
        _write_csv([{"filename": "a.xml", "status": "failed"}], output)
        with open(output, encoding="utf-8") as f:
            headers = next(csv.reader(f))
        assert headers[:2] == ["filename", "status"]
        assert headers[-1] == "conceptos"


class TestPrintSummary:
    """Tests for summary printing."""

    def test_print_summary(self, capsys: pytest.CaptureFixture[str]) -> None:
        summary = {"total": 5, "successful": 4, "failed": 1}
        _print_summary(summary, Path("results.csv"))
        captured = capsys.readouterr()
        assert "Total:      5" in captured.out
        assert "Successful: 4" in captured.out
        assert "Failed:     1" in captured.out
        assert "results.csv" in captured.out


class TestProcessFolder:
    """Tests for batch folder processing."""

    def test_process_folder_csv(
        self, invoice_dir: Path, tmp_path: Path, offline_config: AppConfig
    ) -> None:
        output_csv = tmp_path / "out" / "results.csv"

        summary = process_folder(invoice_dir, output_csv, offline_config)

        assert summary == {"total": 2, "successful": 1, "failed": 1}
        with open(output_csv, encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert [r["filename"] for r in rows] == ["a_factura.xml", "b_otro.xml"]
        assert rows[0]["status"] == "success"
        assert rows[0]["total"] == "1160.00"
        assert rows[0]["conceptos"] == "1"
        assert rows[1]["status"] == "failed"
        assert rows[1]["error_kind"] == "unsupported_format"

    def test_process_folder_json(
        self, invoice_dir: Path, tmp_path: Path, offline_config: AppConfig
    ) -> None:
        output = tmp_path / "results.json"

        process_folder(invoice_dir, output, offline_config, output_format="json")

        payload = json.loads(output.read_text(encoding="utf-8"))
        assert payload[0]["filename"] == "a_factura.xml"
        assert payload[0]["record"]["rfc_receptor"] == "XAXX010101000"
        assert payload[1]["error"]["kind"] == "unsupported_format"

    def test_process_folder_empty(self, tmp_path: Path, offline_config: AppConfig) -> None:
        output_csv = tmp_path / "output.csv"
        summary = process_folder(tmp_path, output_csv, offline_config)
        assert summary["total"] == 0
        assert not output_csv.exists()

    def test_process_folder_verbose(
        self,
        invoice_dir: Path,
        tmp_path: Path,
        offline_config: AppConfig,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        process_folder(invoice_dir, tmp_path / "o.csv", offline_config, verbose=True)
        captured = capsys.readouterr()
        assert "a_factura.xml: ok" in captured.out
        assert "b_otro.xml: failed (unsupported_format)" in captured.out


class TestExtractSingle:
    """Tests for single file extraction."""

    def test_extract_single(
        self, invoice_dir: Path, offline_config: AppConfig
    ) -> None:
        result = extract_single(invoice_dir / "a_factura.xml", offline_config)
        assert result["filename"] == "a_factura.xml"
        assert result["success"] is True
        assert result["record"]["forma_pago"] == "tarjeta_credito"


class TestCLIMain:
    """Tests for the CLI argument parser and main entry point."""

    def test_no_command_shows_help(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 0

    def test_batch_nonexistent_directory(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["batch", "/nonexistent/path"])
        assert exc_info.value.code == 1
        assert "not a directory" in capsys.readouterr().err

    def test_extract_nonexistent_file(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["extract", "/nonexistent/file.png"])
        assert exc_info.value.code == 1
        assert "does not exist" in capsys.readouterr().err

    @patch("cfdi_extractor.cli.process_folder")
    @patch("cfdi_extractor.cli.load_config")
    def test_batch_with_options(
        self, mock_config: MagicMock, mock_pf: MagicMock, tmp_path: Path
    ) -> None:
        config = AppConfig()
        mock_config.return_value = config
        mock_pf.return_value = {"total": 1, "successful": 1, "failed": 0}
        output = tmp_path / "out.json"

        main(
            [
                "-c",
                str(tmp_path / "config.yaml"),
                "batch",
                str(tmp_path),
                "-o",
                str(output),
                "-f",
                "json",
                "-j",
                "2",
                "--no-ai",
            ]
        )

        mock_config.assert_called_once_with(tmp_path / "config.yaml")
        mock_pf.assert_called_once_with(tmp_path, output, config, "json", 2, False)
        assert config.ai.enabled is False

    @patch("cfdi_extractor.cli.load_config")
    def test_extract_writes_json(
        self,
        mock_config: MagicMock,
        invoice_dir: Path,
        tmp_path: Path,
        offline_config: AppConfig,
    ) -> None:
        mock_config.return_value = offline_config
        output = tmp_path / "result.json"

        main(["extract", str(invoice_dir / "a_factura.xml"), "-o", str(output)])

        result = json.loads(output.read_text(encoding="utf-8"))
        assert result["record"]["uuid"] == "5FB2822E-396D-4725-8521-CDC4BDD20CCF"

    @patch("cfdi_extractor.cli.load_config")
    def test_extract_failure_exit_code(
        self,
        mock_config: MagicMock,
        invoice_dir: Path,
        offline_config: AppConfig,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        mock_config.return_value = offline_config
        with pytest.raises(SystemExit) as exc_info:
            main(["extract", str(invoice_dir / "b_otro.xml")])
        assert exc_info.value.code == 2
        assert '"unsupported_format"' in capsys.readouterr().out
