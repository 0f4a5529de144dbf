"""Configuration management for the fiscal extraction pipeline.

Loads and validates YAML configuration with sensible defaults for
OCR, AI mapping, and pipeline settings. Credentials are resolved once,
here, and passed explicitly to every component that needs them.
"""

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, SecretStr

logger = logging.getLogger(__name__)

# Environment variables consulted by load_config only.
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "CFDI_VISION_API_KEY": ("ocr", "api_key"),
    "CFDI_VISION_SERVICE_ACCOUNT": ("ocr", "service_account_json"),
    "CFDI_GEMINI_API_KEY": ("ai", "api_key"),
}


class OCRConfig(BaseModel):
    """Configuration for the OCR backend and PDF rasterization."""

    provider: Literal["vision", "tesseract"] = "vision"
    vision_endpoint: str = "https://vision.googleapis.com/v1/images:annotate"
    feature_type: str = "DOCUMENT_TEXT_DETECTION"
    api_key: SecretStr | None = None
    service_account_json: SecretStr | None = None
    service_account_file: str | None = None
    language_hints: list[str] = Field(default_factory=lambda: ["es", "en"])
    tesseract_cmd: str | None = None
    psm: int = 3
    timeout_s: float = 30.0
    max_retries: int = 3
    retry_min_wait_s: float = 1.0
    pdf_dpi: int = 300
    pdf_max_pages: int = 10
    pdf_min_text_length: int = 50


class AIConfig(BaseModel):
    """Configuration for the optional generative-model field mapper."""

    enabled: bool = True
    only_when_incomplete: bool = True
    api_key: SecretStr | None = None
    endpoint: str = "https://generativelanguage.googleapis.com/v1beta"
    model_name: str = "gemini-1.5-flash"
    temperature: float = 0.1
    max_output_tokens: int = 2000
    timeout_s: float = 30.0
    max_retries: int = 3
    retry_min_wait_s: float = 1.0
    max_input_chars: int = 12000


class PipelineConfig(BaseModel):
    """Configuration for normalization and batch execution."""

    vat_rate: float = 0.16
    max_concurrency: int = 4
    amount_ceiling: float = 10_000_000.0


class AppConfig(BaseModel):
    """Top-level application configuration."""

    ocr: OCRConfig = Field(default_factory=OCRConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    log_level: str = "INFO"


def _apply_env_overrides(raw: dict) -> dict:
    """Fill credential fields from the environment when not set in YAML."""
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        section_data = raw.setdefault(section, {}) or {}
        if not section_data.get(key):
            section_data[key] = value
            logger.debug("Using %s from environment", env_name)
        raw[section] = section_data
    return raw


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    raw: dict = {}
    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    else:
        logger.info("No config file found at %s, using defaults", path)

    return AppConfig(**_apply_env_overrides(raw))
