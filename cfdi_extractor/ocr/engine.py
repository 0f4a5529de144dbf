"""OCR engine boundary shared by the cloud and local backends."""

from dataclasses import dataclass
from typing import Protocol

from cfdi_extractor.utils.config import OCRConfig
from cfdi_extractor.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class OCRResult:
    """Text recognized in one image and the engine's confidence (0-1)."""

    text: str
    confidence: float


class OCREngine(Protocol):
    """Recognizes text in encoded image bytes."""

    async def recognize(
        self, image_bytes: bytes, language_hints: list[str]
    ) -> OCRResult: ...

    async def aclose(self) -> None: ...


def build_ocr_engine(config: OCRConfig) -> OCREngine:
    """Create the OCR backend selected in configuration.

    Args:
        config: OCR configuration section.

    Returns:
        A Vision or Tesseract engine.

    Raises:
        ValueError: If the Vision backend has no credentials.
    """
    if config.provider == "tesseract":
        from .tesseract_engine import TesseractEngine

        return TesseractEngine(tesseract_cmd=config.tesseract_cmd, psm=config.psm)

    from .token_provider import ServiceAccountTokenProvider, load_service_account_info
    from .vision_engine import VisionOCREngine

    token_provider = None
    api_key = config.api_key.get_secret_value() if config.api_key else None
    if config.service_account_json or config.service_account_file:
        raw = (
            config.service_account_json.get_secret_value()
            if config.service_account_json
            else None
        )
        info = load_service_account_info(raw, config.service_account_file)
        token_provider = ServiceAccountTokenProvider(info)
        logger.info("Vision OCR authenticated with service account")
    elif api_key is None:
        raise ValueError("Vision OCR needs an API key or a service account")

    return VisionOCREngine(
        endpoint=config.vision_endpoint,
        api_key=api_key,
        token_provider=token_provider,
        feature_type=config.feature_type,
        timeout_s=config.timeout_s,
        max_retries=config.max_retries,
        retry_min_wait_s=config.retry_min_wait_s,
    )
