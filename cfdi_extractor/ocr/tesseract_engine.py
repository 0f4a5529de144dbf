"""Local Tesseract OCR backend.

Used when no cloud credentials are available. Tesseract is blocking,
so recognition runs in a worker thread.
"""

import asyncio
import io

import pytesseract
from PIL import Image

from cfdi_extractor.errors import OCRFailure
from cfdi_extractor.utils.logger import get_logger

from .engine import OCRResult

logger = get_logger(__name__)

_LANGUAGE_CODES = {"es": "spa", "en": "eng"}


class TesseractEngine:
    """Wrapper around Tesseract OCR for receipt and invoice images.

    Args:
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        psm: Tesseract page segmentation mode.
    """

    def __init__(self, tesseract_cmd: str | None = None, psm: int = 3) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.psm = psm

    async def recognize(
        self, image_bytes: bytes, language_hints: list[str]
    ) -> OCRResult:
        return await asyncio.to_thread(self.extract_text, image_bytes, language_hints)

    async def aclose(self) -> None:
        return None

    def extract_text(self, image_bytes: bytes, language_hints: list[str]) -> OCRResult:
        """Extract text and mean word confidence from an encoded image.

        Args:
            image_bytes: Encoded image bytes.
            language_hints: Short language codes, mapped to Tesseract's.

        Returns:
            OCRResult with full text and confidence.

        Raises:
            OCRFailure: If the image cannot be decoded or Tesseract fails.
        """
        lang = "+".join(_LANGUAGE_CODES.get(h, h) for h in language_hints) or "spa"
        config = f"--psm {self.psm}"

        try:
            pil_image = Image.open(io.BytesIO(image_bytes))
            text = pytesseract.image_to_string(pil_image, lang=lang, config=config)
            data = pytesseract.image_to_data(
                pil_image,
                lang=lang,
                config=config,
                output_type=pytesseract.Output.DICT,
            )
        except (OSError, pytesseract.TesseractError) as exc:
            raise OCRFailure(f"Tesseract failed: {exc}") from exc

        confidences = [
            float(conf)
            for conf, word in zip(data["conf"], data["text"])
            if float(conf) > 0 and word.strip()
        ]
        avg_conf = sum(confidences) / len(confidences) / 100.0 if confidences else 0.0

        logger.info(
            "Tesseract extracted %d words with average confidence %.2f",
            len(confidences),
            avg_conf,
        )
        return OCRResult(text=text, confidence=avg_conf)
