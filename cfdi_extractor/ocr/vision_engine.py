"""Google Cloud Vision OCR over the ``images:annotate`` REST endpoint."""

import base64
from typing import Any

import httpx

from cfdi_extractor.errors import OCRFailure, TransientServiceError
from cfdi_extractor.utils.logger import get_logger
from cfdi_extractor.utils.retry import call_with_retry

from .engine import OCRResult
from .token_provider import TokenProvider

logger = get_logger(__name__)

# Vision does not always report page confidence.
_DEFAULT_CONFIDENCE = 0.95


class VisionOCREngine:
    """Cloud OCR backend.

    Args:
        endpoint: ``images:annotate`` URL.
        api_key: API key sent as the ``key`` query parameter.
        token_provider: Bearer-token source; preferred over ``api_key``.
        feature_type: ``TEXT_DETECTION`` or ``DOCUMENT_TEXT_DETECTION``.
        timeout_s: Per-request timeout in seconds.
        max_retries: Attempts for transient failures.
        retry_min_wait_s: Base delay of the retry backoff.
        client: Shared HTTP client; one is created lazily if omitted.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str | None = None,
        token_provider: TokenProvider | None = None,
        feature_type: str = "DOCUMENT_TEXT_DETECTION",
        timeout_s: float = 30.0,
        max_retries: int = 3,
        retry_min_wait_s: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if api_key is None and token_provider is None:
            raise ValueError("VisionOCREngine needs an api_key or a token_provider")
        self.endpoint = endpoint
        self.feature_type = feature_type
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.retry_min_wait_s = retry_min_wait_s
        self._api_key = api_key
        self._token_provider = token_provider
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def recognize(
        self, image_bytes: bytes, language_hints: list[str]
    ) -> OCRResult:
        """Run text detection on one encoded image.

        Args:
            image_bytes: PNG/JPEG/... bytes.
            language_hints: BCP-47 hints such as ``["es", "en"]``.

        Returns:
            Recognized text and mean page confidence.

        Raises:
            OCRFailure: On API errors or after exhausting retries.
        """
        payload = {
            "requests": [
                {
                    "image": {"content": base64.b64encode(image_bytes).decode("ascii")},
                    "features": [{"type": self.feature_type}],
                    "imageContext": {"languageHints": language_hints},
                }
            ]
        }
        try:
            data = await call_with_retry(
                lambda: self._post(payload),
                attempts=self.max_retries,
                min_wait_s=self.retry_min_wait_s,
            )
        except TransientServiceError as exc:
            raise OCRFailure(f"Vision request failed: {exc}") from exc

        result = self._parse_response(data)
        logger.info(
            "Vision OCR returned %d characters (confidence %.2f)",
            len(result.text),
            result.confidence,
        )
        return result

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        headers: dict[str, str] = {}
        params: dict[str, str] = {}
        if self._token_provider is not None:
            token = await self._token_provider.get_token()
            headers["Authorization"] = f"Bearer {token}"
        elif self._api_key:
            params["key"] = self._api_key

        try:
            response = await self._get_client().post(
                self.endpoint,
                json=payload,
                headers=headers,
                params=params,
                timeout=self.timeout_s,
            )
        except httpx.TransportError as exc:
            raise TransientServiceError(f"{type(exc).__name__}: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientServiceError(f"Vision API HTTP {response.status_code}")
        if response.status_code >= 400:
            raise OCRFailure(
                f"Vision API HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise OCRFailure("Vision API returned a non-JSON body") from exc

    def _parse_response(self, data: dict[str, Any]) -> OCRResult:
        responses = data.get("responses") or [{}]
        first = responses[0]
        if "error" in first:
            message = first["error"].get("message", "unknown error")
            raise OCRFailure(f"Vision API error: {message}")

        annotation = first.get("fullTextAnnotation") or {}
        text = annotation.get("text", "")
        if not text and first.get("textAnnotations"):
            text = first["textAnnotations"][0].get("description", "")

        page_confidences = [
            page["confidence"]
            for page in annotation.get("pages", [])
            if "confidence" in page
        ]
        if page_confidences:
            confidence = sum(page_confidences) / len(page_confidences)
        else:
            confidence = _DEFAULT_CONFIDENCE if text.strip() else 0.0
        return OCRResult(text=text, confidence=confidence)
