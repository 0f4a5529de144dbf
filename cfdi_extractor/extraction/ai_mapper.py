"""Generative-model field mapper over the Gemini REST API.

The model receives the raw transcript and a fixed, versioned prompt and
must answer with a JSON object matching ``AIFieldsSchema`` exactly.
Anything else is rejected as a whole; partial answers are never merged.
"""

import json
import re
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from cfdi_extractor.errors import (
    AIInvalidResponse,
    AIQuotaExceeded,
    ExtractionError,
    TransientServiceError,
)
from cfdi_extractor.models import (
    PRIORITY_AI,
    ExtractionMethod,
    FieldCandidate,
)
from cfdi_extractor.utils.config import AIConfig
from cfdi_extractor.utils.logger import get_logger
from cfdi_extractor.utils.retry import call_with_retry

logger = get_logger(__name__)

PROMPT_VERSION = "cfdi-fields-v1"

_PROMPT_TEMPLATE = """Eres un extractor de datos fiscales de comprobantes mexicanos (CFDI, facturas y tickets).
Analiza el texto OCR y responde SOLO con un objeto JSON con exactamente estas claves:

{{
  "uuid": string o null,            // Folio fiscal, formato 8-4-4-4-12 hexadecimal
  "rfc_emisor": string o null,      // RFC de quien emite: 3-4 letras, 6 digitos (AAMMDD), 3 alfanumericos
  "rfc_receptor": string o null,    // RFC de quien recibe
  "total": numero o null,           // Monto total, sin simbolos ni comas
  "subtotal": numero o null,
  "iva": numero o null,             // IVA trasladado
  "fecha": string o null,           // Fecha de emision en formato YYYY-MM-DD
  "forma_pago": string o null,      // efectivo | tarjeta_credito | tarjeta_debito | transferencia
  "establecimiento": string o null, // Nombre o razon social del emisor
  "conceptos": lista o null         // [{{"descripcion": string, "cantidad": numero o null, "importe": numero o null}}]
}}

Reglas:
- No inventes datos: usa null cuando un campo no aparezca o sea ilegible.
- Los RFC de proveedores de certificacion (PAC) no son el emisor.
- XAXX010101000 y XEXX010101000 son siempre receptor, nunca emisor.
- forma_pago: "01" o efectivo -> efectivo; "04", credito, VISA, MASTERCARD -> tarjeta_credito;
  "28" o debito -> tarjeta_debito; "03", SPEI o transferencia -> transferencia.
- Los montos son numeros JSON, p. ej. 4139.19, nunca cadenas.

Ejemplo: "SAMSUNG ELECTRONICS MEXICO R.F.C.: SEM950215S98 SUBTOTAL $3,568.19 IVA 16% $571.00
TOTAL MXN $4,139.19" -> rfc_emisor "SEM950215S98", subtotal 3568.19, iva 571.00, total 4139.19.

Texto OCR:
\"\"\"
{text}
\"\"\"
"""

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


class AIConceptoSchema(BaseModel):
    """One line item as returned by the model."""

    model_config = ConfigDict(extra="forbid", strict=True)

    descripcion: str
    cantidad: float | None
    importe: float | None


class AIFieldsSchema(BaseModel):
    """Exact shape of the model's answer; every key must be present."""

    model_config = ConfigDict(extra="forbid", strict=True)

    uuid: str | None
    rfc_emisor: str | None
    rfc_receptor: str | None
    total: float | None
    subtotal: float | None
    iva: float | None
    fecha: str | None
    forma_pago: str | None
    establecimiento: str | None
    conceptos: list[AIConceptoSchema] | None


def build_prompt(text: str) -> str:
    return _PROMPT_TEMPLATE.format(text=text)


def parse_ai_response(raw: str) -> AIFieldsSchema:
    """Validate a model answer against the schema.

    Markdown code fences around the JSON are tolerated; nothing else is.

    Args:
        raw: Text returned by the model.

    Returns:
        The validated answer.

    Raises:
        AIInvalidResponse: On malformed JSON, a non-object, unknown or
            missing keys, or wrongly typed values.
    """
    cleaned = _FENCE_RE.sub("", raw.strip())
    try:
        return AIFieldsSchema.model_validate_json(cleaned)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
        raise AIInvalidResponse(
            f"AI response rejected at {location}: {first.get('msg', 'invalid')}"
        ) from exc


def _response_text(body: dict[str, Any]) -> str:
    try:
        return body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        reason = (body.get("promptFeedback") or {}).get("blockReason")
        detail = f"blocked: {reason}" if reason else "no candidate text"
        raise AIInvalidResponse(f"AI response has {detail}") from exc


class GeminiFieldMapper:
    """Maps a raw transcript to field candidates with a generative model.

    Args:
        api_key: Gemini API key.
        model_name: Model identifier, e.g. ``gemini-1.5-flash``.
        endpoint: Base URL of the Generative Language API.
        temperature: Sampling temperature.
        max_output_tokens: Generation limit.
        timeout_s: Per-request timeout in seconds.
        max_retries: Attempts for transient failures.
        retry_min_wait_s: Base delay of the retry backoff.
        max_input_chars: Transcript characters sent to the model.
        client: Shared HTTP client; one is created lazily if omitted.
    """

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-1.5-flash",
        endpoint: str = "https://generativelanguage.googleapis.com/v1beta",
        temperature: float = 0.1,
        max_output_tokens: int = 2000,
        timeout_s: float = 30.0,
        max_retries: int = 3,
        retry_min_wait_s: float = 1.0,
        max_input_chars: int = 12000,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self.model_name = model_name
        self.endpoint = endpoint.rstrip("/")
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.retry_min_wait_s = retry_min_wait_s
        self.max_input_chars = max_input_chars
        self._client = client

    @classmethod
    def from_config(cls, config: AIConfig) -> "GeminiFieldMapper | None":
        """Create a mapper, or ``None`` when AI mapping is disabled."""
        if not config.enabled:
            return None
        if config.api_key is None:
            logger.warning("AI mapping enabled but no API key configured")
            return None
        return cls(
            api_key=config.api_key.get_secret_value(),
            model_name=config.model_name,
            endpoint=config.endpoint,
            temperature=config.temperature,
            max_output_tokens=config.max_output_tokens,
            timeout_s=config.timeout_s,
            max_retries=config.max_retries,
            retry_min_wait_s=config.retry_min_wait_s,
            max_input_chars=config.max_input_chars,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def map_fields(self, raw_text: str) -> dict[str, FieldCandidate]:
        """Ask the model for every field and convert non-null answers.

        Args:
            raw_text: Document transcript.

        Returns:
            Field name to AI candidate, for fields the model filled.

        Raises:
            AIQuotaExceeded: When the service reports quota exhaustion.
            AIInvalidResponse: When the answer does not match the schema.
            TransientServiceError: When retries were exhausted.
        """
        prompt = build_prompt(raw_text[: self.max_input_chars])
        body = await call_with_retry(
            lambda: self._generate(prompt),
            attempts=self.max_retries,
            min_wait_s=self.retry_min_wait_s,
        )
        answer = parse_ai_response(_response_text(body))

        candidates: dict[str, FieldCandidate] = {}
        for name, value in answer.model_dump().items():
            if value is None or value == []:
                continue
            if name == "conceptos":
                value = tuple(value)
            candidates[name] = FieldCandidate(
                field=name,
                value=value,
                method=ExtractionMethod.AI,
                priority=PRIORITY_AI,
                source_snippet=f"{self.model_name}/{PROMPT_VERSION}",
                strategy="ai_mapper",
            )
        logger.info("AI mapper proposed %d fields", len(candidates))
        return candidates

    async def _generate(self, prompt: str) -> dict[str, Any]:
        url = f"{self.endpoint}/models/{self.model_name}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
                "responseMimeType": "application/json",
            },
        }
        try:
            response = await self._get_client().post(
                url,
                json=payload,
                headers={"x-goog-api-key": self._api_key},
                timeout=self.timeout_s,
            )
        except httpx.TransportError as exc:
            raise TransientServiceError(f"{type(exc).__name__}: {exc}") from exc

        status = response.status_code
        if status == 429 or (status == 403 and "quota" in response.text.lower()):
            raise AIQuotaExceeded(f"AI quota exceeded (HTTP {status})")
        if status >= 500:
            raise TransientServiceError(f"AI service HTTP {status}")
        if status >= 400:
            raise ExtractionError(f"AI request rejected (HTTP {status})")
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise AIInvalidResponse("AI service returned a non-JSON body") from exc
