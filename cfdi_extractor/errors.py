"""Error taxonomy for the extraction pipeline.

Stages raise these exceptions; the pipeline boundary converts them into
failed ``ExtractionOutcome`` values so callers never see them raised.
"""


class ExtractionError(Exception):
    """Base class for all pipeline errors.

    Attributes:
        kind: Stable machine-readable identifier of the failure.
    """

    kind = "internal_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class UnsupportedFormat(ExtractionError):
    """Input bytes are not a recognizable XML, PDF, or image."""

    kind = "unsupported_format"


class OCRFailure(ExtractionError):
    """The OCR engine errored or timed out after retries."""

    kind = "ocr_failure"


class NoTextDetected(ExtractionError):
    """Text acquisition succeeded but produced an empty transcript."""

    kind = "no_text_detected"


class NoFieldsExtracted(ExtractionError):
    """A transcript exists but neither patterns nor the AI found a field."""

    kind = "no_fields_extracted"


class AIQuotaExceeded(ExtractionError):
    """The AI service rejected the request for quota or rate reasons."""

    kind = "ai_quota_exceeded"


class AIInvalidResponse(ExtractionError):
    """The AI response did not match the expected schema."""

    kind = "ai_invalid_response"


class ValidationFailure(ExtractionError):
    """A field value could not be normalized into its canonical form."""

    kind = "validation_failure"

    def __init__(self, field: str, value: object, reason: str) -> None:
        super().__init__(f"{field}: {reason} ({value!r})")
        self.field = field
        self.value = value
        self.reason = reason


class Cancelled(ExtractionError):
    """The extraction was cancelled before a record was assembled."""

    kind = "cancelled"


class TransientServiceError(Exception):
    """A remote call failed in a way that is worth retrying."""
