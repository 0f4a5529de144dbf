"""Input classification by declared type, extension, and magic bytes."""

from pathlib import PurePath

from cfdi_extractor.errors import UnsupportedFormat
from cfdi_extractor.models import DocumentKind
from cfdi_extractor.utils.logger import get_logger

logger = get_logger(__name__)

_MIME_KINDS: dict[str, DocumentKind] = {
    "application/xml": DocumentKind.XML,
    "text/xml": DocumentKind.XML,
    "application/pdf": DocumentKind.PDF,
    "image/png": DocumentKind.IMAGE,
    "image/jpeg": DocumentKind.IMAGE,
    "image/jpg": DocumentKind.IMAGE,
    "image/gif": DocumentKind.IMAGE,
    "image/tiff": DocumentKind.IMAGE,
    "image/bmp": DocumentKind.IMAGE,
    "image/webp": DocumentKind.IMAGE,
}

_EXTENSION_KINDS: dict[str, DocumentKind] = {
    ".xml": DocumentKind.XML,
    ".pdf": DocumentKind.PDF,
    ".png": DocumentKind.IMAGE,
    ".jpg": DocumentKind.IMAGE,
    ".jpeg": DocumentKind.IMAGE,
    ".gif": DocumentKind.IMAGE,
    ".tif": DocumentKind.IMAGE,
    ".tiff": DocumentKind.IMAGE,
    ".bmp": DocumentKind.IMAGE,
    ".webp": DocumentKind.IMAGE,
}

_IMAGE_SIGNATURES = (
    b"\x89PNG\r\n\x1a\n",
    b"\xff\xd8\xff",
    b"GIF87a",
    b"GIF89a",
    b"II*\x00",
    b"MM\x00*",
    b"BM",
)

_UTF8_BOM = b"\xef\xbb\xbf"


def _sniff(data: bytes) -> DocumentKind | None:
    """Identify the document kind from its leading bytes."""
    head = data[:64]
    if head.startswith(b"%PDF"):
        return DocumentKind.PDF
    if head.startswith(_IMAGE_SIGNATURES):
        return DocumentKind.IMAGE
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return DocumentKind.IMAGE

    text_head = head.removeprefix(_UTF8_BOM).lstrip()
    if text_head.startswith(b"<?xml") or text_head.startswith(b"<"):
        return DocumentKind.XML
    return None


def classify(
    data: bytes,
    declared_mime: str | None = None,
    filename: str | None = None,
) -> DocumentKind:
    """Decide which acquisition path a document takes.

    The declared MIME type wins when it is specific; otherwise the file
    extension and finally the content's magic bytes are consulted.

    Args:
        data: Raw document bytes.
        declared_mime: MIME type supplied by the caller, if any.
        filename: Original file name, if any.

    Returns:
        The detected document kind.

    Raises:
        UnsupportedFormat: If the input is empty or unrecognized.
    """
    if not data:
        raise UnsupportedFormat("empty document")

    if declared_mime:
        mime = declared_mime.split(";")[0].strip().lower()
        if mime in _MIME_KINDS:
            return _MIME_KINDS[mime]

    if filename:
        suffix = PurePath(filename).suffix.lower()
        if suffix in _EXTENSION_KINDS:
            return _EXTENSION_KINDS[suffix]

    kind = _sniff(data)
    if kind is None:
        logger.warning(
            "Unrecognized document (mime=%s, filename=%s)", declared_mime, filename
        )
        raise UnsupportedFormat(
            f"cannot classify document (declared type: {declared_mime or 'none'})"
        )
    logger.debug("Sniffed document kind: %s", kind)
    return kind
