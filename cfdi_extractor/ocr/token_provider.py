"""OAuth access tokens for Google Cloud APIs.

Service-account credentials are handled by ``google-auth``; this module
only decodes the key material and caches the resulting token.
"""

import asyncio
import base64
import binascii
import json
from pathlib import Path
from typing import Any, Protocol

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from cfdi_extractor.errors import OCRFailure, TransientServiceError
from cfdi_extractor.utils.logger import get_logger

logger = get_logger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class TokenProvider(Protocol):
    """Anything able to hand out a bearer token for Google APIs."""

    async def get_token(self) -> str: ...


def load_service_account_info(
    raw: str | None = None,
    path: str | None = None,
) -> dict[str, Any]:
    """Decode service-account key material.

    Accepts the key as a JSON string, as base64-encoded JSON, or as a
    path to a JSON key file.

    Args:
        raw: JSON or base64 JSON key material.
        path: Path to a JSON key file.

    Returns:
        The parsed service-account info dictionary.

    Raises:
        ValueError: If no usable key material is found.
    """
    if path:
        with open(Path(path)) as f:
            info = json.load(f)
    elif raw:
        text = raw.strip()
        if not text.startswith("{"):
            try:
                text = base64.b64decode(text, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as exc:
                raise ValueError("service account key is neither JSON nor base64") from exc
        info = json.loads(text)
    else:
        raise ValueError("no service account key configured")

    if not isinstance(info, dict) or "private_key" not in info:
        raise ValueError("service account key has no private_key")
    # Keys pasted through env vars often carry escaped newlines.
    info["private_key"] = info["private_key"].replace("\\n", "\n")
    return info


class ServiceAccountTokenProvider:
    """Caches and refreshes a service-account access token.

    Args:
        info: Parsed service-account key.
        scopes: OAuth scopes requested for the token.
    """

    def __init__(
        self,
        info: dict[str, Any],
        scopes: list[str] | None = None,
    ) -> None:
        self._credentials = service_account.Credentials.from_service_account_info(
            info, scopes=scopes or [CLOUD_PLATFORM_SCOPE]
        )
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        """Return a valid access token, refreshing it when expired.

        Raises:
            OCRFailure: If the credentials are rejected.
            TransientServiceError: If the token endpoint is unreachable.
        """
        async with self._lock:
            if not self._credentials.valid:
                logger.debug("Refreshing service account access token")
                try:
                    await asyncio.to_thread(self._credentials.refresh, Request())
                except google.auth.exceptions.RefreshError as exc:
                    raise OCRFailure(f"service account rejected: {exc}") from exc
                except google.auth.exceptions.TransportError as exc:
                    raise TransientServiceError(f"token endpoint: {exc}") from exc
            return self._credentials.token
