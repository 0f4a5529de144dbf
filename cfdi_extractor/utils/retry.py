"""Bounded retry helper for remote service calls."""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cfdi_extractor.errors import TransientServiceError
from cfdi_extractor.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    attempts: int = 3,
    min_wait_s: float = 1.0,
    max_wait_s: float = 8.0,
) -> T:
    """Await ``func`` retrying only on ``TransientServiceError``.

    Args:
        func: Zero-argument coroutine factory performing one attempt.
        attempts: Maximum number of attempts, including the first.
        min_wait_s: Base delay of the exponential backoff.
        max_wait_s: Upper bound for the exponential backoff.

    Returns:
        The result of the first successful attempt.

    Raises:
        TransientServiceError: When every attempt failed transiently.
    """
    retrying = AsyncRetrying(
        reraise=True,
        retry=retry_if_exception_type(TransientServiceError),
        wait=wait_exponential(multiplier=min_wait_s, min=min_wait_s, max=max_wait_s),
        stop=stop_after_attempt(max(1, attempts)),
        before_sleep=lambda state: logger.warning(
            "Transient failure (attempt %d): %s",
            state.attempt_number,
            state.outcome.exception() if state.outcome else "unknown",
        ),
    )
    async for attempt in retrying:
        with attempt:
            return await func()
    raise AssertionError("unreachable")  # pragma: no cover
