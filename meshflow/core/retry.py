"""Bounded retry with exponential backoff for remote space calls.

Retry policy:
    Attempt `operation` up to `max_attempts` times. After the attempt with index
    `n` fails, wait `base_delay * 2 ** n` seconds before the next one. Delays are
    awaited, so other workflow instances keep running during backoff.

Failure handling model:
    Any `Exception` counts as transient. After exhaustion the last failure is
    re-raised as `RemoteOperationFailed`, chained with `raise ... from`, so the
    original cause is preserved. Task cancellation is never caught.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from meshflow import config
from meshflow.core.errors import RemoteOperationFailed


logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Compute exponential backoff delay for a zero-based attempt index."""
    return base_delay * (2 ** attempt)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    operation_id: str | None,
    max_attempts: int | None = None,
    base_delay: float | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run `operation` with retry and exponential backoff.

    Args:
        operation: Zero-argument callable returning an awaitable.
        operation_id: Correlation id included in logs and the raised error.
        max_attempts: Attempt ceiling; defaults to `config.RETRY_ATTEMPTS`.
            Values below 1 are treated as 1.
        base_delay: First backoff delay in seconds; defaults to
            `config.RETRY_BASE_DELAY_SECONDS`.
        sleep: Awaitable sleep function, replaceable in tests.

    Returns:
        The first successful result of `operation`.

    Raises:
        RemoteOperationFailed: After `max_attempts` failed attempts.
    """
    if max_attempts is None:
        max_attempts = config.RETRY_ATTEMPTS
    if base_delay is None:
        base_delay = config.RETRY_BASE_DELAY_SECONDS
    attempts = max(1, int(max_attempts))

    last_error: Exception | None = None
    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as exc:
            last_error = exc
            if attempt >= attempts - 1:
                break
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                "[%s] attempt %d/%d failed: %s; retrying in %.2fs",
                operation_id,
                attempt + 1,
                attempts,
                exc,
                delay,
            )
            await sleep(delay)

    logger.error("[%s] all %d attempts failed: %s", operation_id, attempts, last_error)
    raise RemoteOperationFailed(
        f"Remote operation failed after {attempts} attempts: {last_error}",
        operation_id=operation_id,
        attempts=attempts,
    ) from last_error
