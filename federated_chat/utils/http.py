"""HTTP utilities providing retry/backoff semantics for idempotent requests."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)


class RetryConfig:
    def __init__(self, *, attempts: int = 3, backoff_seconds: float = 0.5) -> None:
        if attempts < 1:
            raise ValueError("At least one attempt is required.")
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds


def _is_transient(response: httpx.Response) -> bool:
    return response.status_code >= 500


async def request_with_retry(
    func: Callable[..., Awaitable[httpx.Response]],
    *args,
    retry_config: RetryConfig | None = None,
    **kwargs,
) -> httpx.Response:
    """Call ``func`` until it returns a non-5xx response or attempts run out.

    Client errors are returned to the caller untouched. The last 5xx response
    is returned, and the last transport error is re-raised, once attempts are
    exhausted.
    """
    config = retry_config or RetryConfig()
    for attempt in range(1, config.attempts + 1):
        try:
            response = await func(*args, **kwargs)
        except httpx.TransportError as exc:
            if attempt >= config.attempts:
                raise
            logger.warning("Request attempt %d failed: %s", attempt, exc)
        else:
            if not _is_transient(response) or attempt >= config.attempts:
                return response
            logger.warning(
                "Request attempt %d returned %d", attempt, response.status_code
            )
        await asyncio.sleep(config.backoff_seconds * attempt)
    raise RuntimeError("Request failed without a response")  # pragma: no cover


__all__ = ["RetryConfig", "request_with_retry"]
