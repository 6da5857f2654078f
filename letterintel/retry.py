"""Retry with exponential backoff, and wall-clock timeouts for external calls.

Every external collaborator (LLM providers, remote embedders, storage
writes) goes through retry_async with a bounded attempt count. Only
transient failures are retried; anything else surfaces on the first try.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

import httpx

from letterintel.errors import CallTimeoutError, TransientExternalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_HTTP_CODES = {429, 500, 502, 503, 504}
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    ConnectionError,
    TimeoutError,
    TransientExternalError,
)
# Matched by class name so the anthropic SDK stays an optional import here
ANTHROPIC_RETRYABLE = (
    "RateLimitError", "OverloadedError",
    "InternalServerError", "APIConnectionError",
)


def is_transient(exc: BaseException) -> bool:
    """Whether a failure is worth another attempt."""
    if isinstance(exc, RETRYABLE_EXCEPTIONS):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_HTTP_CODES
    return type(exc).__name__ in ANTHROPIC_RETRYABLE


def _retry_after(exc: BaseException) -> float | None:
    if not isinstance(exc, httpx.HTTPStatusError):
        return None
    value = exc.response.headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def backoff_delay(
    exc: BaseException, attempt: int, base_delay: float, max_delay: float
) -> float:
    """Exponential backoff, or the server's Retry-After when it sends one."""
    hinted = _retry_after(exc)
    if hinted is not None:
        return min(hinted, max_delay)
    return min(base_delay * (2**attempt), max_delay)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    return f"{type(exc).__name__}: {exc}"


async def retry_async(
    fn,
    *args,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    **kwargs,
):
    """Call an async function, retrying transient failures with backoff.

    Retries on:
    - httpx timeout/connection errors and TransientExternalError
    - HTTP 429 (rate limit) and 5xx (server errors)
    - anthropic rate limit / overloaded errors

    Makes at most ``max_retries + 1`` attempts and re-raises the last error.
    """
    attempt = 0
    while True:
        try:
            return await fn(*args, **kwargs)
        except Exception as exc:
            if not is_transient(exc) or attempt >= max_retries:
                raise
            delay = backoff_delay(exc, attempt, base_delay, max_delay)
            attempt += 1
            logger.warning(
                "Retry %d/%d after %s (waiting %.1fs)",
                attempt, max_retries, _describe(exc), delay,
            )
            await asyncio.sleep(delay)


async def with_timeout(awaitable: Awaitable[T], seconds: float, what: str = "call") -> T:
    """Await with a hard wall-clock limit, raising CallTimeoutError on expiry."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise CallTimeoutError(f"{what} timed out after {seconds:.0f}s") from exc
