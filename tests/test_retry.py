"""Tests for retry logic and call timeouts."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from letterintel.errors import CallTimeoutError, PayloadTooLargeError, TransientExternalError
from letterintel.retry import backoff_delay, is_transient, retry_async, with_timeout


@pytest.mark.asyncio
async def test_retry_succeeds_on_first_try():
    """No retries needed when function succeeds."""
    call_count = 0

    async def fn():
        nonlocal call_count
        call_count += 1
        return "ok"

    result = await retry_async(fn)
    assert result == "ok"
    assert call_count == 1


@pytest.mark.asyncio
async def test_retry_succeeds_after_transient_failure():
    """Retries on transient error and eventually succeeds."""
    call_count = 0

    async def fn():
        nonlocal call_count
        call_count += 1
        if call_count < 3:
            raise TransientExternalError("database is locked")
        return "ok"

    result = await retry_async(fn, max_retries=3, base_delay=0.01)
    assert result == "ok"
    assert call_count == 3


@pytest.mark.asyncio
async def test_retry_exhausts_retries():
    """Raises after max retries exhausted."""
    call_count = 0

    async def fn():
        nonlocal call_count
        call_count += 1
        raise TimeoutError("always fails")

    with pytest.raises(TimeoutError, match="always fails"):
        await retry_async(fn, max_retries=2, base_delay=0.01)
    assert call_count == 3


@pytest.mark.asyncio
async def test_retry_zero_retries_fails_fast():
    call_count = 0

    async def fn():
        nonlocal call_count
        call_count += 1
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await retry_async(fn, max_retries=0, base_delay=0.01)
    assert call_count == 1


@pytest.mark.asyncio
async def test_retry_does_not_retry_non_transient():
    """Non-retryable exceptions are raised immediately."""
    call_count = 0

    async def fn():
        nonlocal call_count
        call_count += 1
        raise PayloadTooLargeError("too big", size=10, limit=5)

    with pytest.raises(PayloadTooLargeError):
        await retry_async(fn, max_retries=3, base_delay=0.01)
    assert call_count == 1


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://localhost:9999/chat/completions")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


@pytest.mark.asyncio
async def test_retry_on_rate_limit_status():
    call_count = 0

    async def fn():
        nonlocal call_count
        call_count += 1
        if call_count == 1:
            raise _status_error(429)
        return "ok"

    assert await retry_async(fn, max_retries=2, base_delay=0.01) == "ok"
    assert call_count == 2


@pytest.mark.asyncio
async def test_no_retry_on_client_error_status():
    call_count = 0

    async def fn():
        nonlocal call_count
        call_count += 1
        raise _status_error(400)

    with pytest.raises(httpx.HTTPStatusError):
        await retry_async(fn, max_retries=3, base_delay=0.01)
    assert call_count == 1


@pytest.mark.asyncio
async def test_with_timeout_returns_result():
    async def fast():
        return 42

    assert await with_timeout(fast(), 1.0) == 42


@pytest.mark.asyncio
async def test_with_timeout_raises_call_timeout():
    async def slow():
        await asyncio.sleep(5)

    with pytest.raises(CallTimeoutError, match="insight for msg-1 timed out"):
        await with_timeout(slow(), 0.01, what="insight for msg-1")


def test_is_transient_classification():
    assert is_transient(ConnectionError("reset"))
    assert is_transient(TransientExternalError("database is locked"))
    assert is_transient(_status_error(503))
    assert not is_transient(_status_error(404))
    assert not is_transient(ValueError("bad input"))


def test_backoff_honours_retry_after():
    request = httpx.Request("POST", "http://localhost:9999/chat/completions")
    response = httpx.Response(429, request=request, headers={"retry-after": "7"})
    exc = httpx.HTTPStatusError("HTTP 429", request=request, response=response)

    assert backoff_delay(exc, attempt=0, base_delay=1.0, max_delay=60.0) == 7.0
    assert backoff_delay(exc, attempt=0, base_delay=1.0, max_delay=5.0) == 5.0
    assert backoff_delay(ConnectionError(), attempt=3, base_delay=1.0, max_delay=60.0) == 8.0
