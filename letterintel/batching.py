"""Bounded batch writes with split-on-oversize and retry-on-transient."""

from __future__ import annotations

import logging
from typing import Callable, Sequence, TypeVar

from letterintel.errors import PayloadTooLargeError
from letterintel.retry import retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def write_with_split(
    write_fn: Callable[[list[T]], int],
    rows: Sequence[T],
    min_rows: int = 25,
    max_retries: int = 3,
    base_delay: float = 0.5,
) -> int:
    """Write rows, bisecting on PayloadTooLargeError.

    Halves keep splitting while they hold more than ``min_rows`` rows; at the
    floor the error propagates. Transient failures are retried with backoff.
    Returns the number of rows written.
    """
    rows = list(rows)
    if not rows:
        return 0

    async def _attempt(batch: list[T]) -> int:
        return write_fn(batch)

    try:
        return await retry_async(
            _attempt, rows, max_retries=max_retries, base_delay=base_delay,
        )
    except PayloadTooLargeError:
        if len(rows) <= min_rows:
            logger.error(
                "Batch of %d rows still too large at split floor (%d)",
                len(rows), min_rows,
            )
            raise
        mid = len(rows) // 2
        logger.warning("Payload too large for %d rows, splitting in half", len(rows))
        left = await write_with_split(write_fn, rows[:mid], min_rows, max_retries, base_delay)
        right = await write_with_split(write_fn, rows[mid:], min_rows, max_retries, base_delay)
        return left + right


async def write_in_batches(
    write_fn: Callable[[list[T]], int],
    rows: Sequence[T],
    batch_size: int = 500,
    min_rows: int = 25,
    max_retries: int = 3,
) -> int:
    """Write rows in bounded batches, each via write_with_split."""
    total = 0
    for i in range(0, len(rows), batch_size):
        total += await write_with_split(
            write_fn, rows[i:i + batch_size], min_rows=min_rows, max_retries=max_retries,
        )
    return total
