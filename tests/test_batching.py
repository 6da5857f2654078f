"""Tests for bounded batch writes."""

from __future__ import annotations

import pytest

from letterintel.batching import write_in_batches, write_with_split
from letterintel.errors import PayloadTooLargeError, TransientExternalError


class SizeLimitedWriter:
    """Rejects any batch larger than max_rows, records accepted batches."""

    def __init__(self, max_rows: int):
        self.max_rows = max_rows
        self.batches: list[list[int]] = []
        self.attempts = 0

    def __call__(self, rows: list[int]) -> int:
        self.attempts += 1
        if len(rows) > self.max_rows:
            raise PayloadTooLargeError("too large", size=len(rows), limit=self.max_rows)
        self.batches.append(list(rows))
        return len(rows)


@pytest.mark.asyncio
async def test_write_fits_in_one_call():
    writer = SizeLimitedWriter(max_rows=100)
    assert await write_with_split(writer, list(range(40))) == 40
    assert writer.attempts == 1


@pytest.mark.asyncio
async def test_oversized_batch_is_bisected():
    writer = SizeLimitedWriter(max_rows=30)
    rows = list(range(100))

    written = await write_with_split(writer, rows, min_rows=10)

    assert written == 100
    assert all(len(b) <= 30 for b in writer.batches)
    assert [r for b in writer.batches for r in b] == rows


@pytest.mark.asyncio
async def test_split_stops_at_floor():
    """A batch still too large at the floor is an error, not a further split."""
    writer = SizeLimitedWriter(max_rows=5)

    with pytest.raises(PayloadTooLargeError):
        await write_with_split(writer, list(range(100)), min_rows=25)

    assert writer.batches == []
    # 100 -> 50 -> 25, and 25 rows is the floor
    assert writer.attempts == 3


@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    calls = 0

    def flaky(rows):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise TransientExternalError("database is locked")
        return len(rows)

    assert await write_with_split(flaky, [1, 2, 3], base_delay=0.01) == 3
    assert calls == 2


@pytest.mark.asyncio
async def test_empty_rows():
    writer = SizeLimitedWriter(max_rows=5)
    assert await write_with_split(writer, []) == 0
    assert writer.attempts == 0


@pytest.mark.asyncio
async def test_write_in_batches_bounds_each_call():
    writer = SizeLimitedWriter(max_rows=1000)
    written = await write_in_batches(writer, list(range(1234)), batch_size=500)

    assert written == 1234
    assert [len(b) for b in writer.batches] == [500, 500, 234]
