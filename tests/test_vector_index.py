"""Tests for the background vector index build and coverage polling."""

from __future__ import annotations

import sqlite3
from unittest.mock import patch

import numpy as np
import pytest
import pytest_asyncio

from letterintel.db import get_index_status, insert_chunks, insert_message, vector_search
from letterintel.errors import CallTimeoutError, NotFoundError
from letterintel.process.chunker import chunk_text
from letterintel.process.embeddings import embed_pending_chunks
from letterintel.process.vector_index import (
    IndexStatus,
    build_index,
    index_status,
    start_index_build,
    submit_index_build,
    wait_for_coverage,
)

from tests.conftest import make_message

MODEL = "fake-embedder"


@pytest_asyncio.fixture
async def embedded(sample_config, db_conn, fake_embedder):
    bodies = {
        1: "Chipmakers face new export controls on advanced semiconductors. " * 6,
        2: "The central bank held interest rates and signalled patience. " * 6,
        3: "Shipping rates rose as canal traffic slowed for a third week. " * 6,
    }
    for idx, body in bodies.items():
        msg = make_message(idx, body=body)
        msg.normalized_text = msg.body_text
        insert_message(db_conn, msg)
        insert_chunks(db_conn, chunk_text(msg.source_id, msg.body_text))
    count = await embed_pending_chunks(db_conn, fake_embedder, sample_config)
    assert count > 0
    return count


def test_status_before_request_is_not_found(db_conn):
    with pytest.raises(NotFoundError):
        index_status(db_conn, MODEL)


@pytest.mark.asyncio
async def test_submit_marks_pending(db_conn, embedded):
    status = submit_index_build(db_conn, MODEL)
    assert status.status == "pending"
    assert status.indexed_rows == 0
    assert status.total_rows == embedded
    assert status.coverage_pct == 0.0


@pytest.mark.asyncio
async def test_background_build_reaches_full_coverage(sample_config, db_conn, embedded):
    db_path = sample_config["database"]["path"]

    task = start_index_build(db_path, MODEL, batch_size=2)
    status = await wait_for_coverage(db_path, MODEL, poll_interval=0.01, timeout=10)
    await task

    assert status.status == "ready"
    assert status.indexed_rows == embedded
    assert status.coverage_pct == 100.0

    blobs = db_conn.execute("SELECT unit_vector FROM embedding_index").fetchall()
    norms = [np.linalg.norm(np.frombuffer(b["unit_vector"], dtype=np.float32)) for b in blobs]
    assert norms == pytest.approx([1.0] * embedded, rel=1e-5)


@pytest.mark.asyncio
async def test_search_results_unchanged_by_index(sample_config, db_conn, embedded, fake_embedder):
    query = fake_embedder.vector("semiconductor export controls")
    before = vector_search(db_conn, query, MODEL, limit=3)

    submit_index_build(db_conn, MODEL)
    await build_index(sample_config["database"]["path"], MODEL)
    after = vector_search(db_conn, query, MODEL, limit=3)

    assert after[0][0] == before[0][0]
    assert dict(after) == pytest.approx(dict(before), rel=1e-5)


@pytest.mark.asyncio
async def test_failed_build_is_recorded(sample_config, db_conn, embedded):
    submit_index_build(db_conn, MODEL)
    with patch(
        "letterintel.process.vector_index.insert_index_rows",
        side_effect=sqlite3.OperationalError("disk I/O error"),
    ):
        with pytest.raises(sqlite3.OperationalError):
            await build_index(sample_config["database"]["path"], MODEL)

    row = get_index_status(db_conn, MODEL)
    assert row["status"] == "failed"
    assert "disk I/O error" in row["error"]


@pytest.mark.asyncio
async def test_wait_times_out_on_pending_build(sample_config, db_conn, embedded):
    submit_index_build(db_conn, MODEL)
    with pytest.raises(CallTimeoutError):
        await wait_for_coverage(
            sample_config["database"]["path"], MODEL, poll_interval=0.01, timeout=0,
        )


def test_coverage_of_empty_index():
    assert IndexStatus(MODEL, "ready", 0, 0).coverage_pct == 100.0
    assert IndexStatus(MODEL, "building", 0, 0).coverage_pct == 0.0
    assert IndexStatus(MODEL, "building", 1, 3).coverage_pct == 33.3
