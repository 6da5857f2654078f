"""Vector index build (fire-and-forget) and coverage polling."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass

import numpy as np

from letterintel.db import (
    count_embeddings,
    count_index_rows,
    get_connection,
    get_embeddings_page,
    get_index_status,
    insert_index_rows,
    request_index_build,
    set_index_status,
)
from letterintel.errors import CallTimeoutError, NotFoundError
from letterintel.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class IndexStatus:
    model: str
    status: str  # pending, building, ready, failed
    indexed_rows: int
    total_rows: int
    error: str | None = None

    @property
    def coverage_pct(self) -> float:
        if self.total_rows == 0:
            return 100.0 if self.status == "ready" else 0.0
        return round(100.0 * self.indexed_rows / self.total_rows, 1)


def submit_index_build(conn: sqlite3.Connection, model: str) -> IndexStatus:
    """Record a build request; the build itself runs in build_index."""
    request_index_build(conn, model, utcnow())
    logger.info("Vector index build requested for %s", model)
    return index_status(conn, model)


def index_status(conn: sqlite3.Connection, model: str) -> IndexStatus:
    row = get_index_status(conn, model)
    if row is None:
        raise NotFoundError(f"No vector index requested for model {model}")
    return IndexStatus(
        model=model,
        status=row["status"],
        indexed_rows=count_index_rows(conn, model),
        total_rows=count_embeddings(conn, model),
        error=row["error"],
    )


async def build_index(db_path: str, model: str, batch_size: int = 500) -> IndexStatus:
    """Write unit-normalized vectors for every stored embedding of a model.

    Runs on its own connection so it can proceed in the background. Failures
    are recorded on the index row and re-raised.
    """
    conn = get_connection(db_path)
    try:
        total = count_embeddings(conn, model)
        set_index_status(conn, model, "building", total_rows=total, started_at=utcnow())
        after = 0
        indexed = 0
        while True:
            rows = get_embeddings_page(conn, model, after, batch_size)
            if not rows:
                break
            index_rows = []
            for row in rows:
                vec = np.frombuffer(row["vector"], dtype=np.float32)
                norm = np.linalg.norm(vec)
                unit = vec / norm if norm > 0 else vec
                index_rows.append((row["chunk_id"], model, unit.astype(np.float32).tobytes()))
            insert_index_rows(conn, index_rows)
            indexed += len(index_rows)
            after = rows[-1]["rowid"]
            set_index_status(conn, model, "building", indexed_rows=indexed)
            # Yield so pollers on the same loop can run
            await asyncio.sleep(0)

        set_index_status(conn, model, "ready", indexed_rows=indexed, finished_at=utcnow())
        logger.info("Vector index for %s ready (%d rows)", model, indexed)
        return index_status(conn, model)
    except Exception as exc:
        logger.exception("Vector index build for %s failed", model)
        set_index_status(conn, model, "failed", error=str(exc), finished_at=utcnow())
        raise
    finally:
        conn.close()


def start_index_build(db_path: str, model: str, batch_size: int = 500) -> asyncio.Task:
    """Submit and launch a background build, returning without waiting."""
    conn = get_connection(db_path)
    try:
        submit_index_build(conn, model)
    finally:
        conn.close()
    return asyncio.create_task(build_index(db_path, model, batch_size))


async def wait_for_coverage(
    db_path: str,
    model: str,
    target_pct: float = 100.0,
    poll_interval: float = 5.0,
    timeout: float = 600.0,
) -> IndexStatus:
    """Poll index status until coverage reaches the target."""
    deadline = time.monotonic() + timeout
    while True:
        conn = get_connection(db_path)
        try:
            status = index_status(conn, model)
        finally:
            conn.close()
        if status.status == "failed":
            return status
        if status.status == "ready" and status.coverage_pct >= target_pct:
            return status
        if time.monotonic() >= deadline:
            raise CallTimeoutError(
                f"Vector index for {model} at {status.coverage_pct}% after {timeout:.0f}s"
            )
        logger.info(
            "Vector index for %s: %s, %.1f%% coverage",
            model, status.status, status.coverage_pct,
        )
        await asyncio.sleep(poll_interval)
