"""Ingestion orchestrator: fetch, dedup, normalize, chunk, flag, embed."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from letterintel.batching import write_in_batches
from letterintel.config import (
    get_active_sources,
    get_chunking_config,
    get_db_path,
    get_junk_min_length,
    get_storage_config,
)
from letterintel.db import (
    finish_run,
    get_connection,
    insert_chunks,
    insert_message,
    insert_run,
    upsert_publisher_seen,
)
from letterintel.errors import PipelineStageError
from letterintel.ingest import SOURCES
from letterintel.ingest.base import BaseSource
from letterintel.models import Chunk, PipelineRun, RawMessage, utcnow
from letterintel.process.chunker import chunk_text
from letterintel.process.dedup import DedupProcessor
from letterintel.process.embeddings import BaseEmbedder, embed_pending_chunks
from letterintel.process.normalize import normalize_message
from letterintel.process.quality import is_junk

logger = logging.getLogger(__name__)


def build_sources(config: dict) -> list[BaseSource]:
    """Instantiate every enabled, registered source adapter."""
    sources = []
    for name in get_active_sources(config):
        if name not in SOURCES:
            logger.warning("Source '%s' enabled but not registered", name)
            continue
        sources.append(SOURCES[name](config))
    return sources


def prepare_chunks(message: RawMessage, config: dict) -> list[Chunk]:
    """Normalize a message in place and return its junk-flagged chunks."""
    chunking = get_chunking_config(config)
    min_length = get_junk_min_length(config)
    message.normalized_text = normalize_message(message.body_text, message.body_html)
    chunks = chunk_text(
        message.source_id,
        message.normalized_text,
        target_size=chunking["target_size"],
        min_size=chunking["min_size"],
        overlap=chunking["overlap"],
    )
    for chunk in chunks:
        chunk.is_junk = is_junk(chunk.body, min_length)
    return chunks


async def ingest_messages(
    conn: sqlite3.Connection,
    messages: list[RawMessage],
    config: dict,
    run: PipelineRun,
) -> None:
    """Store new messages and their chunks. Known source_ids are skipped."""
    storage = get_storage_config(config)
    dedup = DedupProcessor(config)

    unique = await dedup.process(messages)
    fresh = dedup.drop_stored(conn, unique)
    run.duplicates_skipped += len(messages) - len(fresh)

    def _write(rows: list[Chunk]) -> int:
        return insert_chunks(conn, rows, max_payload_bytes=storage["max_payload_bytes"])

    for message in fresh:
        try:
            chunks = prepare_chunks(message, config)
        except Exception:
            logger.exception("Failed to normalize message %s", message.source_id)
            run.failures += 1
            continue

        # Chunks before the message row: an interrupted message is redone on
        # the next run with identical chunk ids.
        try:
            written = await write_in_batches(
                _write, chunks,
                batch_size=storage["batch_size"],
                min_rows=storage["min_split_rows"],
                max_retries=storage["max_retries"],
            )
            if not insert_message(conn, message):
                run.duplicates_skipped += 1
                continue
            upsert_publisher_seen(
                conn, message.publisher_id, message.sender_name,
                message.sent_at or message.ingested_at,
            )
        except sqlite3.Error as exc:
            raise PipelineStageError("store", f"writing message {message.source_id}", exc) from exc

        run.messages_stored += 1
        run.chunks_created += written
        run.junk_chunks += sum(1 for c in chunks if c.is_junk)


async def run_ingest(
    config: dict,
    sources: list[BaseSource] | None = None,
    embedder: BaseEmbedder | None = None,
    since: datetime | None = None,
) -> PipelineRun:
    """Execute one ingestion run and record it."""
    conn = get_connection(get_db_path(config))
    run = PipelineRun()
    run_id = insert_run(conn, run)
    run.id = run_id
    logger.info("Ingestion run #%d started", run_id)

    try:
        if sources is None:
            sources = build_sources(config)

        messages: list[RawMessage] = []
        for source in sources:
            try:
                fetched = await source.fetch_new_messages(since)
            except Exception:
                logger.exception("Source '%s' failed", source.name)
                run.failures += 1
                continue
            logger.info("Fetched %d messages from %s", len(fetched), source.name)
            messages.extend(fetched)
        run.messages_fetched = len(messages)

        await ingest_messages(conn, messages, config, run)
        logger.info(
            "Stored %d messages, %d chunks (%d junk), skipped %d duplicates",
            run.messages_stored, run.chunks_created, run.junk_chunks, run.duplicates_skipped,
        )

        if embedder is not None:
            try:
                run.chunks_embedded = await embed_pending_chunks(conn, embedder, config)
            except Exception as exc:
                raise PipelineStageError("embed", "embedding pending chunks", exc) from exc

        run.status = "completed"
        run.finished_at = utcnow()
        finish_run(conn, run_id, run)
        logger.info(
            "Ingestion run #%d completed: %d fetched, %d stored, %d embedded",
            run_id, run.messages_fetched, run.messages_stored, run.chunks_embedded,
        )
        return run

    except Exception:
        logger.exception("Ingestion run #%d failed", run_id)
        run.status = "failed"
        run.finished_at = utcnow()
        finish_run(conn, run_id, run)
        raise
    finally:
        conn.close()
