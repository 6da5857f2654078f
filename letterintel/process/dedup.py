"""Message deduplication and duplicate-chunk reconciliation."""

from __future__ import annotations

import logging
import sqlite3

from letterintel.db import (
    delete_chunk_rows,
    find_unsafe_chunk_deletes,
    get_duplicate_chunk_rows,
    get_existing_source_ids,
)
from letterintel.errors import ReconciliationSafetyError
from letterintel.models import RawMessage, ReconcileStats
from letterintel.process import register_processor
from letterintel.process.base import BaseProcessor

logger = logging.getLogger(__name__)


@register_processor("dedup")
class DedupProcessor(BaseProcessor[RawMessage]):
    """Drop repeated messages within a batch by source id and content hash."""

    @property
    def name(self) -> str:
        return "dedup"

    async def process(self, messages: list[RawMessage]) -> list[RawMessage]:
        cfg = self.config.get("process", {}).get("dedup", {})
        if not cfg.get("enabled", True):
            return messages
        match_hash = cfg.get("content_hash", True)

        seen_ids: set[str] = set()
        seen_hashes: set[str] = set()
        result = []
        for message in messages:
            if message.source_id in seen_ids:
                continue
            if match_hash and message.content_hash in seen_hashes:
                continue
            seen_ids.add(message.source_id)
            seen_hashes.add(message.content_hash)
            result.append(message)

        removed = len(messages) - len(result)
        if removed:
            logger.info("Batch dedup removed %d repeated messages", removed)
        return result

    def drop_stored(self, conn: sqlite3.Connection, messages: list[RawMessage]) -> list[RawMessage]:
        """Remove messages whose source_id is already in the archive."""
        existing = get_existing_source_ids(conn, [m.source_id for m in messages])
        if existing:
            logger.info("Skipping %d already-ingested messages", len(existing))
        return [m for m in messages if m.source_id not in existing]


def reconcile_chunks(conn: sqlite3.Connection, dry_run: bool = True) -> ReconcileStats:
    """Remove superseded duplicate chunks, keeping the newest per (message, index).

    Aborts without deleting anything if the delete set would leave a group
    empty or touch a group that has only one row. The check runs against the
    live table before planning and again inside the delete transaction.
    """
    rows = get_duplicate_chunk_rows(conn)
    groups: dict[tuple[str, int], list[dict]] = {}
    for row in rows:
        groups.setdefault((row["source_id"], row["chunk_index"]), []).append(row)

    stats = ReconcileStats(
        duplicate_groups=len(groups),
        messages_affected=len({source_id for source_id, _ in groups}),
        rows_to_delete=len(rows),
        dry_run=dry_run,
    )
    logger.info(
        "Found %d duplicate chunk groups across %d messages (%d rows to delete)",
        stats.duplicate_groups, stats.messages_affected, stats.rows_to_delete,
    )

    singletons, emptied = find_unsafe_chunk_deletes(conn, rows)
    if singletons or emptied:
        raise ReconciliationSafetyError(
            f"Refusing to delete: {len(singletons)} groups have a single row, "
            f"{len(emptied)} groups would lose every row"
        )

    if dry_run or not rows:
        return stats

    stats.rows_deleted = delete_chunk_rows(conn, rows)
    logger.info("Deleted %d duplicate chunk rows", stats.rows_deleted)
    return stats
