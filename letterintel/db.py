"""SQLite database schema and query helpers.

Every helper takes an open connection. All user-supplied values go through
parameters; rows are converted to dataclasses at this boundary.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path

import numpy as np

from letterintel.errors import (
    PayloadTooLargeError,
    ReconciliationSafetyError,
    TransientExternalError,
)
from letterintel.models import (
    Briefing,
    BriefingContent,
    Chunk,
    Embedding,
    PipelineRun,
    Publisher,
    RawMessage,
    SearchHit,
)

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS raw_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id TEXT UNIQUE NOT NULL,
    sender_email TEXT NOT NULL,
    sender_name TEXT NOT NULL DEFAULT '',
    subject TEXT NOT NULL DEFAULT '',
    sent_at TEXT,
    ingested_at TEXT NOT NULL,
    body_text TEXT NOT NULL DEFAULT '',
    body_html TEXT NOT NULL DEFAULT '',
    normalized_text TEXT NOT NULL DEFAULT '',
    content_hash TEXT NOT NULL,
    source TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS chunks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chunk_id TEXT UNIQUE NOT NULL,
    source_id TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    char_start INTEGER NOT NULL,
    char_end INTEGER NOT NULL,
    overlap_chars INTEGER NOT NULL DEFAULT 0,
    text TEXT NOT NULL,
    is_junk INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS embeddings (
    chunk_id TEXT NOT NULL,
    model TEXT NOT NULL,
    dim INTEGER NOT NULL,
    vector BLOB NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (chunk_id, model)
);

CREATE TABLE IF NOT EXISTS embedding_index (
    chunk_id TEXT NOT NULL,
    model TEXT NOT NULL,
    unit_vector BLOB NOT NULL,
    PRIMARY KEY (chunk_id, model)
);

CREATE TABLE IF NOT EXISTS vector_indexes (
    model TEXT PRIMARY KEY,
    status TEXT NOT NULL DEFAULT 'pending',
    requested_at TEXT NOT NULL,
    started_at TEXT,
    finished_at TEXT,
    indexed_rows INTEGER NOT NULL DEFAULT 0,
    total_rows INTEGER NOT NULL DEFAULT 0,
    error TEXT
);

CREATE TABLE IF NOT EXISTS publishers (
    publisher_id TEXT PRIMARY KEY,
    display_name TEXT NOT NULL DEFAULT '',
    platform TEXT NOT NULL DEFAULT 'custom',
    citation_count INTEGER NOT NULL DEFAULT 0,
    subscriber_estimate INTEGER,
    recommendation_count INTEGER NOT NULL DEFAULT 0,
    topic_relevance REAL,
    last_seen TEXT,
    message_count INTEGER NOT NULL DEFAULT 0,
    signals TEXT NOT NULL DEFAULT '{}',
    quality_score REAL,
    score_version INTEGER,
    scored_at TEXT,
    override_score REAL,
    override_signals TEXT NOT NULL DEFAULT '{}',
    override_reason TEXT,
    override_author TEXT,
    override_at TEXT
);

CREATE TABLE IF NOT EXISTS briefings (
    briefing_id TEXT PRIMARY KEY,
    generated_at TEXT NOT NULL,
    window_start TEXT NOT NULL,
    window_end TEXT NOT NULL,
    email_count INTEGER NOT NULL DEFAULT 0,
    content_json TEXT NOT NULL,
    model_version TEXT NOT NULL DEFAULT ''
);

CREATE TRIGGER IF NOT EXISTS briefings_immutable
BEFORE UPDATE ON briefings
BEGIN
    SELECT RAISE(ABORT, 'briefings are write-once');
END;

CREATE TABLE IF NOT EXISTS pipeline_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    status TEXT NOT NULL DEFAULT 'running',
    messages_fetched INTEGER NOT NULL DEFAULT 0,
    messages_stored INTEGER NOT NULL DEFAULT 0,
    duplicates_skipped INTEGER NOT NULL DEFAULT 0,
    chunks_created INTEGER NOT NULL DEFAULT 0,
    junk_chunks INTEGER NOT NULL DEFAULT 0,
    chunks_embedded INTEGER NOT NULL DEFAULT 0,
    failures INTEGER NOT NULL DEFAULT 0,
    llm_tokens_used INTEGER NOT NULL DEFAULT 0,
    llm_cost_usd REAL NOT NULL DEFAULT 0.0
);

CREATE INDEX IF NOT EXISTS idx_raw_messages_ingested_at ON raw_messages(ingested_at);
CREATE INDEX IF NOT EXISTS idx_raw_messages_sender ON raw_messages(sender_email);
CREATE INDEX IF NOT EXISTS idx_chunks_source ON chunks(source_id, chunk_index);
CREATE INDEX IF NOT EXISTS idx_embeddings_model ON embeddings(model);
CREATE INDEX IF NOT EXISTS idx_briefings_generated_at ON briefings(generated_at);
"""


def get_connection(db_path: str) -> sqlite3.Connection:
    """Get a SQLite connection with WAL mode enabled."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    conn.create_function("casefold", 1, _casefold, deterministic=True)
    return conn


def _casefold(value):
    # SQLite LOWER() and LIKE only fold ASCII
    return value.casefold() if isinstance(value, str) else value


def init_db(db_path: str) -> None:
    """Create all tables and set schema version."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        conn.commit()
    finally:
        conn.close()


def _dt_str(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.isoformat()


def _parse_dt(s: str | None) -> datetime | None:
    if s is None:
        return None
    return datetime.fromisoformat(s)


def _executemany_write(conn: sqlite3.Connection, sql: str, rows: list[tuple]) -> int:
    """Run a batched write in one transaction, returning rows changed.

    A locked database surfaces as TransientExternalError so callers retry.
    """
    try:
        with conn:
            before = conn.total_changes
            conn.executemany(sql, rows)
            return conn.total_changes - before
    except sqlite3.OperationalError as exc:
        if "locked" in str(exc) or "busy" in str(exc):
            raise TransientExternalError(str(exc)) from exc
        raise


def _check_payload(size: int, max_payload_bytes: int | None, what: str) -> None:
    if max_payload_bytes is not None and size > max_payload_bytes:
        raise PayloadTooLargeError(
            f"{what} payload of {size} bytes exceeds {max_payload_bytes}",
            size=size,
            limit=max_payload_bytes,
        )


def _vector_blob(vector: list[float]) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _blob_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


# --- Message helpers ---


def insert_message(conn: sqlite3.Connection, message: RawMessage) -> bool:
    """Insert a message. Returns False when its source_id is already stored."""
    cur = conn.execute(
        """INSERT OR IGNORE INTO raw_messages
           (source_id, sender_email, sender_name, subject, sent_at, ingested_at,
            body_text, body_html, normalized_text, content_hash, source)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            message.source_id,
            message.sender_email,
            message.sender_name,
            message.subject,
            _dt_str(message.sent_at),
            _dt_str(message.ingested_at),
            message.body_text,
            message.body_html,
            message.normalized_text,
            message.content_hash,
            message.source,
        ),
    )
    conn.commit()
    if cur.rowcount == 0:
        return False
    message.id = cur.lastrowid
    return True


def get_message(conn: sqlite3.Connection, source_id: str) -> RawMessage | None:
    row = conn.execute(
        "SELECT * FROM raw_messages WHERE source_id = ?", (source_id,)
    ).fetchone()
    return _row_to_message(row) if row else None


def get_existing_source_ids(conn: sqlite3.Connection, source_ids: list[str]) -> set[str]:
    """Return which of the given source_ids are already stored."""
    found: set[str] = set()
    for i in range(0, len(source_ids), 500):
        batch = source_ids[i:i + 500]
        placeholders = ",".join("?" * len(batch))
        rows = conn.execute(
            f"SELECT source_id FROM raw_messages WHERE source_id IN ({placeholders})",
            batch,
        ).fetchall()
        found.update(row["source_id"] for row in rows)
    return found


def get_messages_in_window(
    conn: sqlite3.Connection,
    start: datetime,
    end: datetime,
    limit: int = 200,
) -> list[RawMessage]:
    """Messages ingested in [start, end), oldest first."""
    rows = conn.execute(
        """SELECT * FROM raw_messages
           WHERE ingested_at >= ? AND ingested_at < ?
           ORDER BY ingested_at, id
           LIMIT ?""",
        (_dt_str(start), _dt_str(end), limit),
    ).fetchall()
    return [_row_to_message(row) for row in rows]


def _row_to_message(row: sqlite3.Row) -> RawMessage:
    return RawMessage(
        id=row["id"],
        source_id=row["source_id"],
        sender_email=row["sender_email"],
        sender_name=row["sender_name"],
        subject=row["subject"],
        sent_at=_parse_dt(row["sent_at"]),
        ingested_at=_parse_dt(row["ingested_at"]),
        body_text=row["body_text"],
        body_html=row["body_html"],
        normalized_text=row["normalized_text"],
        content_hash=row["content_hash"],
        source=row["source"],
    )


# --- Chunk helpers ---


def insert_chunks(
    conn: sqlite3.Connection,
    chunks: list[Chunk],
    max_payload_bytes: int | None = None,
) -> int:
    """Insert chunks, ignoring ids already present. Returns rows inserted."""
    if not chunks:
        return 0
    _check_payload(sum(len(c.text.encode()) for c in chunks), max_payload_bytes, "chunk")
    return _executemany_write(
        conn,
        """INSERT OR IGNORE INTO chunks
           (chunk_id, source_id, chunk_index, char_start, char_end,
            overlap_chars, text, is_junk, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        [
            (
                c.chunk_id, c.source_id, c.chunk_index, c.char_start, c.char_end,
                c.overlap_chars, c.text, int(c.is_junk), _dt_str(c.created_at),
            )
            for c in chunks
        ],
    )


def get_chunks_for_message(conn: sqlite3.Connection, source_id: str) -> list[Chunk]:
    rows = conn.execute(
        "SELECT * FROM chunks WHERE source_id = ? ORDER BY chunk_index, id",
        (source_id,),
    ).fetchall()
    return [_row_to_chunk(row) for row in rows]


def get_all_chunks(conn: sqlite3.Connection) -> list[Chunk]:
    rows = conn.execute("SELECT * FROM chunks ORDER BY id").fetchall()
    return [_row_to_chunk(row) for row in rows]


def set_junk_flags(conn: sqlite3.Connection, flags: list[tuple[str, bool]]) -> int:
    """Update is_junk for (chunk_id, is_junk) pairs."""
    return _executemany_write(
        conn,
        "UPDATE chunks SET is_junk = ? WHERE chunk_id = ?",
        [(int(junk), chunk_id) for chunk_id, junk in flags],
    )


def get_chunks_pending_embedding(
    conn: sqlite3.Connection, model: str, limit: int
) -> list[Chunk]:
    """Non-junk chunks that have no embedding for this model yet."""
    rows = conn.execute(
        """SELECT c.* FROM chunks c
           LEFT JOIN embeddings e ON e.chunk_id = c.chunk_id AND e.model = ?
           WHERE c.is_junk = 0 AND e.chunk_id IS NULL
           ORDER BY c.id
           LIMIT ?""",
        (model, limit),
    ).fetchall()
    return [_row_to_chunk(row) for row in rows]


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        chunk_id=row["chunk_id"],
        source_id=row["source_id"],
        chunk_index=row["chunk_index"],
        char_start=row["char_start"],
        char_end=row["char_end"],
        overlap_chars=row["overlap_chars"],
        text=row["text"],
        is_junk=bool(row["is_junk"]),
        created_at=_parse_dt(row["created_at"]),
    )


def get_duplicate_chunk_rows(conn: sqlite3.Connection) -> list[dict]:
    """Rows that lose within their (source_id, chunk_index) group.

    The newest row by created_at (then id) is kept; everything ranked after
    it is returned along with the size of its group.
    """
    rows = conn.execute(
        """WITH ranked AS (
               SELECT id, chunk_id, source_id, chunk_index,
                      ROW_NUMBER() OVER (
                          PARTITION BY source_id, chunk_index
                          ORDER BY created_at DESC, id DESC
                      ) AS rn,
                      COUNT(*) OVER (
                          PARTITION BY source_id, chunk_index
                      ) AS group_size
               FROM chunks
           )
           SELECT id, chunk_id, source_id, chunk_index, rn, group_size
           FROM ranked WHERE rn > 1
           ORDER BY source_id, chunk_index, rn"""
    ).fetchall()
    return [dict(row) for row in rows]


def find_unsafe_chunk_deletes(
    conn: sqlite3.Connection, rows: list[dict]
) -> tuple[list[tuple[str, int]], list[tuple[str, int]]]:
    """Groups a delete set must not touch, counted against the live table.

    Returns (singletons, emptied): groups whose only live row would be
    deleted, and groups where every live row is in the delete set.
    """
    doomed: dict[tuple[str, int], set[int]] = {}
    for row in rows:
        doomed.setdefault((row["source_id"], row["chunk_index"]), set()).add(row["id"])

    singletons, emptied = [], []
    for key, ids in doomed.items():
        live = {
            r["id"] for r in conn.execute(
                "SELECT id FROM chunks WHERE source_id = ? AND chunk_index = ?", key
            )
        }
        if len(live) == 1 and live & ids:
            singletons.append(key)
        if live and live <= ids:
            emptied.append(key)
    return singletons, emptied


def delete_chunk_rows(conn: sqlite3.Connection, rows: list[dict]) -> int:
    """Delete chunk rows and their embeddings in a single transaction.

    The safety check runs again inside the transaction; a violation raises
    ReconciliationSafetyError and nothing is deleted.
    """
    with conn:
        if not conn.in_transaction:
            conn.execute("BEGIN IMMEDIATE")
        singletons, emptied = find_unsafe_chunk_deletes(conn, rows)
        if singletons or emptied:
            raise ReconciliationSafetyError(
                f"Refusing to delete: {len(singletons)} groups have a single row, "
                f"{len(emptied)} groups would lose every row"
            )
        before = conn.total_changes
        conn.executemany("DELETE FROM chunks WHERE id = ?", [(r["id"],) for r in rows])
        deleted = conn.total_changes - before
        orphan_ids = [(r["chunk_id"],) for r in rows]
        conn.executemany("DELETE FROM embeddings WHERE chunk_id = ?", orphan_ids)
        conn.executemany("DELETE FROM embedding_index WHERE chunk_id = ?", orphan_ids)
    return deleted


# --- Embedding helpers ---


def get_embedding_dim(conn: sqlite3.Connection, model: str) -> int | None:
    row = conn.execute(
        "SELECT dim FROM embeddings WHERE model = ? LIMIT 1", (model,)
    ).fetchone()
    return row["dim"] if row else None


def insert_embeddings(
    conn: sqlite3.Connection,
    embeddings: list[Embedding],
    max_payload_bytes: int | None = None,
) -> int:
    """Insert embeddings, never overwriting. Dimension is fixed per model."""
    if not embeddings:
        return 0
    _check_payload(sum(e.dim * 4 for e in embeddings), max_payload_bytes, "embedding")

    dims: dict[str, int] = {}
    for emb in embeddings:
        expected = dims.get(emb.model)
        if expected is None:
            expected = get_embedding_dim(conn, emb.model) or emb.dim
            dims[emb.model] = expected
        if emb.dim != expected:
            raise ValueError(
                f"Embedding for chunk {emb.chunk_id} has dim {emb.dim}, "
                f"model {emb.model} uses {expected}"
            )

    return _executemany_write(
        conn,
        """INSERT OR IGNORE INTO embeddings (chunk_id, model, dim, vector, created_at)
           VALUES (?, ?, ?, ?, ?)""",
        [
            (e.chunk_id, e.model, e.dim, _vector_blob(e.vector), _dt_str(e.created_at))
            for e in embeddings
        ],
    )


def count_embeddings(conn: sqlite3.Connection, model: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM embeddings WHERE model = ?", (model,)
    ).fetchone()
    return row["n"]


def get_embeddings_page(
    conn: sqlite3.Connection, model: str, after_rowid: int, limit: int
) -> list[sqlite3.Row]:
    return conn.execute(
        """SELECT rowid, chunk_id, vector FROM embeddings
           WHERE model = ? AND rowid > ?
           ORDER BY rowid LIMIT ?""",
        (model, after_rowid, limit),
    ).fetchall()


def vector_search(
    conn: sqlite3.Connection,
    query_vector: list[float],
    model: str,
    limit: int,
) -> list[tuple[str, float]]:
    """Cosine similarity of the query against non-junk chunk embeddings.

    Uses the unit vectors from embedding_index where a build has produced
    them, and the raw vectors otherwise.
    """
    rows = conn.execute(
        """SELECT e.chunk_id, i.unit_vector, e.vector
           FROM embeddings e
           JOIN chunks c ON c.chunk_id = e.chunk_id
           LEFT JOIN embedding_index i ON i.chunk_id = e.chunk_id AND i.model = e.model
           WHERE e.model = ? AND c.is_junk = 0""",
        (model,),
    ).fetchall()
    if not rows:
        return []

    query = np.asarray(query_vector, dtype=np.float32)
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return []

    matrix = np.vstack([
        _blob_vector(row["unit_vector"] if row["unit_vector"] is not None else row["vector"])
        for row in rows
    ])
    if matrix.shape[1] != query.shape[0]:
        raise ValueError(
            f"Query vector has dim {query.shape[0]}, stored vectors have {matrix.shape[1]}"
        )
    norms = np.linalg.norm(matrix, axis=1)
    norms[norms == 0] = 1.0
    sims = (matrix @ query) / (norms * query_norm)

    order = np.argsort(-sims, kind="stable")[:limit]
    return [(rows[i]["chunk_id"], float(sims[i])) for i in order]


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def keyword_search(
    conn: sqlite3.Connection, query: str, limit: int
) -> list[tuple[str, float]]:
    """Case-insensitive lexical match over chunk text and message subject.

    Score is the number of occurrences of the query in the chunk text, plus
    one when the subject matches.
    """
    term = query.strip().casefold()
    if not term:
        return []
    pattern = f"%{_escape_like(term)}%"
    rows = conn.execute(
        """SELECT c.chunk_id,
                  (LENGTH(casefold(c.text)) - LENGTH(REPLACE(casefold(c.text), ?, '')))
                      / LENGTH(?)
                  + CASE WHEN casefold(m.subject) LIKE ? ESCAPE '\\' THEN 1 ELSE 0 END
                      AS occurrences
           FROM chunks c
           JOIN raw_messages m ON m.source_id = c.source_id
           WHERE c.is_junk = 0
             AND (casefold(c.text) LIKE ? ESCAPE '\\' OR casefold(m.subject) LIKE ? ESCAPE '\\')
           ORDER BY occurrences DESC, c.chunk_id
           LIMIT ?""",
        (term, term, pattern, pattern, pattern, limit),
    ).fetchall()
    return [(row["chunk_id"], float(row["occurrences"])) for row in rows]


def get_hit_details(conn: sqlite3.Connection, chunk_ids: list[str]) -> dict[str, SearchHit]:
    """Load text and provenance for chunk ids."""
    if not chunk_ids:
        return {}
    placeholders = ",".join("?" * len(chunk_ids))
    rows = conn.execute(
        f"""SELECT c.chunk_id, c.source_id, c.text, m.subject, m.sent_at,
                   COALESCE(NULLIF(p.display_name, ''), NULLIF(m.sender_name, ''),
                            m.sender_email) AS publisher
            FROM chunks c
            JOIN raw_messages m ON m.source_id = c.source_id
            LEFT JOIN publishers p ON p.publisher_id = m.sender_email
            WHERE c.chunk_id IN ({placeholders})""",
        chunk_ids,
    ).fetchall()
    return {
        row["chunk_id"]: SearchHit(
            chunk_id=row["chunk_id"],
            source_id=row["source_id"],
            text=row["text"],
            subject=row["subject"],
            publisher=row["publisher"],
            sent_at=_parse_dt(row["sent_at"]),
        )
        for row in rows
    }


# --- Vector index helpers ---


def request_index_build(conn: sqlite3.Connection, model: str, requested_at: datetime) -> None:
    conn.execute(
        """INSERT INTO vector_indexes (model, status, requested_at)
           VALUES (?, 'pending', ?)
           ON CONFLICT(model) DO UPDATE SET
               status = 'pending', requested_at = excluded.requested_at,
               started_at = NULL, finished_at = NULL, error = NULL""",
        (model, _dt_str(requested_at)),
    )
    conn.commit()


def set_index_status(
    conn: sqlite3.Connection,
    model: str,
    status: str,
    *,
    indexed_rows: int | None = None,
    total_rows: int | None = None,
    started_at: datetime | None = None,
    finished_at: datetime | None = None,
    error: str | None = None,
) -> None:
    conn.execute(
        """UPDATE vector_indexes SET
               status = ?,
               indexed_rows = COALESCE(?, indexed_rows),
               total_rows = COALESCE(?, total_rows),
               started_at = COALESCE(?, started_at),
               finished_at = COALESCE(?, finished_at),
               error = ?
           WHERE model = ?""",
        (
            status, indexed_rows, total_rows,
            _dt_str(started_at), _dt_str(finished_at), error, model,
        ),
    )
    conn.commit()


def get_index_status(conn: sqlite3.Connection, model: str) -> dict | None:
    row = conn.execute(
        "SELECT * FROM vector_indexes WHERE model = ?", (model,)
    ).fetchone()
    return dict(row) if row else None


def insert_index_rows(conn: sqlite3.Connection, rows: list[tuple[str, str, bytes]]) -> int:
    return _executemany_write(
        conn,
        """INSERT OR REPLACE INTO embedding_index (chunk_id, model, unit_vector)
           VALUES (?, ?, ?)""",
        rows,
    )


def count_index_rows(conn: sqlite3.Connection, model: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM embedding_index WHERE model = ?", (model,)
    ).fetchone()
    return row["n"]


# --- Publisher helpers ---


PUBLISHER_ATTRIBUTES = (
    "display_name",
    "platform",
    "subscriber_estimate",
    "recommendation_count",
    "topic_relevance",
)


def upsert_publisher_seen(
    conn: sqlite3.Connection,
    publisher_id: str,
    display_name: str,
    seen_at: datetime | None,
) -> None:
    """Create the publisher on first sight and track its latest activity."""
    conn.execute(
        """INSERT INTO publishers (publisher_id, display_name, last_seen, message_count)
           VALUES (?, ?, ?, 1)
           ON CONFLICT(publisher_id) DO UPDATE SET
               display_name = CASE WHEN publishers.display_name = ''
                                   THEN excluded.display_name
                                   ELSE publishers.display_name END,
               last_seen = CASE WHEN publishers.last_seen IS NULL
                                     OR excluded.last_seen > publishers.last_seen
                                THEN excluded.last_seen
                                ELSE publishers.last_seen END,
               message_count = publishers.message_count + 1""",
        (publisher_id, display_name or "", _dt_str(seen_at)),
    )
    conn.commit()


def refresh_publisher_activity(conn: sqlite3.Connection) -> int:
    """Rebuild last_seen and message_count from stored messages.

    Senders with no publisher row yet get one. Returns the number of
    publishers touched.
    """
    cur = conn.execute(
        """INSERT INTO publishers (publisher_id, display_name, last_seen, message_count)
           SELECT sender_email, COALESCE(MAX(sender_name), ''),
                  MAX(COALESCE(sent_at, ingested_at)), COUNT(*)
           FROM raw_messages
           WHERE true
           GROUP BY sender_email
           ON CONFLICT(publisher_id) DO UPDATE SET
               display_name = CASE WHEN publishers.display_name = ''
                                   THEN excluded.display_name
                                   ELSE publishers.display_name END,
               last_seen = excluded.last_seen,
               message_count = excluded.message_count"""
    )
    conn.commit()
    return cur.rowcount


def get_citable_chunks(conn: sqlite3.Connection) -> list[tuple[str, str]]:
    """(sender_email, text) for every non-junk chunk."""
    rows = conn.execute(
        """SELECT m.sender_email, c.text
           FROM chunks c
           JOIN raw_messages m ON m.source_id = c.source_id
           WHERE c.is_junk = 0
           ORDER BY c.id"""
    ).fetchall()
    return [(row["sender_email"], row["text"]) for row in rows]


def set_citation_counts(conn: sqlite3.Connection, counts: dict[str, int]) -> None:
    """Replace every publisher's citation_count; publishers not listed get 0."""
    with conn:
        conn.execute("UPDATE publishers SET citation_count = 0")
        conn.executemany(
            "UPDATE publishers SET citation_count = ? WHERE publisher_id = ?",
            [(count, publisher_id) for publisher_id, count in counts.items()],
        )


def update_publisher_attributes(conn: sqlite3.Connection, publisher_id: str, **fields) -> None:
    """Set externally sourced publisher attributes (platform, counts...)."""
    unknown = set(fields) - set(PUBLISHER_ATTRIBUTES)
    if unknown:
        raise ValueError(f"Unknown publisher attributes: {', '.join(sorted(unknown))}")
    if not fields:
        return
    assignments = ", ".join(f"{name} = ?" for name in fields)
    conn.execute(
        f"UPDATE publishers SET {assignments} WHERE publisher_id = ?",
        (*fields.values(), publisher_id),
    )
    conn.commit()


def save_publisher_score(
    conn: sqlite3.Connection,
    publisher_id: str,
    signals: dict[str, float],
    score: float,
    version: int,
    scored_at: datetime,
) -> None:
    conn.execute(
        """UPDATE publishers SET signals = ?, quality_score = ?, score_version = ?, scored_at = ?
           WHERE publisher_id = ?""",
        (json.dumps(signals), score, version, _dt_str(scored_at), publisher_id),
    )
    conn.commit()


def set_publisher_override(
    conn: sqlite3.Connection,
    publisher_id: str,
    score: float | None,
    signals: dict[str, float],
    reason: str,
    author: str,
    at: datetime,
) -> None:
    conn.execute(
        """UPDATE publishers SET override_score = ?, override_signals = ?,
               override_reason = ?, override_author = ?, override_at = ?
           WHERE publisher_id = ?""",
        (score, json.dumps(signals), reason, author, _dt_str(at), publisher_id),
    )
    conn.commit()


def get_publisher(conn: sqlite3.Connection, publisher_id: str) -> Publisher | None:
    row = conn.execute(
        "SELECT * FROM publishers WHERE publisher_id = ?", (publisher_id,)
    ).fetchone()
    return _row_to_publisher(row) if row else None


def list_publishers(conn: sqlite3.Connection) -> list[Publisher]:
    rows = conn.execute("SELECT * FROM publishers ORDER BY publisher_id").fetchall()
    return [_row_to_publisher(row) for row in rows]


def get_publishers_by_ids(
    conn: sqlite3.Connection, publisher_ids: list[str]
) -> dict[str, Publisher]:
    if not publisher_ids:
        return {}
    unique = sorted(set(publisher_ids))
    placeholders = ",".join("?" * len(unique))
    rows = conn.execute(
        f"SELECT * FROM publishers WHERE publisher_id IN ({placeholders})", unique
    ).fetchall()
    return {row["publisher_id"]: _row_to_publisher(row) for row in rows}


def _row_to_publisher(row: sqlite3.Row) -> Publisher:
    return Publisher(
        publisher_id=row["publisher_id"],
        display_name=row["display_name"],
        platform=row["platform"],
        citation_count=row["citation_count"],
        subscriber_estimate=row["subscriber_estimate"],
        recommendation_count=row["recommendation_count"],
        topic_relevance=row["topic_relevance"],
        last_seen=_parse_dt(row["last_seen"]),
        message_count=row["message_count"],
        signals=json.loads(row["signals"] or "{}"),
        quality_score=row["quality_score"],
        score_version=row["score_version"],
        scored_at=_parse_dt(row["scored_at"]),
        override_score=row["override_score"],
        override_signals=json.loads(row["override_signals"] or "{}"),
        override_reason=row["override_reason"],
        override_author=row["override_author"],
        override_at=_parse_dt(row["override_at"]),
    )


# --- Briefing helpers ---


def insert_briefing(conn: sqlite3.Connection, briefing: Briefing) -> None:
    """Store a briefing snapshot. Existing ids are never replaced."""
    conn.execute(
        """INSERT INTO briefings
           (briefing_id, generated_at, window_start, window_end,
            email_count, content_json, model_version)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            briefing.briefing_id,
            _dt_str(briefing.generated_at),
            _dt_str(briefing.window_start),
            _dt_str(briefing.window_end),
            briefing.email_count,
            json.dumps(briefing.content.to_dict()),
            briefing.model_version,
        ),
    )
    conn.commit()


def get_briefing(conn: sqlite3.Connection, briefing_id: str) -> Briefing | None:
    row = conn.execute(
        "SELECT * FROM briefings WHERE briefing_id = ?", (briefing_id,)
    ).fetchone()
    return _row_to_briefing(row) if row else None


def get_latest_briefing(conn: sqlite3.Connection) -> Briefing | None:
    row = conn.execute(
        "SELECT * FROM briefings ORDER BY generated_at DESC, rowid DESC LIMIT 1"
    ).fetchone()
    return _row_to_briefing(row) if row else None


def list_briefings(conn: sqlite3.Connection, limit: int = 30) -> list[Briefing]:
    rows = conn.execute(
        "SELECT * FROM briefings ORDER BY generated_at DESC, rowid DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [_row_to_briefing(row) for row in rows]


def _row_to_briefing(row: sqlite3.Row) -> Briefing:
    return Briefing(
        briefing_id=row["briefing_id"],
        generated_at=_parse_dt(row["generated_at"]),
        window_start=_parse_dt(row["window_start"]),
        window_end=_parse_dt(row["window_end"]),
        email_count=row["email_count"],
        content=BriefingContent.from_dict(json.loads(row["content_json"])),
        model_version=row["model_version"],
    )


# --- PipelineRun helpers ---


def insert_run(conn: sqlite3.Connection, run: PipelineRun) -> int:
    cur = conn.execute(
        "INSERT INTO pipeline_runs (started_at, status) VALUES (?, ?)",
        (_dt_str(run.started_at), run.status),
    )
    conn.commit()
    return cur.lastrowid


def finish_run(conn: sqlite3.Connection, run_id: int, run: PipelineRun) -> None:
    conn.execute(
        """UPDATE pipeline_runs SET
           finished_at = ?, status = ?, messages_fetched = ?,
           messages_stored = ?, duplicates_skipped = ?, chunks_created = ?,
           junk_chunks = ?, chunks_embedded = ?, failures = ?,
           llm_tokens_used = ?, llm_cost_usd = ?
           WHERE id = ?""",
        (
            _dt_str(run.finished_at),
            run.status,
            run.messages_fetched,
            run.messages_stored,
            run.duplicates_skipped,
            run.chunks_created,
            run.junk_chunks,
            run.chunks_embedded,
            run.failures,
            run.llm_tokens_used,
            run.llm_cost_usd,
            run_id,
        ),
    )
    conn.commit()


def get_recent_runs(conn: sqlite3.Connection, limit: int = 10) -> list[dict]:
    """Fetch recent pipeline runs for stats display."""
    rows = conn.execute(
        "SELECT * FROM pipeline_runs ORDER BY started_at DESC LIMIT ?", (limit,)
    ).fetchall()
    return [dict(row) for row in rows]


def get_corpus_stats(conn: sqlite3.Connection) -> dict[str, int]:
    """Row counts for the stats command."""
    row = conn.execute(
        """SELECT
               (SELECT COUNT(*) FROM raw_messages) AS messages,
               (SELECT COUNT(*) FROM chunks) AS chunks,
               (SELECT COUNT(*) FROM chunks WHERE is_junk = 1) AS junk_chunks,
               (SELECT COUNT(*) FROM embeddings) AS embeddings,
               (SELECT COUNT(*) FROM publishers) AS publishers,
               (SELECT COUNT(*) FROM briefings) AS briefings"""
    ).fetchone()
    return dict(row)
