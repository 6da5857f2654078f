"""Core data models for the newsletter pipeline."""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Naive UTC timestamp; everything stored is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()[:16]


def make_chunk_id(source_id: str, chunk_index: int, text: str) -> str:
    """Deterministic chunk id, so a retried ingestion yields the same ids."""
    raw = f"{source_id}:{chunk_index}:{text}"
    return hashlib.sha256(raw.encode()).hexdigest()[:32]


@dataclass
class RawMessage:
    """One newsletter issue as received."""

    source_id: str
    sender_email: str
    subject: str
    body_text: str = ""
    body_html: str = ""
    sender_name: str = ""
    sent_at: datetime | None = None
    ingested_at: datetime = field(default_factory=utcnow)
    source: str = ""
    content_hash: str = ""
    normalized_text: str = ""
    id: int | None = None

    def __post_init__(self):
        self.sender_email = self.sender_email.strip().lower()
        if not self.content_hash:
            self.content_hash = content_hash(self.body_text or self.body_html)

    @property
    def publisher_id(self) -> str:
        return self.sender_email


@dataclass
class Chunk:
    """A bounded passage of a message's normalized text."""

    source_id: str
    chunk_index: int
    text: str
    char_start: int = 0
    char_end: int = 0
    overlap_chars: int = 0
    is_junk: bool = False
    created_at: datetime = field(default_factory=utcnow)
    chunk_id: str = ""
    id: int | None = None

    def __post_init__(self):
        if not self.chunk_id:
            self.chunk_id = make_chunk_id(self.source_id, self.chunk_index, self.text)

    @property
    def body(self) -> str:
        """Chunk text without the overlap carried over from the previous chunk."""
        return self.text[self.overlap_chars:]


@dataclass
class Embedding:
    chunk_id: str
    model: str
    vector: list[float]
    created_at: datetime = field(default_factory=utcnow)

    @property
    def dim(self) -> int:
        return len(self.vector)


@dataclass
class Publisher:
    """A newsletter publication, identified by its sender address."""

    publisher_id: str
    display_name: str = ""
    platform: str = "custom"
    citation_count: int = 0
    subscriber_estimate: int | None = None
    recommendation_count: int = 0
    topic_relevance: float | None = None
    last_seen: datetime | None = None
    message_count: int = 0
    signals: dict[str, float] = field(default_factory=dict)
    quality_score: float | None = None
    score_version: int | None = None
    scored_at: datetime | None = None
    override_score: float | None = None
    override_signals: dict[str, float] = field(default_factory=dict)
    override_reason: str | None = None
    override_author: str | None = None
    override_at: datetime | None = None

    @property
    def has_override(self) -> bool:
        return self.override_score is not None or bool(self.override_signals)


@dataclass
class SearchHit:
    """A chunk returned by hybrid retrieval, with its provenance."""

    chunk_id: str
    source_id: str
    text: str
    subject: str = ""
    publisher: str = ""
    sent_at: datetime | None = None
    vector_score: float = 0.0
    keyword_score: float = 0.0
    combined_score: float = 0.0


@dataclass
class ExtractedFact:
    fact: str
    chunk_id: str


@dataclass
class Citation:
    chunk_id: str
    label: str
    publisher: str = ""
    subject: str = ""
    sent_at: datetime | None = None


@dataclass
class SearchResult:
    """Answer to one query, with the evidence it was built from."""

    query: str
    answer: str
    citations: list[Citation] = field(default_factory=list)
    chunks_used: int = 0
    facts_used: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


@dataclass
class MessageInsight:
    """Structured per-message extraction from the map phase."""

    source_id: str
    publisher: str = ""
    subject: str = ""
    themes: list[str] = field(default_factory=list)
    entities: list[str] = field(default_factory=list)
    sentiment: str = "neutral"  # positive, negative, neutral
    summary: str = ""
    key_claims: list[str] = field(default_factory=list)
    snippet: str = ""
    failed: bool = False
    cluster_id: int | None = None

    def text_for_grouping(self) -> str:
        parts = [self.subject, " ".join(self.themes), self.summary]
        return " ".join(p for p in parts if p)


@dataclass
class BatchReport:
    """Aggregate outcome of a batch of isolated per-item calls."""

    processed: int = 0
    succeeded: int = 0
    timeouts: int = 0
    errors: int = 0
    malformed: int = 0

    @property
    def failures(self) -> int:
        return self.timeouts + self.errors + self.malformed


@dataclass
class SourceCitation:
    source_id: str
    publisher: str
    subject: str
    sent_at: str | None = None
    snippet: str = ""
    sentiment: str = "neutral"


@dataclass
class SentimentBreakdown:
    positive: int = 0
    negative: int = 0
    neutral: int = 0
    total: int = 0
    model_consensus: str = ""
    calculated_consensus: str = "Mixed"
    override_applied: bool = False


@dataclass
class NarrativeCluster:
    title: str
    synthesis: str
    consensus_sentiment: str
    sentiment_breakdown: SentimentBreakdown
    source_ids: list[str] = field(default_factory=list)
    sources: list[SourceCitation] = field(default_factory=list)
    counter_point: str | None = None
    grounding: str = "weak"
    source_count: int = 0


@dataclass
class SerendipityItem:
    title: str
    insight: str
    source_id: str
    publisher: str


@dataclass
class BriefingContent:
    executive_summary: list[str] = field(default_factory=list)
    narrative_clusters: list[NarrativeCluster] = field(default_factory=list)
    serendipity_corner: list[SerendipityItem] = field(default_factory=list)
    radar_signals: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BriefingContent:
        clusters = []
        for c in data.get("narrative_clusters", []):
            c = dict(c)
            c["sentiment_breakdown"] = SentimentBreakdown(**c.get("sentiment_breakdown", {}))
            c["sources"] = [SourceCitation(**s) for s in c.get("sources", [])]
            clusters.append(NarrativeCluster(**c))
        return cls(
            executive_summary=list(data.get("executive_summary", [])),
            narrative_clusters=clusters,
            serendipity_corner=[
                SerendipityItem(**s) for s in data.get("serendipity_corner", [])
            ],
            radar_signals=list(data.get("radar_signals", [])),
        )


@dataclass
class Briefing:
    """An immutable briefing snapshot."""

    briefing_id: str
    generated_at: datetime
    window_start: datetime
    window_end: datetime
    email_count: int
    content: BriefingContent
    model_version: str = ""


@dataclass
class BriefingSummary:
    """Archive listing entry."""

    briefing_id: str
    generated_at: datetime
    email_count: int
    preview: str = ""


@dataclass
class ReconcileStats:
    duplicate_groups: int = 0
    messages_affected: int = 0
    rows_to_delete: int = 0
    rows_deleted: int = 0
    dry_run: bool = True


@dataclass
class PipelineRun:
    """Record of a single ingestion run."""

    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    status: str = "running"  # running, completed, failed
    messages_fetched: int = 0
    messages_stored: int = 0
    duplicates_skipped: int = 0
    chunks_created: int = 0
    junk_chunks: int = 0
    chunks_embedded: int = 0
    failures: int = 0
    llm_tokens_used: int = 0
    llm_cost_usd: float = 0.0
    id: int | None = None
