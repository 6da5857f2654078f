"""Briefing assembly, storage and retrieval.

A briefing covers a time window of ingested messages: each message is read
once for insights, related messages are grouped into narrative clusters, and
the registered analyzers add the serendipity corner and radar signals. Every
call to generate() stores a new immutable snapshot.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timedelta

from letterintel.analyze import ANALYZERS
from letterintel.analyze.base import AnalysisContext
from letterintel.analyze.insights import InsightExtractor
from letterintel.analyze.narratives import NarrativeBuilder
from letterintel.config import get_briefing_config
from letterintel.db import (
    get_briefing,
    get_latest_briefing,
    get_messages_in_window,
    get_publishers_by_ids,
    insert_briefing,
    list_briefings,
)
from letterintel.errors import MalformedResponseError, NotFoundError
from letterintel.llm.base import BaseLLMProvider
from letterintel.llm.parsing import parse_json_response
from letterintel.llm.prompts import EXECUTIVE_SUMMARY, SYSTEM_ANALYST
from letterintel.models import (
    Briefing,
    BriefingContent,
    BriefingSummary,
    NarrativeCluster,
    SerendipityItem,
    utcnow,
)
from letterintel.process.cluster import ClusterProcessor
from letterintel.process.embeddings import BaseEmbedder

logger = logging.getLogger(__name__)

EMPTY_WINDOW_SUMMARY = "No new newsletters were processed in this time window."
LATEST = "latest"


class BriefingAssembler:
    """Generates and serves briefings."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: dict,
        provider: BaseLLMProvider,
        embedder: BaseEmbedder,
        insight_provider: BaseLLMProvider | None = None,
        narrative_provider: BaseLLMProvider | None = None,
    ):
        self.conn = conn
        self.config = config
        self.provider = provider
        self.settings = get_briefing_config(config)
        self.insight_extractor = InsightExtractor(insight_provider or provider, config)
        self.narrative_builder = NarrativeBuilder(narrative_provider or provider, config)
        self.cluster_processor = ClusterProcessor(config, embedder)

    def resolve_window(
        self, window_hours: float | None, now: datetime
    ) -> tuple[datetime, datetime]:
        """Explicit hours, else since the previous briefing, else the fallback."""
        if window_hours:
            return now - timedelta(hours=window_hours), now
        latest = get_latest_briefing(self.conn)
        if latest is not None and latest.window_end < now:
            return latest.window_end, now
        return now - timedelta(hours=self.settings["fallback_hours"]), now

    async def generate(
        self, window_hours: float | None = None, now: datetime | None = None
    ) -> Briefing:
        now = now or utcnow()
        start, end = self.resolve_window(window_hours, now)
        messages = get_messages_in_window(self.conn, start, end, self.settings["max_messages"])
        logger.info(
            "Generating briefing for %s .. %s (%d messages)",
            start.isoformat(), end.isoformat(), len(messages),
        )

        if messages:
            content = await self._assemble(messages, start, end)
        else:
            content = BriefingContent(executive_summary=[EMPTY_WINDOW_SUMMARY])

        briefing = Briefing(
            briefing_id=str(uuid.uuid4()),
            generated_at=now,
            window_start=start,
            window_end=end,
            email_count=len(messages),
            content=content,
            model_version=self.provider.default_model,
        )
        insert_briefing(self.conn, briefing)
        logger.info(
            "Stored briefing %s: %d clusters, %d serendipity, %d radar",
            briefing.briefing_id,
            len(content.narrative_clusters),
            len(content.serendipity_corner),
            len(content.radar_signals),
        )
        return briefing

    async def _assemble(self, messages, start: datetime, end: datetime) -> BriefingContent:
        insights, report = await self.insight_extractor.extract_all(messages)
        if report.failures:
            logger.warning(
                "%d of %d messages fell back to default insights",
                report.failures, report.processed,
            )

        insights = await self.cluster_processor.process(insights)
        groups = self.cluster_processor.build_groups(insights)
        by_id = {m.source_id: m for m in messages}
        clusters = await self.narrative_builder.build(groups, by_id)

        previous = get_messages_in_window(
            self.conn, start - (end - start), start, self.settings["max_messages"],
        )
        context = AnalysisContext(
            messages=messages,
            insights=insights,
            clusters=clusters,
            publishers=get_publishers_by_ids(self.conn, [m.sender_email for m in messages]),
            previous_messages=previous,
        )

        results: dict[str, list] = {}
        for name, analyzer_cls in ANALYZERS.items():
            analyzer = analyzer_cls(self.config)
            try:
                results[name] = await analyzer.analyze(context)
            except Exception:
                logger.exception("Analyzer '%s' failed", name)
                results[name] = []

        serendipity = results.get("serendipity", [])
        summary = await self._executive_summary(clusters, serendipity, messages)
        return BriefingContent(
            executive_summary=summary,
            narrative_clusters=clusters,
            serendipity_corner=serendipity,
            radar_signals=results.get("radar", []),
        )

    async def _executive_summary(
        self,
        clusters: list[NarrativeCluster],
        serendipity: list[SerendipityItem],
        messages,
    ) -> list[str]:
        fallback = [c.title for c in clusters][:3] or [m.subject for m in messages][:3]
        narratives = "\n".join(
            f"- {c.title} ({c.source_count} sources, {c.consensus_sentiment}): {c.synthesis}"
            for c in clusters
        ) or "(none)"
        others = "\n".join(f"- {s.title}: {s.insight}" for s in serendipity) or "(none)"

        try:
            response = await self.provider.complete(
                EXECUTIVE_SUMMARY.format(narratives=narratives, others=others),
                system=SYSTEM_ANALYST,
                temperature=0.2,
                max_tokens=600,
                json_mode=True,
            )
            data = parse_json_response(response.text)
        except MalformedResponseError as exc:
            logger.warning("Executive summary unparseable, using titles: %s", exc)
            return fallback
        except Exception as exc:
            logger.warning("Executive summary failed, using titles: %s", exc)
            return fallback

        items = data.get("executive_summary") if isinstance(data, dict) else data
        if not isinstance(items, list):
            return fallback
        bullets = [str(b).strip() for b in items if str(b).strip()][:3]
        return bullets or fallback

    def get_briefing(self, briefing_id: str) -> Briefing:
        """Fetch a stored briefing by id, or the newest with 'latest'."""
        return load_briefing(self.conn, briefing_id)

    def list_archive(self, limit: int = 30) -> list[BriefingSummary]:
        return list_archive(self.conn, limit)


def load_briefing(conn: sqlite3.Connection, briefing_id: str) -> Briefing:
    """Stored briefing by id or 'latest'. Reading needs no model provider."""
    if briefing_id == LATEST:
        briefing = get_latest_briefing(conn)
    else:
        briefing = get_briefing(conn, briefing_id)
    if briefing is None:
        raise NotFoundError(f"Briefing not found: {briefing_id}")
    return briefing


def list_archive(conn: sqlite3.Connection, limit: int = 30) -> list[BriefingSummary]:
    """Newest-first summaries with the first executive bullet as preview."""
    return [
        BriefingSummary(
            briefing_id=b.briefing_id,
            generated_at=b.generated_at,
            email_count=b.email_count,
            preview=b.content.executive_summary[0] if b.content.executive_summary else "",
        )
        for b in list_briefings(conn, limit)
    ]
