"""Serendipity analyzer: notable items from sources outside every narrative."""

from __future__ import annotations

import logging

from letterintel.analyze import register_analyzer
from letterintel.analyze.base import AnalysisContext, BaseAnalyzer
from letterintel.models import MessageInsight, SerendipityItem

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = 50.0


@register_analyzer("serendipity")
class SerendipityAnalyzer(BaseAnalyzer):
    """Picks unclustered insights from the highest-quality publishers."""

    @property
    def name(self) -> str:
        return "serendipity"

    def _quality(
        self, insight: MessageInsight, senders: dict[str, str], context: AnalysisContext
    ) -> float:
        publisher = context.publishers.get(senders.get(insight.source_id, ""))
        if publisher is None or publisher.quality_score is None:
            return DEFAULT_QUALITY
        return publisher.quality_score

    async def analyze(self, context: AnalysisContext) -> list[SerendipityItem]:
        limit = self.config.get("briefing", {}).get("max_serendipity", 2)
        clustered = {sid for c in context.clusters for sid in c.source_ids}
        senders = {m.source_id: m.sender_email for m in context.messages}

        candidates = [
            i for i in context.insights
            if i.source_id not in clustered and not i.failed and (i.summary or i.key_claims)
        ]
        candidates.sort(
            key=lambda i: (-self._quality(i, senders, context), i.source_id),
        )

        items = []
        seen_publishers: set[str] = set()
        for insight in candidates:
            # One item per publisher
            if insight.publisher in seen_publishers:
                continue
            seen_publishers.add(insight.publisher)
            items.append(SerendipityItem(
                title=insight.themes[0] if insight.themes else insight.subject,
                insight=insight.key_claims[0] if insight.key_claims else insight.summary,
                source_id=insight.source_id,
                publisher=insight.publisher,
            ))
            if len(items) >= limit:
                break

        logger.info("Serendipity corner: %d items", len(items))
        return items
