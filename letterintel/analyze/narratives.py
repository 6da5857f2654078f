"""Narrative labeling for grouped messages, with the sentiment override."""

from __future__ import annotations

import logging

from letterintel.analyze.sentiment import (
    compute_sentiment_breakdown,
    grounding_strength,
    normalize_sentiment,
)
from letterintel.errors import MalformedResponseError
from letterintel.llm.base import BaseLLMProvider
from letterintel.llm.parsing import parse_json_response
from letterintel.llm.prompts import LABEL_NARRATIVE, SYSTEM_ANALYST
from letterintel.models import MessageInsight, NarrativeCluster, RawMessage, SourceCitation

logger = logging.getLogger(__name__)


def _format_sources(group: list[MessageInsight]) -> str:
    blocks = []
    for insight in group:
        claims = "; ".join(insight.key_claims)
        blocks.append(
            f"[{insight.source_id}] {insight.publisher}: {insight.subject}\n"
            f"Summary: {insight.summary or insight.snippet}\n"
            f"Claims: {claims}"
        )
    return "\n\n".join(blocks)


class NarrativeBuilder:
    """Turns groups of related messages into narrative clusters."""

    def __init__(self, provider: BaseLLMProvider, config: dict):
        self.provider = provider
        self.min_sources = config.get("briefing", {}).get("min_cluster_sources", 2)

    async def _label(self, group: list[MessageInsight]) -> dict:
        prompt = LABEL_NARRATIVE.format(sources=_format_sources(group))
        try:
            response = await self.provider.complete(
                prompt, system=SYSTEM_ANALYST, temperature=0.2, max_tokens=1000, json_mode=True,
            )
            data = parse_json_response(response.text)
        except MalformedResponseError as exc:
            logger.warning("Narrative label unparseable: %s", exc)
            return {}
        except Exception as exc:
            logger.warning("Narrative labeling failed: %s", exc)
            return {}
        return data if isinstance(data, dict) else {}

    async def build_cluster(
        self, group: list[MessageInsight], messages: dict[str, RawMessage]
    ) -> NarrativeCluster:
        label = await self._label(group)
        model_labels = label.get("source_sentiments") or {}
        if not isinstance(model_labels, dict):
            model_labels = {}

        sources = []
        sentiments = []
        for insight in group:
            sentiment = insight.sentiment
            if insight.failed:
                sentiment = normalize_sentiment(model_labels.get(insight.source_id)) or sentiment
            sentiments.append(sentiment)
            message = messages.get(insight.source_id)
            sent_at = message.sent_at if message else None
            sources.append(SourceCitation(
                source_id=insight.source_id,
                publisher=insight.publisher,
                subject=insight.subject,
                sent_at=sent_at.isoformat() if sent_at else None,
                snippet=insight.snippet,
                sentiment=sentiment,
            ))

        breakdown = compute_sentiment_breakdown(sentiments, label.get("consensus_sentiment"))
        if breakdown.override_applied:
            logger.info(
                "Sentiment override: model said %s, counts say %s",
                breakdown.model_consensus, breakdown.calculated_consensus,
            )

        counter_point = label.get("counter_point")
        if not counter_point or str(counter_point).strip().lower() in ("null", "none"):
            counter_point = None

        return NarrativeCluster(
            title=str(label.get("title") or group[0].subject or "Untitled narrative").strip(),
            synthesis=str(
                label.get("synthesis") or " ".join(i.summary for i in group if i.summary)
            ).strip(),
            counter_point=counter_point,
            consensus_sentiment=breakdown.calculated_consensus,
            sentiment_breakdown=breakdown,
            source_ids=[i.source_id for i in group],
            sources=sources,
            grounding=grounding_strength(len(group)),
            source_count=len(group),
        )

    async def build(
        self, groups: list[list[MessageInsight]], messages: dict[str, RawMessage]
    ) -> list[NarrativeCluster]:
        clusters = []
        for group in groups:
            if len(group) < self.min_sources:
                continue
            clusters.append(await self.build_cluster(group, messages))
        logger.info("Built %d narrative clusters", len(clusters))
        return clusters
