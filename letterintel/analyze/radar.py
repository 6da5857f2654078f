"""Radar analyzer: themes whose mention count jumps versus the prior window."""

from __future__ import annotations

import logging

from letterintel.analyze import register_analyzer
from letterintel.analyze.base import AnalysisContext, BaseAnalyzer
from letterintel.models import RawMessage

logger = logging.getLogger(__name__)


def _searchable(message: RawMessage) -> str:
    return f"{message.subject}\n{message.normalized_text or message.body_text}".lower()


def count_mentions(term: str, messages: list[RawMessage]) -> int:
    """Number of messages mentioning the term at least once."""
    term = term.lower()
    return sum(1 for m in messages if term in _searchable(m))


@register_analyzer("radar")
class RadarAnalyzer(BaseAnalyzer):
    """Emerging themes by mention velocity."""

    @property
    def name(self) -> str:
        return "radar"

    async def analyze(self, context: AnalysisContext) -> list[str]:
        cfg = self.config.get("analyze", {}).get("radar", {})
        min_mentions = cfg.get("min_mentions", 2)
        min_ratio = cfg.get("min_velocity", 2.0)
        limit = self.config.get("briefing", {}).get("max_radar_signals", 5)

        candidates: dict[str, str] = {}
        for insight in context.insights:
            for theme in insight.themes:
                key = theme.strip().lower()
                if len(key) >= 3:
                    candidates.setdefault(key, theme.strip())

        scored = []
        for key, theme in candidates.items():
            current = count_mentions(key, context.messages)
            previous = count_mentions(key, context.previous_messages)
            if current < min_mentions or current < min_ratio * max(previous, 1):
                continue
            scored.append((current - previous, current, theme, previous))

        scored.sort(key=lambda row: (-row[0], -row[1], row[2].lower()))
        signals = [
            f"{theme}: {current} newsletters this window, up from {previous}"
            for _, current, theme, previous in scored[:limit]
        ]
        logger.info("Radar found %d rising themes", len(signals))
        return signals
