"""Format briefings and answers as plain text for the terminal."""

from __future__ import annotations

import textwrap

from letterintel.models import Briefing, BriefingSummary, SearchResult

SENTIMENT_BADGE = {
    "Positive": "▲ POSITIVE",
    "Negative": "▼ NEGATIVE",
    "Mixed": "◆ MIXED",
}

GROUNDING_BADGE = {
    "strong": "strong grounding",
    "moderate": "moderate grounding",
    "weak": "weak grounding",
}

WIDTH = 78


def _wrap(text: str, indent: str = "") -> list[str]:
    return textwrap.wrap(text, width=WIDTH, initial_indent=indent, subsequent_indent=indent) or [indent]


def format_briefing(briefing: Briefing) -> str:
    """Render a stored briefing."""
    content = briefing.content
    lines = [
        f"NEWSLETTER BRIEFING {briefing.generated_at:%b %d, %Y %H:%M} UTC",
        f"Window: {briefing.window_start:%Y-%m-%d %H:%M} to {briefing.window_end:%Y-%m-%d %H:%M}"
        f" ({briefing.email_count} newsletters)",
        f"ID: {briefing.briefing_id}",
        "=" * WIDTH,
        "",
        "EXECUTIVE SUMMARY",
    ]
    for bullet in content.executive_summary:
        lines.extend(_wrap(f"- {bullet}"))
    lines.append("")

    if content.narrative_clusters:
        lines.append("NARRATIVES")
        lines.append("-" * WIDTH)
        for i, cluster in enumerate(content.narrative_clusters, 1):
            badge = SENTIMENT_BADGE.get(cluster.consensus_sentiment, cluster.consensus_sentiment)
            b = cluster.sentiment_breakdown
            lines.append(f"{i}. {cluster.title}")
            lines.append(
                f"   {badge} | {cluster.source_count} sources, "
                f"{GROUNDING_BADGE.get(cluster.grounding, cluster.grounding)} | "
                f"+{b.positive} -{b.negative} ={b.neutral}"
            )
            if b.override_applied:
                lines.append(
                    f"   (model said {b.model_consensus}; source counts say "
                    f"{b.calculated_consensus})"
                )
            lines.extend(_wrap(cluster.synthesis, "   "))
            if cluster.counter_point:
                lines.extend(_wrap(f"Counterpoint: {cluster.counter_point}", "   "))
            for source in cluster.sources:
                lines.append(f"   * {source.publisher}: {source.subject} [{source.sentiment}]")
            lines.append("")

    if content.serendipity_corner:
        lines.append("SERENDIPITY CORNER")
        lines.append("-" * WIDTH)
        for item in content.serendipity_corner:
            lines.append(f"* {item.title} ({item.publisher})")
            lines.extend(_wrap(item.insight, "  "))
        lines.append("")

    if content.radar_signals:
        lines.append("RADAR")
        lines.append("-" * WIDTH)
        for signal in content.radar_signals:
            lines.append(f"* {signal}")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


def format_archive(entries: list[BriefingSummary]) -> str:
    if not entries:
        return "No briefings yet.\n"
    lines = [f"{'Generated':<17} {'Emails':>6}  {'ID':<36}  Summary", "-" * WIDTH]
    for entry in entries:
        preview = entry.preview if len(entry.preview) <= 60 else entry.preview[:57] + "..."
        lines.append(
            f"{entry.generated_at:%Y-%m-%d %H:%M} {entry.email_count:>6}  "
            f"{entry.briefing_id:<36}  {preview}"
        )
    return "\n".join(lines) + "\n"


def format_search_result(result: SearchResult) -> str:
    lines = []
    for paragraph in result.answer.split("\n\n"):
        lines.extend(_wrap(paragraph.strip()))
        lines.append("")
    if result.citations:
        lines.append("Sources:")
        for i, citation in enumerate(result.citations, 1):
            lines.append(f"  [{i}] {citation.label}")
    lines.append("")
    lines.append(
        f"{result.chunks_used} chunks searched, {result.facts_used} facts used, "
        f"{result.input_tokens + result.output_tokens} tokens, ${result.cost_usd:.4f}"
    )
    return "\n".join(lines) + "\n"
