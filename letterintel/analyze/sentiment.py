"""Deterministic sentiment consensus for narrative clusters.

The per-source counts are the ground truth. A model's consensus claim is
recorded alongside, and when it disagrees the calculated value is what gets
shown, with override_applied set.
"""

from __future__ import annotations

from letterintel.models import SentimentBreakdown

SENTIMENT_LABELS = ("positive", "negative", "neutral")
# Calculated consensus never comes out Neutral; a model may still claim it
CONSENSUS_LABELS = ("Positive", "Negative", "Neutral", "Mixed")


def normalize_sentiment(value: str | None) -> str | None:
    """Map a label to positive/negative/neutral, or None if unrecognized."""
    if not value:
        return None
    value = str(value).strip().lower()
    return value if value in SENTIMENT_LABELS else None


def normalize_consensus(value: str | None) -> str:
    if not value:
        return ""
    value = str(value).strip().capitalize()
    return value if value in CONSENSUS_LABELS else ""


def calculate_consensus(positive: int, negative: int, neutral: int) -> str:
    """Positive or Negative when that bucket beats both others, else Mixed."""
    if positive > negative and positive > neutral:
        return "Positive"
    if negative > positive and negative > neutral:
        return "Negative"
    return "Mixed"


def compute_sentiment_breakdown(
    sentiments: list[str], model_claim: str | None = None
) -> SentimentBreakdown:
    labels = [normalize_sentiment(s) or "neutral" for s in sentiments]
    positive = labels.count("positive")
    negative = labels.count("negative")
    neutral = labels.count("neutral")
    calculated = calculate_consensus(positive, negative, neutral)
    claimed = normalize_consensus(model_claim)

    return SentimentBreakdown(
        positive=positive,
        negative=negative,
        neutral=neutral,
        total=len(labels),
        model_consensus=claimed,
        calculated_consensus=calculated,
        override_applied=bool(claimed) and claimed != calculated,
    )


def grounding_strength(source_count: int) -> str:
    if source_count >= 4:
        return "strong"
    if source_count >= 2:
        return "moderate"
    return "weak"
