"""Chunk junk filtering and per-publisher quality scoring.

A publisher's score is a weighted sum of six signals in [0, 1], scaled to
0-100. Manual overrides take precedence: a per-signal override replaces that
signal before combining, and a full-score override replaces the result.
Recomputation never clears overrides.
"""

from __future__ import annotations

import logging
import math
import re
import sqlite3
from datetime import datetime

from letterintel.config import get_junk_min_length, get_quality_weights
from letterintel.db import (
    get_all_chunks,
    get_citable_chunks,
    get_publisher,
    list_publishers,
    refresh_publisher_activity,
    save_publisher_score,
    set_citation_counts,
    set_junk_flags,
    set_publisher_override,
)
from letterintel.errors import NotFoundError
from letterintel.models import Publisher, utcnow

logger = logging.getLogger(__name__)

SIGNALS = (
    "citation",
    "subscriber",
    "recommendation",
    "topic_relevance",
    "platform",
    "freshness",
)

JUNK_RE = re.compile(
    r"(unsubscribe|view in browser|manage preferences|update your preferences"
    r"|upgrade to paid|subscribe here|sponsored by|in partnership with)",
    re.IGNORECASE,
)

PLATFORM_SCORES = {
    "substack": 0.9,
    "ghost": 0.85,
    "beehiiv": 0.8,
    "buttondown": 0.8,
    "mailchimp": 0.75,
    "convertkit": 0.75,
    "custom": 0.7,
    "revue": 0.65,
    "tinyletter": 0.6,
}
DEFAULT_PLATFORM_SCORE = 0.7

# (max days since last activity, score)
FRESHNESS_STEPS = ((7, 1.0), (30, 0.9), (90, 0.7), (180, 0.5), (365, 0.3))


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# --- Junk filter ---


def is_junk(text: str, min_length: int = 300) -> bool:
    """Short passages and footer boilerplate carry no retrievable content."""
    return len(text.strip()) < min_length or bool(JUNK_RE.search(text))


def flag_junk_chunks(conn: sqlite3.Connection, config: dict) -> int:
    """Re-evaluate the junk flag on every stored chunk. Returns flags changed."""
    min_length = get_junk_min_length(config)
    changes = []
    for chunk in get_all_chunks(conn):
        junk = is_junk(chunk.body, min_length)
        if junk != chunk.is_junk:
            changes.append((chunk.chunk_id, junk))
    if changes:
        set_junk_flags(conn, changes)
    logger.info("Junk flags changed on %d chunks", len(changes))
    return len(changes)



# --- Citations ---

URL_HOST_RE = re.compile(r"https?://(?:www\.)?([a-z0-9][a-z0-9.-]*[a-z0-9])", re.IGNORECASE)
# Mail hosts shared by unrelated senders cannot identify a publisher
SHARED_MAIL_DOMAINS = frozenset({
    "gmail.com", "googlemail.com", "outlook.com", "hotmail.com", "yahoo.com",
    "icloud.com", "proton.me", "protonmail.com", "substack.com", "beehiiv.com",
    "ghost.io", "mailchimp.com", "convertkit.com", "buttondown.email",
})
SENDER_SUBDOMAINS = ("mail.", "email.", "news.", "newsletter.")
MIN_CITABLE_NAME = 4


def publisher_domain(publisher_id: str) -> str | None:
    """The web domain a publisher's sender address points at, if any."""
    domain = publisher_id.rpartition("@")[2].lower().strip()
    for prefix in SENDER_SUBDOMAINS:
        if domain.startswith(prefix) and domain.count(".") > 1:
            domain = domain[len(prefix):]
            break
    if not domain or "." not in domain or domain in SHARED_MAIL_DOMAINS:
        return None
    return domain


def _name_pattern(name: str) -> re.Pattern | None:
    name = name.strip()
    if len(name) < MIN_CITABLE_NAME:
        return None
    return re.compile(
        r"\b(?:via|from)\s+(?:the\s+)?" + re.escape(name) + r"(?!\w)", re.IGNORECASE,
    )


def count_citations(
    publishers: list[Publisher], chunks: list[tuple[str, str]]
) -> dict[str, int]:
    """Count, per publisher, the distinct other publishers that cite it.

    A chunk cites a publisher when it links to the publisher's domain or
    credits it with "via <name>" / "from <name>". Self-citations are ignored.
    """
    domains: dict[str, list[str]] = {}
    for publisher in publishers:
        domain = publisher_domain(publisher.publisher_id)
        if domain:
            domains.setdefault(domain, []).append(publisher.publisher_id)
    # A domain several senders share is ambiguous
    domain_owner = {d: ids[0] for d, ids in domains.items() if len(ids) == 1}
    patterns = {}
    for publisher in publishers:
        pattern = _name_pattern(publisher.display_name or "")
        if pattern is not None:
            patterns[publisher.publisher_id] = pattern

    citing: dict[str, set[str]] = {p.publisher_id: set() for p in publishers}
    for sender, text in chunks:
        cited = set()
        for host in URL_HOST_RE.findall(text):
            host = host.lower()
            for domain, owner in domain_owner.items():
                if host == domain or host.endswith("." + domain):
                    cited.add(owner)
        for publisher_id, pattern in patterns.items():
            if pattern.search(text):
                cited.add(publisher_id)
        for publisher_id in cited:
            if publisher_id != sender:
                citing[publisher_id].add(sender)

    return {publisher_id: len(senders) for publisher_id, senders in citing.items()}


def refresh_citation_counts(conn: sqlite3.Connection) -> dict[str, int]:
    """Recount citations across the archive and store them."""
    counts = count_citations(list_publishers(conn), get_citable_chunks(conn))
    set_citation_counts(conn, counts)
    logger.info(
        "Counted citations for %d publishers (%d cited at least once)",
        len(counts), sum(1 for n in counts.values() if n),
    )
    return counts


# --- Signals ---


def citation_signal(count: int | None) -> float:
    if not count or count <= 0:
        return 0.0
    return min(math.log10(count + 1) / 2, 1.0)


def subscriber_signal(estimate: int | None) -> float:
    if not estimate or estimate <= 0:
        return 0.5
    return _clamp(math.log10(estimate / 1000) / 2, 0.0, 1.0)


def recommendation_signal(count: int | None) -> float:
    if not count or count <= 0:
        return 0.4
    if count == 1:
        return 0.6
    if count == 2:
        return 0.8
    return 1.0


def topic_relevance_signal(relevance: float | None) -> float:
    if relevance is None:
        return 0.5
    return _clamp(float(relevance), 0.0, 1.0)


def platform_signal(platform: str | None) -> float:
    return PLATFORM_SCORES.get((platform or "").lower(), DEFAULT_PLATFORM_SCORE)


def freshness_signal(last_seen: datetime | None, now: datetime) -> float:
    if last_seen is None:
        return 0.5
    days = (now - last_seen).total_seconds() / 86400
    for max_days, score in FRESHNESS_STEPS:
        if days <= max_days:
            return score
    return 0.1


def compute_signals(publisher: Publisher, now: datetime | None = None) -> dict[str, float]:
    now = now or utcnow()
    return {
        "citation": citation_signal(publisher.citation_count),
        "subscriber": subscriber_signal(publisher.subscriber_estimate),
        "recommendation": recommendation_signal(publisher.recommendation_count),
        "topic_relevance": topic_relevance_signal(publisher.topic_relevance),
        "platform": platform_signal(publisher.platform),
        "freshness": freshness_signal(publisher.last_seen, now),
    }


def score_publisher(
    publisher: Publisher,
    weights: dict[str, float],
    now: datetime | None = None,
) -> tuple[float, dict[str, float]]:
    """Return (score 0-100, effective signals) with overrides applied."""
    signals = compute_signals(publisher, now)
    for name, value in publisher.override_signals.items():
        if name in signals:
            signals[name] = _clamp(float(value), 0.0, 1.0)

    if publisher.override_score is not None:
        return _clamp(float(publisher.override_score), 0.0, 100.0), signals

    composite = sum(weights[name] * signals[name] for name in SIGNALS)
    return round(_clamp(composite * 100, 0.0, 100.0), 2), signals


def recompute_publisher_scores(
    conn: sqlite3.Connection, config: dict, now: datetime | None = None
) -> int:
    """Refresh activity and citation counts from the archive, then rescore.

    Manual overrides are read, never cleared. Returns the number scored.
    """
    weights = get_quality_weights(config)
    version = config.get("quality", {}).get("version", 1)
    now = now or utcnow()
    refresh_publisher_activity(conn)
    refresh_citation_counts(conn)

    publishers = list_publishers(conn)
    for publisher in publishers:
        score, signals = score_publisher(publisher, weights, now)
        save_publisher_score(conn, publisher.publisher_id, signals, score, version, now)
        logger.debug("Scored %s: %.1f", publisher.publisher_id, score)

    overridden = sum(1 for p in publishers if p.has_override)
    logger.info(
        "Scored %d publishers (%d with manual overrides)", len(publishers), overridden,
    )
    return len(publishers)


def set_manual_override(
    conn: sqlite3.Connection,
    publisher_id: str,
    reason: str,
    author: str,
    score: float | None = None,
    signals: dict[str, float] | None = None,
    config: dict | None = None,
) -> Publisher:
    """Record a manual override and rescore the publisher immediately.

    A score outside 0-100, a signal value outside 0-1, or an unknown signal
    name is rejected with ValueError.
    """
    signals = dict(signals or {})
    if score is None and not signals:
        raise ValueError("An override needs a score or at least one signal value")
    if score is not None and not 0 <= score <= 100:
        raise ValueError(f"Override score must be between 0 and 100, got {score}")
    unknown = set(signals) - set(SIGNALS)
    if unknown:
        raise ValueError(
            f"Unknown signals: {', '.join(sorted(unknown))} (valid: {', '.join(SIGNALS)})"
        )
    for name, value in signals.items():
        if not 0 <= value <= 1:
            raise ValueError(f"Override for signal '{name}' must be between 0 and 1, got {value}")
    if not reason or not author:
        raise ValueError("An override needs a reason and an author")

    publisher = get_publisher(conn, publisher_id)
    if publisher is None:
        raise NotFoundError(f"Publisher not found: {publisher_id}")

    now = utcnow()
    set_publisher_override(conn, publisher_id, score, signals, reason, author, now)
    logger.info("Manual override set on %s by %s: %s", publisher_id, author, reason)

    publisher = get_publisher(conn, publisher_id)
    weights = get_quality_weights(config or {})
    new_score, effective = score_publisher(publisher, weights, now)
    version = (config or {}).get("quality", {}).get("version", 1)
    save_publisher_score(conn, publisher_id, effective, new_score, version, now)
    return get_publisher(conn, publisher_id)


def clear_manual_override(conn: sqlite3.Connection, publisher_id: str, author: str) -> None:
    if get_publisher(conn, publisher_id) is None:
        raise NotFoundError(f"Publisher not found: {publisher_id}")
    set_publisher_override(conn, publisher_id, None, {}, None, None, None)
    logger.info("Manual override cleared on %s by %s", publisher_id, author)
