"""Body selection, HTML-to-text conversion and boilerplate cleanup."""

from __future__ import annotations

import html
import logging
import re

import trafilatura

logger = logging.getLogger(__name__)

URL_RE = re.compile(r"https?://\S+")
SENTENCE_STRUCTURE_RE = re.compile(r"[.!?]\s+[A-Z]")

# Whole lines dropped from newsletter bodies
BOILERPLATE_LINE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^\s*view (this email |this )?(in|on) (your )?(browser|web)",
        r"^\s*(click here to )?unsubscribe\b",
        r"\bunsubscribe\b.*\b(here|link|below|anytime)\b",
        r"^\s*(manage|update) (your )?(email )?(preferences|subscription)",
        r"^\s*you('re| are) receiving this (email|because)",
        r"^\s*(forwarded this email|was this (email )?forwarded to you)",
        r"^\s*(sponsored by|presented by|brought to you by|in partnership with)\b",
        r"^\s*(share|follow us) on (twitter|x|linkedin|facebook)",
        r"^\s*copyright\s+(\u00a9|\(c\))?\s*\d{4}",
        r"^\s*[-=_*~\u2014\u2013]{3,}\s*$",
    )
]
LONG_URL_RE = re.compile(r"https?://\S{60,}")
TRACKING_URL_RE = re.compile(
    r"https?://\S*(utm_[a-z]+=|/click\?|/track/|list-manage\.com|mailchi\.mp|substack\.com/redirect)\S*",
    re.IGNORECASE,
)


def content_weight(text: str) -> float:
    """Score how much readable prose a body holds.

    Length, cut to a tenth when URLs make up over half the text, boosted by
    a fifth when it reads like sentences.
    """
    if not text:
        return 0.0
    weight = float(len(text))
    url_chars = sum(len(m) for m in URL_RE.findall(text))
    if url_chars > len(text) * 0.5:
        weight *= 0.1
    if SENTENCE_STRUCTURE_RE.search(text):
        weight *= 1.2
    return weight


def strip_html(raw: str) -> str:
    """Regex tag stripping, keeping block boundaries as paragraph breaks."""
    text = re.sub(r"<(style|script|noscript)[^>]*>.*?</\1>", " ", raw, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r"<!--.*?-->", " ", text, flags=re.DOTALL)
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(
        r"</(p|div|h[1-6]|li|tr|table|blockquote|section)>", "\n\n", text, flags=re.IGNORECASE,
    )
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text)
    text = re.sub(r"[ \t\xa0]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def html_to_text(raw_html: str) -> str:
    """Main-content extraction, falling back to tag stripping."""
    if not raw_html or not raw_html.strip():
        return ""
    extracted = trafilatura.extract(
        raw_html,
        include_comments=False,
        include_tables=True,
        favor_recall=True,
    )
    if extracted and extracted.strip():
        return extracted
    logger.debug("trafilatura found no main content, stripping tags")
    return strip_html(raw_html)


def select_body(body_text: str, body_html: str) -> str:
    """Prefer plaintext; take the HTML body only when it carries more prose."""
    text = (body_text or "").strip()
    if not body_html:
        return text
    from_html = html_to_text(body_html)
    if content_weight(from_html) > content_weight(text):
        return from_html
    return text


def clean_content(text: str) -> str:
    """Drop boilerplate lines and tracking links, keep paragraph breaks."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    kept = []
    for line in text.split("\n"):
        if any(p.search(line) for p in BOILERPLATE_LINE_PATTERNS):
            continue
        line = TRACKING_URL_RE.sub("", line)
        line = LONG_URL_RE.sub("", line)
        line = re.sub(r"[ \t\xa0]+", " ", line).strip()
        kept.append(line)
    cleaned = "\n".join(kept)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def normalize_message(body_text: str, body_html: str) -> str:
    return clean_content(select_body(body_text, body_html))
