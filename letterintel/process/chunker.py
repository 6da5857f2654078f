"""Split normalized message text into overlapping, bounded chunks.

Paragraphs are merged greedily up to the target size. Oversized units are
re-split on sentence boundaries, then on whitespace. Pieces under the minimum
size are folded into a neighbour, so nothing is dropped. Each chunk after the
first is prefixed with the tail of the previous one.

Offsets (char_start, char_end) always refer to the chunk body, without the
overlap prefix. Bodies are disjoint, in order, and together cover every
non-whitespace character of the text.
"""

from __future__ import annotations

import re

from letterintel.models import Chunk

PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")
SENTENCE_RE = re.compile(r"[^.!?]*(?:[.!?]+|$)")
OVERLAP_SEPARATOR = "\n\n"

Span = tuple[int, int]


def _trim(text: str, start: int, end: int) -> Span | None:
    """Shrink a span to exclude surrounding whitespace."""
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    return (start, end) if start < end else None


def _paragraph_spans(text: str) -> list[Span]:
    spans = []
    pos = 0
    for match in PARAGRAPH_BREAK_RE.finditer(text):
        span = _trim(text, pos, match.start())
        if span:
            spans.append(span)
        pos = match.end()
    span = _trim(text, pos, len(text))
    if span:
        spans.append(span)
    return spans


def _merge_greedy(spans: list[Span], limit: int) -> list[Span]:
    """Join consecutive spans while the combined extent stays within limit."""
    merged: list[Span] = []
    current: Span | None = None
    for span in spans:
        if current is None:
            current = span
        elif span[1] - current[0] <= limit:
            current = (current[0], span[1])
        else:
            merged.append(current)
            current = span
    if current is not None:
        merged.append(current)
    return merged


def _split_on_whitespace(text: str, span: Span, limit: int) -> list[Span]:
    pieces = []
    start, end = span
    while end - start > limit:
        cut = text.rfind(" ", start, start + limit)
        if cut <= start:
            cut = start + limit
        piece = _trim(text, start, cut)
        if piece:
            pieces.append(piece)
        start = cut
    piece = _trim(text, start, end)
    if piece:
        pieces.append(piece)
    return pieces


def _split_oversized(text: str, span: Span, target_size: int) -> list[Span]:
    """Re-split one unit by sentences; overlong sentences by whitespace."""
    start, end = span
    sentences: list[Span] = []
    for match in SENTENCE_RE.finditer(text, start, end):
        sentence = _trim(text, match.start(), match.end())
        if not sentence:
            continue
        if sentence[1] - sentence[0] > target_size * 1.5:
            sentences.extend(_split_on_whitespace(text, sentence, target_size))
        else:
            sentences.append(sentence)
    return _merge_greedy(sentences, target_size)


def _fold_short(spans: list[Span], min_size: int) -> list[Span]:
    """Merge spans under min_size into the previous span (or the next, if first)."""
    spans = list(spans)
    i = 0
    while len(spans) > 1 and i < len(spans):
        start, end = spans[i]
        if end - start >= min_size:
            i += 1
            continue
        if i > 0:
            spans[i - 1] = (spans[i - 1][0], end)
            del spans[i]
        else:
            spans[1] = (start, spans[1][1])
            del spans[0]
    return spans


def split_spans(text: str, target_size: int = 800, min_size: int = 200) -> list[Span]:
    """Return the (start, end) body spans chunking would produce for text."""
    whole = _trim(text, 0, len(text))
    if whole is None:
        return []
    if whole[1] - whole[0] < min_size:
        return [whole]

    units = _merge_greedy(_paragraph_spans(text), target_size)
    spans: list[Span] = []
    for unit in units:
        if unit[1] - unit[0] > target_size * 1.5:
            spans.extend(_split_oversized(text, unit, target_size))
        else:
            spans.append(unit)
    return _fold_short(spans, min_size)


def chunk_text(
    source_id: str,
    text: str,
    target_size: int = 800,
    min_size: int = 200,
    overlap: int = 100,
) -> list[Chunk]:
    """Chunk a message's normalized text."""
    chunks = []
    previous_body = ""
    for index, (start, end) in enumerate(split_spans(text, target_size, min_size)):
        body = text[start:end]
        prefix = ""
        if index > 0 and overlap > 0:
            prefix = previous_body[-overlap:] + OVERLAP_SEPARATOR
        chunks.append(Chunk(
            source_id=source_id,
            chunk_index=index,
            text=prefix + body,
            char_start=start,
            char_end=end,
            overlap_chars=len(prefix),
        ))
        previous_body = body
    return chunks
