"""Tests for message chunking."""

from __future__ import annotations

import re

from letterintel.process.chunker import OVERLAP_SEPARATOR, chunk_text, split_spans


def _paragraph(label: str, length: int) -> str:
    words = []
    size = 0
    i = 0
    while size < length - 10:
        word = f"{label}{i}"
        words.append(word)
        size += len(word) + 1
        i += 1
    return " ".join(words) + "."


def _squash(text: str) -> str:
    return re.sub(r"\s+", "", text)


def _assert_covers(text: str, chunks) -> None:
    previous_end = 0
    for chunk in chunks:
        assert chunk.body == text[chunk.char_start:chunk.char_end]
        assert chunk.char_start >= previous_end
        previous_end = chunk.char_end
    assert "".join(_squash(c.body) for c in chunks) == _squash(text)


def test_paragraphs_merge_up_to_target():
    text = "\n\n".join(_paragraph(f"p{i}w", 300) for i in range(6))
    chunks = chunk_text("msg-1", text)

    assert len(chunks) == 3
    assert all(len(c.body) <= 800 for c in chunks)
    _assert_covers(text, chunks)


def test_overlap_prefix():
    text = "\n\n".join(_paragraph(f"p{i}w", 300) for i in range(6))
    chunks = chunk_text("msg-1", text, overlap=100)

    assert chunks[0].overlap_chars == 0
    assert chunks[0].text == chunks[0].body
    for prev, cur in zip(chunks, chunks[1:]):
        prefix = prev.body[-100:] + OVERLAP_SEPARATOR
        assert cur.text.startswith(prefix)
        assert cur.overlap_chars == len(prefix)
        assert cur.text[cur.overlap_chars:] == cur.body


def test_no_overlap():
    text = "\n\n".join(_paragraph(f"p{i}w", 300) for i in range(6))
    chunks = chunk_text("msg-1", text, overlap=0)
    assert all(c.overlap_chars == 0 and c.text == c.body for c in chunks)


def test_oversized_paragraph_splits_on_sentences():
    sentences = [_paragraph(f"s{i}w", 100) for i in range(30)]
    text = " ".join(sentences)
    chunks = chunk_text("msg-1", text)

    assert len(chunks) > 1
    for chunk in chunks:
        assert chunk.body.endswith(".")
        assert len(chunk.body) <= 800 + 200
    _assert_covers(text, chunks)


def test_run_on_text_splits_on_whitespace():
    text = " ".join(f"token{i}" for i in range(600))
    chunks = chunk_text("msg-1", text)

    assert len(chunks) > 1
    assert all(len(c.body) <= 1000 for c in chunks)
    _assert_covers(text, chunks)


def test_short_trailing_piece_is_folded_not_dropped():
    text = _paragraph("a", 700) + "\n\n" + _paragraph("b", 150)
    chunks = chunk_text("msg-1", text)

    assert len(chunks) == 1
    assert chunks[0].body == text


def test_no_piece_below_minimum_when_several():
    text = "\n\n".join(
        _paragraph(f"p{i}w", size) for i, size in enumerate([120, 500, 90, 700, 60])
    )
    chunks = chunk_text("msg-1", text)

    assert len(chunks) > 1
    assert all(len(c.body) >= 200 for c in chunks)
    _assert_covers(text, chunks)


def test_short_input_is_one_chunk():
    chunks = chunk_text("msg-1", "  Just a quick note.  ")
    assert len(chunks) == 1
    assert chunks[0].body == "Just a quick note."
    assert chunks[0].chunk_index == 0


def test_empty_input():
    assert chunk_text("msg-1", "") == []
    assert split_spans("   \n\n  ") == []


def test_chunk_ids_are_deterministic():
    text = "\n\n".join(_paragraph(f"p{i}w", 300) for i in range(6))
    first = [c.chunk_id for c in chunk_text("msg-1", text)]
    second = [c.chunk_id for c in chunk_text("msg-1", text)]
    other = [c.chunk_id for c in chunk_text("msg-2", text)]

    assert first == second
    assert len(set(first)) == len(first)
    assert not set(first) & set(other)
