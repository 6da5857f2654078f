"""Tests for body selection and boilerplate cleanup."""

from __future__ import annotations

from unittest.mock import patch

from letterintel.process.normalize import (
    clean_content,
    content_weight,
    normalize_message,
    select_body,
    strip_html,
)


def test_content_weight_empty():
    assert content_weight("") == 0.0


def test_content_weight_penalizes_link_dumps():
    links = " ".join(f"https://example.com/a/very/long/path/{i}" for i in range(10))
    assert content_weight(links) < len(links) * 0.2


def test_content_weight_boosts_sentences():
    prose = "Rates held steady. Markets shrugged it off."
    assert content_weight(prose) == len(prose) * 1.2


def test_strip_html_keeps_paragraphs():
    raw = "<html><style>p{}</style><p>First &amp; foremost.</p><p>Second<br>line</p></html>"
    text = strip_html(raw)
    assert "First & foremost." in text
    assert "\n\nSecond\nline" in text
    assert "p{}" not in text


def test_select_body_prefers_plaintext():
    text = "A plain body with enough words. It reads like prose."
    html = "<p>Short.</p>"
    assert select_body(text, html) == text


@patch("letterintel.process.normalize.trafilatura.extract", return_value=None)
def test_select_body_takes_richer_html(mock_extract):
    text = "https://example.com/view-online"
    html = (
        "<p>The central bank held rates. Analysts expected a cut.</p>"
        "<p>Bond markets rallied on the news. Yields fell sharply.</p>"
    )
    body = select_body(text, html)
    assert "central bank held rates" in body
    mock_extract.assert_called_once()


def test_clean_content_drops_boilerplate():
    text = (
        "View this email in your browser\n"
        "The real story starts here.\n"
        "Read more https://example.com/x?utm_source=newsletter\n"
        "-----\n"
        "Unsubscribe here\n"
        "Manage your preferences\n"
        "Copyright \u00a9 2025 Example Media"
    )
    cleaned = clean_content(text)
    assert cleaned == "The real story starts here.\nRead more"


def test_clean_content_collapses_blank_runs():
    assert clean_content("one\n\n\n\n\ntwo\r\nthree") == "one\n\ntwo\nthree"


def test_normalize_message_plaintext_only():
    body = "Hello readers.\n\nUnsubscribe anytime via the link below\n\nBye."
    assert normalize_message(body, "") == "Hello readers.\n\nBye."
