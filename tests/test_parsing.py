"""Tests for lenient JSON parsing of model output."""

from __future__ import annotations

import pytest

from letterintel.errors import MalformedResponseError
from letterintel.llm.parsing import extract_json, parse_json_response, repair_truncated_json


def test_plain_json():
    assert parse_json_response('{"a": 1}') == {"a": 1}


def test_fenced_json():
    text = 'Here you go:\n```json\n{"facts": [{"fact": "x", "chunk_id": "c1"}]}\n```'
    assert parse_json_response(text)["facts"][0]["chunk_id"] == "c1"


def test_json_with_surrounding_prose():
    text = 'Sure! {"title": "Export rules"} Hope that helps.'
    assert parse_json_response(text) == {"title": "Export rules"}


def test_smart_quotes():
    text = "{\u201ctitle\u201d: \u201cChips\u201d}"
    assert parse_json_response(text) == {"title": "Chips"}


def test_truncated_array_is_repaired():
    text = '{"facts": [{"fact": "a", "chunk_id": "c1"}, {"fact": "b", "chunk_'
    data = parse_json_response(text)
    assert data == {"facts": [{"fact": "a", "chunk_id": "c1"}]}


def test_repair_ignores_brackets_in_strings():
    text = '{"items": [{"text": "a [b] {c}"}, {"text": "tru'
    assert repair_truncated_json(text) == '{"items": [{"text": "a [b] {c}"}]}'


def test_unterminated_fence():
    text = '```json\n{"themes": ["ai", "chips"]}'
    assert parse_json_response(text) == {"themes": ["ai", "chips"]}


def test_garbage_raises():
    with pytest.raises(MalformedResponseError):
        parse_json_response("I could not find anything relevant.")


def test_extract_json_returns_none_for_lists_and_garbage():
    assert extract_json("[1, 2]") is None
    assert extract_json("nope") is None
    assert extract_json('{"ok": true}') == {"ok": True}
