"""Lenient JSON parsing for model output."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from letterintel.errors import MalformedResponseError

logger = logging.getLogger(__name__)


def _normalize_quotes(text: str) -> str:
    """Replace smart/curly quotes with straight quotes for JSON parsing."""
    return (
        text
        .replace("\u201c", '"')   # left double quote
        .replace("\u201d", '"')   # right double quote
        .replace("\u2018", "'")   # left single quote
        .replace("\u2019", "'")   # right single quote
        .replace("\u2033", '"')   # double prime
        .replace("\u2032", "'")   # prime
    )


def _try_parse(text: str) -> Any | None:
    """Try json.loads with and without quote normalization."""
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        pass
    try:
        return json.loads(_normalize_quotes(text))
    except (json.JSONDecodeError, ValueError):
        pass
    return None


def _strip_fences(text: str) -> str:
    fenced = re.search(r"```(?:json)?\s*\n?(.*?)\n?```", text, re.DOTALL)
    if fenced:
        return fenced.group(1)
    # Unterminated fence from a truncated response
    return re.sub(r"^\s*```(?:json)?\s*", "", text)


def repair_truncated_json(text: str) -> str:
    """Cut a truncated JSON document at its last complete object and close it.

    Brackets inside string literals are ignored when balancing.
    """
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return text
    body = text[min(starts):]
    last = body.rfind("}")
    if last == -1:
        return body
    body = body[:last + 1]

    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in body:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "[{":
            stack.append(ch)
        elif ch in "]}" and stack:
            stack.pop()

    closers = "".join("]" if c == "[" else "}" for c in reversed(stack))
    return body + closers


def parse_json_response(text: str) -> Any:
    """Parse model output as JSON: direct, then unwrapped, then one repair pass.

    Raises MalformedResponseError when nothing parses.
    """
    result = _try_parse(text)
    if result is not None:
        return result

    unwrapped = _strip_fences(text).strip()
    result = _try_parse(unwrapped)
    if result is not None:
        return result

    block = re.search(r"[\[{].*[\]}]", unwrapped, re.DOTALL)
    if block:
        result = _try_parse(block.group(0))
        if result is not None:
            return result

    result = _try_parse(repair_truncated_json(unwrapped))
    if result is not None:
        logger.info("Parsed model output after bracket repair")
        return result

    raise MalformedResponseError(f"Unparseable model output: {text[:120]!r}")


def extract_json(text: str) -> dict | None:
    """Return a JSON object from model output, or None."""
    try:
        result = parse_json_response(text)
    except MalformedResponseError:
        return None
    return result if isinstance(result, dict) else None
