"""Best-effort recovery of JSON values from noisy model text.

This is a repair heuristic, not a JSON5 parser. The object span is found with a
greedy regex (first ``{`` to last ``}``), so a literal ``}`` inside a string value
that sits after the real closing brace can still produce a wrong span. Callers
validate the result against a schema.
"""
from __future__ import annotations

from typing import Any
import json
import re

from carfinder.errors import ParseError

_FENCE_LANG = re.compile(r"```json\s*")
_FENCE = re.compile(r"```\s*")
_APOSTROPHE = re.compile(r"'\s*")
_OBJECT_SPAN = re.compile(r"\{.*\}", re.DOTALL)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def extract_object_span(text: str) -> str | None:
    match = _OBJECT_SPAN.search(text)
    return match.group(0) if match else None


def clean_model_text(text: str) -> str:
    cleaned = text.strip()
    cleaned = _FENCE_LANG.sub("", cleaned)
    cleaned = _FENCE.sub("", cleaned)
    cleaned = _APOSTROPHE.sub("", cleaned)
    cleaned = cleaned.strip()
    span = extract_object_span(cleaned)
    if span is not None:
        cleaned = span
    cleaned = cleaned.replace("'", '"')
    return _TRAILING_COMMA.sub(r"\1", cleaned)


def parse_model_json(text: str) -> Any:
    """Return the JSON value embedded in ``text`` or raise ParseError."""
    if text is None:
        raise ParseError("Failed to parse JSON: empty response")
    cleaned = clean_model_text(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as first_error:
        span = extract_object_span(cleaned)
        if span is None:
            raise ParseError(f"Failed to parse JSON: {first_error}") from first_error
        try:
            return json.loads(span)
        except json.JSONDecodeError:
            raise ParseError(f"Failed to parse JSON: {first_error}") from first_error
