"""Recover structured JSON from free-form model output.

Generation models routinely wrap JSON in prose or code fences and emit small
syntax errors (raw newlines or unescaped quotes inside strings, trailing
commas, missing commas between properties). ``parse_structured_response``
extracts the first JSON structure, tries a direct parse, and only runs
``repair_syntax`` when that fails.
"""

from __future__ import annotations

import json
import re
from typing import Any

EXCERPT_LENGTH = 500

_CODE_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\r?\n?([\s\S]*?)```", re.IGNORECASE)
_MISSING_COMMA_RE = re.compile(r'("|\d|true|false|null)([ \t]*\r?\n)(\s*")')
_STRING_CLOSERS = frozenset("}]:,")
_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}
_WHITESPACE = " \t\r\n"


class NoStructureFound(ValueError):
    """Raised when a response contains no JSON array or object."""


class ResponseParseError(ValueError):
    """Raised when a response cannot be parsed even after repair."""

    def __init__(self, message: str, excerpt: str) -> None:
        super().__init__(message)
        self.excerpt = excerpt


def extract_structured_payload(text: str) -> str:
    """Return the JSON substring embedded in ``text``.

    A fenced code block wins over any bracketed text that precedes it.
    Otherwise the first ``[`` or ``{`` is scanned forward to its matching
    closer, ignoring brackets inside string literals. An unterminated
    structure is returned up to the end of the input.
    """

    fence = _CODE_FENCE_RE.search(text)
    if fence is not None:
        return fence.group(1).strip()

    starts = [index for index in (text.find("["), text.find("{")) if index >= 0]
    if not starts:
        raise NoStructureFound("No JSON structure found in response")
    start = min(starts)

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "[{":
            depth += 1
        elif char in "]}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return text[start:]


def repair_syntax(candidate: str) -> str:
    """Best-effort textual repair of almost-JSON.

    Valid JSON is returned unchanged. Outside string literals only commas are
    removed or inserted.
    """

    repaired = _repair_string_literals(candidate)
    repaired = _remove_trailing_commas(repaired)
    return _MISSING_COMMA_RE.sub(r"\1,\2\3", repaired)


def parse_structured_response(text: str) -> Any:
    """Extract, parse, and if needed repair a JSON payload from model output."""

    payload = extract_structured_payload(text)
    try:
        return json.loads(payload)
    except json.JSONDecodeError:
        pass
    repaired = repair_syntax(payload)
    try:
        return json.loads(repaired)
    except json.JSONDecodeError as exc:
        raise ResponseParseError(
            f"Response is not valid JSON after repair: {exc.msg} at position {exc.pos}",
            excerpt=text[:EXCERPT_LENGTH],
        ) from exc


def _repair_string_literals(text: str) -> str:
    out: list[str] = []
    in_string = False
    index = 0
    length = len(text)
    while index < length:
        char = text[index]
        if not in_string:
            if char == '"':
                in_string = True
            out.append(char)
            index += 1
            continue

        if char == "\\":
            out.append(text[index : index + 2])
            index += 2
            continue
        if char == '"':
            if _closes_string(text, index + 1):
                in_string = False
                out.append(char)
            else:
                out.append('\\"')
            index += 1
            continue
        out.append(_CONTROL_ESCAPES.get(char, char))
        index += 1
    return "".join(out)


def _closes_string(text: str, index: int) -> bool:
    length = len(text)
    start = index
    while index < length and text[index] in _WHITESPACE:
        index += 1
    if index >= length or text[index] in _STRING_CLOSERS:
        return True
    # A value followed on the next line by a quoted key is missing its comma.
    return text[index] == '"' and "\n" in text[start:index] and _is_quoted_key(text, index)


def _is_quoted_key(text: str, index: int) -> bool:
    length = len(text)
    index += 1
    while index < length and text[index] not in '"\n':
        index += 2 if text[index] == "\\" else 1
    if index >= length or text[index] != '"':
        return False
    index += 1
    while index < length and text[index] in " \t":
        index += 1
    return index < length and text[index] == ":"


def _remove_trailing_commas(text: str) -> str:
    out: list[str] = []
    in_string = False
    escaped = False
    length = len(text)
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            out.append(char)
            continue
        if char == '"':
            in_string = True
        elif char == ",":
            lookahead = index + 1
            while lookahead < length and text[lookahead] in _WHITESPACE:
                lookahead += 1
            if lookahead < length and text[lookahead] in "}]":
                continue
        out.append(char)
    return "".join(out)
