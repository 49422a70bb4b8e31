"""
Response Parser

Turns raw provider text into a `StructuredGuide`.

Parsing is strict about structure and lenient about framing: code fences
and chatter around the JSON object are dropped, control characters inside
strings are tolerated, and output cut off mid-stream is repaired by closing
what was left open. Escaping of arbitrary text inside JSON strings is the
JSON decoder's job; nothing here asks the model to avoid punctuation.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, List, Optional, Tuple

from pydantic import ValidationError

from .models import StructuredGuide

logger = logging.getLogger("guide.generation")

_FENCE_START = re.compile(r"^```(?:json|JSON)?\s*")
_FENCE_END = re.compile(r"\s*```\s*$")
_PARTIAL_LITERAL = re.compile(
    r"(?<=[:\[,])\s*(?:t|tr|tru|f|fa|fal|fals|n|nu|nul|-|-?\d+\.|-?\d+(?:\.\d+)?[eE][+-]?)$"
)
_DANGLING_KEY_COLON = re.compile(r',?\s*"(?:[^"\\]|\\.)*"\s*:$')
_TRAILING_STRING = re.compile(r'([{,])\s*"(?:[^"\\]|\\.)*"$')
_PARTIAL_UNICODE_ESCAPE = re.compile(r"\\u[0-9a-fA-F]{0,3}$")


class GuideParseError(ValueError):
    """Raised when provider output cannot be turned into a complete guide."""


# ---------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------

def clean_response(raw: str) -> str:
    """
    Remove markdown fences and any text before the first JSON object.

    Text after the object is left in place; the decoder stops at the end of
    the first complete value, and an object cut off mid-stream keeps
    everything up to the end for truncation repair.
    """
    text = raw.strip()
    text = _FENCE_START.sub("", text)
    text = _FENCE_END.sub("", text)

    start = text.find("{")
    if start == -1:
        raise GuideParseError("response contains no JSON object")
    return text[start:]


# ---------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------

def _scan(text: str) -> Tuple[List[str], bool, bool]:
    """
    Walk the text once, returning the stack of unclosed containers, whether
    it ends inside a string, and whether it ends on a pending escape.
    """
    stack: List[str] = []
    in_string = False
    escape = False

    for ch in text:
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append(ch)
        elif ch in "}]":
            expected = "{" if ch == "}" else "["
            if not stack or stack[-1] != expected:
                raise GuideParseError("mismatched brackets; output is not repairable")
            stack.pop()

    return stack, in_string, escape


def _trim_dangling(text: str, innermost: str) -> str:
    while True:
        current = text.rstrip()
        trimmed = _PARTIAL_LITERAL.sub("", current)

        if trimmed.endswith(","):
            trimmed = trimmed[:-1]
        elif trimmed.endswith(":"):
            trimmed = _DANGLING_KEY_COLON.sub("", trimmed)
        elif innermost == "{":
            # A bare string right after '{' or ',' inside an object is a key
            # that never got its value.
            trimmed = _TRAILING_STRING.sub(r"\1", trimmed)

        if trimmed == current:
            return current
        text = trimmed


def repair_truncated_json(text: str) -> str:
    """
    Best-effort completion of JSON that was cut off.

    Steps: close an unterminated string (dropping a half-written escape),
    remove a trailing partial literal, comma, or key without a value,
    then close open arrays and objects innermost first.

    Raises
    ------
    GuideParseError
        If brackets are mismatched, which truncation alone cannot cause.
    """
    stack, in_string, escape = _scan(text)
    repaired = text

    if in_string:
        if escape:
            repaired = repaired[:-1]
        repaired = _PARTIAL_UNICODE_ESCAPE.sub("", repaired)
        repaired += '"'

    innermost = stack[-1] if stack else ""
    repaired = _trim_dangling(repaired, innermost)

    closers = "".join("}" if opener == "{" else "]" for opener in reversed(stack))
    return repaired + closers


# ---------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------

_DECODER = json.JSONDecoder(strict=False)


def decode_json(text: str) -> Any:
    """
    Decode the JSON value at the start of `text`, tolerating raw control
    characters inside strings. Anything after the value is ignored.
    """
    data, _ = _DECODER.raw_decode(text)
    return data


def validate_guide(data: Any) -> StructuredGuide:
    """
    Validate a decoded object as a complete guide.

    A decodable object that lacks a section, or has an empty one, is a
    parse failure.
    """
    if not isinstance(data, dict):
        raise GuideParseError("top-level JSON value is not an object")

    try:
        return StructuredGuide.model_validate(data)
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        raise GuideParseError(
            f"missing or invalid sections: {', '.join(fields) or 'unknown'}"
        ) from exc


def parse_guide(
    raw: str, on_repair: Optional[Callable[[], None]] = None
) -> Tuple[StructuredGuide, bool]:
    """
    Decode, repair if needed, and validate a complete study guide.

    Parameters
    ----------
    raw : str
        Provider output, possibly fenced or surrounded by chatter.
    on_repair : callable, optional
        Called once, just before truncation repair is attempted.

    Returns
    -------
    Tuple[StructuredGuide, bool]
        The guide and whether truncation repair was required.
    """
    cleaned = clean_response(raw)
    repaired = False

    try:
        data = decode_json(cleaned)
    except json.JSONDecodeError as first_error:
        logger.info("Provider output is not valid JSON (%s); attempting repair", first_error.msg)
        if on_repair is not None:
            on_repair()
        candidate = repair_truncated_json(cleaned)
        try:
            data = decode_json(candidate)
        except json.JSONDecodeError as exc:
            raise GuideParseError(
                f"invalid JSON after repair: {exc.msg} at position {exc.pos}"
            ) from exc
        repaired = True

    return validate_guide(data), repaired
