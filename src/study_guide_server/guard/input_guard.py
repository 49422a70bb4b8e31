"""
Input Guard

Validates and risk-scores raw user input before any quota or provider work
happens. `InputGuard.evaluate` is a pure function of its arguments; logging
the decision is left to the caller.

Check Order
-----------
1. TOO_LONG             length above `max_length`, regardless of content
2. EMPTY                blank or whitespace only
3. INJECTION_SUSPECTED  first matching pattern class, in this precedence:
                        instruction_override, role_token, markup_script,
                        sql_fragment
   EMPTY                again, if nothing is left once sanitised (only
                        markup or denylisted punctuation)
4. MALFORMED_REFERENCE  scripture input that fails the reference grammar
5. HIGH_RISK            heuristic score above `risk_threshold`

The first step that rejects decides the category. The heuristic score is
only computed when steps 1-4 all pass.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from enum import Enum
from typing import Any, Dict, Pattern, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .references import ReferenceFormatError, parse_reference


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

class InputType(str, Enum):
    SCRIPTURE = "scripture"
    TOPIC = "topic"


class ValidationCategory(str, Enum):
    OK = "OK"
    TOO_LONG = "TOO_LONG"
    EMPTY = "EMPTY"
    INJECTION_SUSPECTED = "INJECTION_SUSPECTED"
    MALFORMED_REFERENCE = "MALFORMED_REFERENCE"
    HIGH_RISK = "HIGH_RISK"


class ValidationOutcome(BaseModel):
    """
    Result of evaluating one input. Produced once per request.
    """

    accepted: bool
    category: ValidationCategory
    risk_score: float = Field(..., ge=0.0, le=1.0)
    detail: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------
# Pattern classes (order is precedence)
# ---------------------------------------------------------------------

def _compile(*patterns: str) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


INJECTION_PATTERN_CLASSES: Tuple[Tuple[str, Tuple[Pattern[str], ...]], ...] = (
    (
        "instruction_override",
        _compile(
            r"\bignore\s+(?:all\s+|the\s+|any\s+)?(?:previous|above|prior|earlier|all)\s+(?:instructions?|prompts?|rules?|directions?)",
            r"\bforget\s+(?:everything|all|previous|your\s+instructions)",
            r"\bdisregard\s+(?:all\s+|the\s+|any\s+)?(?:previous|above|prior|earlier)",
            r"\bnew\s+(?:instructions?|prompts?|rules?)\b",
            r"\byou\s+are\s+now\s+(?:a|an|in)\b",
        ),
    ),
    (
        "role_token",
        _compile(
            r"\bsystem\s*:",
            r"\bassistant\s*:",
            r"\[/?INST\]",
            r"<\|im_(?:start|end)\|>",
            r"<\|(?:system|user|assistant|endoftext)\|>",
            r"#{2,}\s*(?:system|instruction)",
        ),
    ),
    (
        "markup_script",
        _compile(
            r"<\s*script\b",
            r"javascript\s*:",
            r"\beval\s*\(",
            r"\bfunction\s*\(",
            r"<[^>]*\bon\w+\s*=",
            r"<\s*(?:iframe|object|embed|svg)\b",
        ),
    ),
    (
        "sql_fragment",
        _compile(
            r"\bunion\s+(?:all\s+)?select\b",
            r"\bdrop\s+(?:table|database)\b",
            r"\bdelete\s+from\b",
            r"\binsert\s+into\b",
            r"['\"]\s*or\s+'?1'?\s*=\s*'?1",
            r";\s*--",
        ),
    ),
)

_REPEATED = re.compile(r"(.{3,}?)\1{2,}", re.DOTALL)
_TAGS = re.compile(r"<[^>]*>")
_DENYLIST = re.compile(r"[<>&\"']")
_KEPT_CONTROLS = {"\t", "\n", "\r"}

SPECIAL_DENSITY_LIMIT = 0.6
UPPERCASE_DENSITY_LIMIT = 0.8
MIN_LETTERS_FOR_CASE_CHECK = 8


# ---------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------

class InputGuard:
    """
    Length, injection, reference-grammar and heuristic screening.
    """

    def __init__(self, max_length: int = 500, risk_threshold: float = 0.7) -> None:
        if max_length <= 0:
            raise ValueError("max_length must be positive")
        self.max_length = max_length
        self.risk_threshold = risk_threshold

    def evaluate(self, raw: str, input_type: InputType) -> ValidationOutcome:
        if len(raw) > self.max_length:
            return _reject(
                ValidationCategory.TOO_LONG,
                0.8,
                {"input_length": len(raw), "max_length": self.max_length},
            )

        if not raw.strip():
            return _reject(ValidationCategory.EMPTY, 0.3, {})

        for class_name, patterns in INJECTION_PATTERN_CLASSES:
            for pattern in patterns:
                match = pattern.search(raw)
                if match:
                    return _reject(
                        ValidationCategory.INJECTION_SUSPECTED,
                        0.9,
                        {"pattern_class": class_name, "matched_text": match.group(0)},
                    )

        if not self.sanitize(raw):
            return _reject(ValidationCategory.EMPTY, 0.3, {"reason": "nothing left after sanitising"})

        if InputType(input_type) is InputType.SCRIPTURE:
            try:
                parse_reference(raw)
            except ReferenceFormatError as exc:
                return _reject(
                    ValidationCategory.MALFORMED_REFERENCE,
                    0.5,
                    {
                        "reason": str(exc),
                        "expected_format": 'Book Chapter[:Verse][-Verse] (e.g. "John 3:16", "Romans 8:28-30", "Ps 23")',
                    },
                )

        score, factors = self.risk_score(raw)
        if score > self.risk_threshold:
            return _reject(
                ValidationCategory.HIGH_RISK,
                score,
                {"factors": factors},
            )

        return ValidationOutcome(
            accepted=True,
            category=ValidationCategory.OK,
            risk_score=score,
            detail={"factors": factors} if factors else {},
        )

    def risk_score(self, raw: str) -> Tuple[float, Dict[str, float]]:
        """
        Heuristic score from special-character density, uppercase density
        and repeated substrings. Returns the clamped score and the factors
        that contributed to it.
        """
        factors: Dict[str, float] = {}
        visible = [ch for ch in raw if not ch.isspace()]
        if not visible:
            return 0.0, factors

        special = sum(1 for ch in visible if unicodedata.category(ch)[0] in ("P", "S"))
        if special > len(raw) * SPECIAL_DENSITY_LIMIT:
            factors["special_characters"] = 0.3

        letters = [ch for ch in visible if ch.isalpha()]
        if len(letters) >= MIN_LETTERS_FOR_CASE_CHECK:
            upper = sum(1 for ch in letters if ch.isupper())
            if upper > len(letters) * UPPERCASE_DENSITY_LIMIT:
                factors["uppercase"] = 0.2

        if _REPEATED.search(raw):
            factors["repeated_pattern"] = 0.5

        return min(sum(factors.values()), 1.0), factors

    def sanitize(self, raw: str) -> str:
        """
        Strip control characters and markup, remove the punctuation
        denylist, trim, then truncate to `max_length`.
        """
        filtered = "".join(
            ch for ch in raw
            if ch in _KEPT_CONTROLS or unicodedata.category(ch) != "Cc"
        )
        text = unicodedata.normalize("NFKC", filtered)
        text = _TAGS.sub("", text)
        text = _DENYLIST.sub("", text)
        text = text.strip()
        return text[: self.max_length]

    @staticmethod
    def fingerprint(raw: str) -> str:
        """SHA-256 hex digest identifying an input without retaining it."""
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _reject(
    category: ValidationCategory,
    risk_score: float,
    detail: Dict[str, Any],
) -> ValidationOutcome:
    return ValidationOutcome(
        accepted=False,
        category=category,
        risk_score=risk_score,
        detail=detail,
    )
