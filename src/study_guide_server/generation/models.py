"""
Generation Models

Request-scoped value types shared by the prompt builder, the orchestrator
and the request handler. All of them are immutable once created.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..auth.models import AnonymousIdentity, AuthenticatedIdentity
from ..guard.input_guard import InputType


TEXT_SECTIONS = ("summary", "interpretation", "context")
LIST_SECTIONS = ("related_verses", "reflection_questions", "prayer_points")
REQUIRED_SECTIONS = TEXT_SECTIONS + LIST_SECTIONS

MAX_SECTION_TEXT = 2000

_WHITESPACE = re.compile(r"\s+")
_ANGLE = re.compile(r"[<>]")


def sanitize_text(value: str) -> str:
    """Collapse whitespace, drop angle brackets, cap length."""
    return _ANGLE.sub("", _WHITESPACE.sub(" ", value.strip()))[:MAX_SECTION_TEXT]


# ---------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------

class GenerationRequest(BaseModel):
    """
    One study guide request after identity resolution.
    """

    input_type: InputType
    input_value: str
    language: str
    identity: Union[AuthenticatedIdentity, AnonymousIdentity] = Field(discriminator="kind")

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------
# Prompt & Parameters
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PromptPair:
    system_message: str
    user_message: str


@dataclass(frozen=True)
class GenerationParams:
    temperature: float
    max_tokens: int
    language: str = "en"


@dataclass(frozen=True)
class GenerationAttempt:
    """
    Record of one provider call and what parsing made of it.
    """
    attempt_number: int
    temperature: float
    max_tokens: int
    raw_response: Optional[str] = None
    parse_error: Optional[str] = None
    provider_error: Optional[str] = None
    repaired: bool = False

    @property
    def succeeded(self) -> bool:
        return self.raw_response is not None and self.parse_error is None and self.provider_error is None


# ---------------------------------------------------------------------
# Structured Guide
# ---------------------------------------------------------------------

class StructuredGuide(BaseModel):
    """
    The generated study guide. Every section is required and non-empty.
    """

    summary: str = Field(..., min_length=1)
    interpretation: str = Field(..., min_length=1)
    context: str = Field(..., min_length=1)
    related_verses: List[str] = Field(
        ..., min_length=1, validation_alias=AliasChoices("related_verses", "relatedVerses")
    )
    reflection_questions: List[str] = Field(
        ..., min_length=1, validation_alias=AliasChoices("reflection_questions", "reflectionQuestions")
    )
    prayer_points: List[str] = Field(
        ..., min_length=1, validation_alias=AliasChoices("prayer_points", "prayerPoints")
    )

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator(*TEXT_SECTIONS, mode="before")
    @classmethod
    def _clean_text(cls, v):
        if not isinstance(v, str):
            raise ValueError("must be a string")
        return sanitize_text(v)

    @field_validator(*LIST_SECTIONS, mode="before")
    @classmethod
    def _clean_list(cls, v):
        if not isinstance(v, list):
            raise ValueError("must be a list")
        cleaned = []
        for item in v:
            if not isinstance(item, str):
                raise ValueError("items must be strings")
            item = sanitize_text(item)
            if not item:
                raise ValueError("items must not be empty")
            cleaned.append(item)
        return cleaned
