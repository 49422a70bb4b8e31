"""
API Models for the Study Guide Server

Pydantic models for request/response validation on the HTTP surface.

Design Goals
------------
- Strong typing
- Safe defaults (no shared mutable state)
- Clear schema documentation for OpenAPI
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ConfigDict

from ..guard.input_guard import InputType

# Hard ceiling on the request body field; the input guard applies the
# configured (smaller) limit and reports TOO_LONG with a proper category.
MAX_REQUEST_INPUT_CHARS = 10_000


# ---------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------

class StudyGenerateRequest(BaseModel):
    """
    Study guide generation request payload.
    """
    input_type: InputType
    input_value: str = Field(..., max_length=MAX_REQUEST_INPUT_CHARS)
    language: Literal["en", "hi", "ml"] = "en"

    model_config = ConfigDict(extra="forbid")


class StudyGuideContent(BaseModel):
    summary: str
    interpretation: str
    context: str
    related_verses: List[str]
    reflection_questions: List[str]
    prayer_points: List[str]


class StudyGuideInput(BaseModel):
    type: InputType
    value: str
    language: str


class StudyGuideData(BaseModel):
    id: uuid.UUID
    input: StudyGuideInput
    content: StudyGuideContent


class RateLimitInfo(BaseModel):
    limit: int
    remaining: int = Field(..., ge=0)
    reset_at: datetime
    degraded: bool = False


class StudyGenerateResponse(BaseModel):
    success: Literal[True] = True
    data: StudyGuideData
    rate_limit: Optional[RateLimitInfo] = None


# ---------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------

class QuotaUsageResponse(BaseModel):
    kind: Literal["anonymous", "authenticated"]
    identifier: str
    window_start: datetime
    count: int = Field(..., ge=0)
    limit: int
    window_minutes: int


class QuotaResetResponse(BaseModel):
    status: Literal["reset"] = "reset"
    removed: int = Field(..., ge=0)
