"""
Request Handler

Sequences one study guide request through the pipeline:

    InputGuard -> QuotaTracker -> PromptBuilder -> GenerationOrchestrator
               -> GuideRepository

and reduces the result to a single `PipelineResponse`. Validation, the quota
check and generation share one deadline; persistence runs after it so that a
guide which made it out of the provider is not lost to the timer.

The handler holds no per-request state. The only cross-request resource it
touches is the quota counter, through the store's atomic increment.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from ..core.errors import (
    InputRejected,
    ParseExhausted,
    PersistenceFailure,
    PipelineError,
    PipelineTimeout,
    ProviderUnavailable,
    QuotaExceeded,
)
from ..db.guide_repository import GuideRepositoryProtocol
from ..db.rate_limiter import QuotaDecision, QuotaTracker
from ..generation.models import GenerationAttempt, GenerationRequest, StructuredGuide
from ..generation.orchestrator import FailureKind, GenerationOrchestrator
from ..guard.input_guard import InputGuard, ValidationOutcome
from ..prompts.builder import PromptBuilder

logger = logging.getLogger("guide.pipeline")

TIMEOUT_REASON = "timeout"


class ResponseCategory(str, Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED_INPUT = "REJECTED_INPUT"
    RATE_LIMITED = "RATE_LIMITED"
    GENERATION_FAILED = "GENERATION_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"


@dataclass(frozen=True)
class PipelineResponse:
    """
    Outcome of one request. Which optional fields are set depends on
    `category`.
    """

    category: ResponseCategory
    request: GenerationRequest
    guide: Optional[StructuredGuide] = None
    guide_id: Optional[uuid.UUID] = None
    validation: Optional[ValidationOutcome] = None
    quota: Optional[QuotaDecision] = None
    reason: Optional[str] = None
    last_error: Optional[str] = None
    attempts: Tuple[GenerationAttempt, ...] = ()

    @property
    def accepted(self) -> bool:
        return self.category is ResponseCategory.ACCEPTED

    def as_error(self) -> Optional[PipelineError]:
        """
        The typed failure for a non-accepted response, or None.
        """
        if self.category is ResponseCategory.ACCEPTED:
            return None

        if self.category is ResponseCategory.REJECTED_INPUT:
            return InputRejected(self.validation.category.value, dict(self.validation.detail))

        if self.category is ResponseCategory.RATE_LIMITED:
            return QuotaExceeded(self.quota.reset_at)

        if self.category is ResponseCategory.PERSISTENCE_FAILED:
            return PersistenceFailure(
                "study guide could not be saved",
                content=self.guide.model_dump() if self.guide is not None else None,
            )

        if self.reason == TIMEOUT_REASON:
            return PipelineTimeout("pipeline deadline exceeded")
        if self.reason == FailureKind.PARSE_EXHAUSTED.value:
            return ParseExhausted(self.last_error)
        return ProviderUnavailable("provider unavailable")


class RequestHandler:
    """
    Thin glue over the pipeline components.
    """

    def __init__(
        self,
        guard: InputGuard,
        quota: QuotaTracker,
        builder: PromptBuilder,
        orchestrator: GenerationOrchestrator,
        repository: GuideRepositoryProtocol,
        timeout_seconds: float = 90.0,
    ) -> None:
        self.guard = guard
        self.quota = quota
        self.builder = builder
        self.orchestrator = orchestrator
        self.repository = repository
        self.timeout_seconds = timeout_seconds

    async def handle(self, request: GenerationRequest) -> PipelineResponse:
        """
        Run one request through the pipeline.

        Raises
        ------
        QuotaBackendUnavailable
            When the quota store is down and the identity's policy is
            fail-closed.
        """
        fingerprint = self.guard.fingerprint(request.input_value)[:16]

        try:
            async with asyncio.timeout(self.timeout_seconds):
                early, generated, decision = await self._admit_and_generate(request, fingerprint)
        except TimeoutError:
            logger.warning(
                "Pipeline deadline of %.1fs exceeded for input %s",
                self.timeout_seconds,
                fingerprint,
            )
            return PipelineResponse(
                category=ResponseCategory.GENERATION_FAILED,
                request=request,
                reason=TIMEOUT_REASON,
            )

        if early is not None:
            return early

        guide, attempts, sanitized = generated
        try:
            guide_id = await self.repository.save(guide, sanitized)
        except PersistenceFailure:
            logger.error("Generated guide for input %s could not be persisted", fingerprint)
            return PipelineResponse(
                category=ResponseCategory.PERSISTENCE_FAILED,
                request=sanitized,
                guide=guide,
                quota=decision,
                attempts=attempts,
            )

        return PipelineResponse(
            category=ResponseCategory.ACCEPTED,
            request=sanitized,
            guide=guide,
            guide_id=guide_id,
            quota=decision,
            attempts=attempts,
        )

    async def _admit_and_generate(self, request: GenerationRequest, fingerprint: str):
        """
        Steps bounded by the deadline. Returns `(early_response, generated,
        decision)` where exactly one of the first two is set.
        """
        outcome = self.guard.evaluate(request.input_value, request.input_type)
        logger.info(
            "Input %s evaluated: category=%s risk=%.2f",
            fingerprint,
            outcome.category.value,
            outcome.risk_score,
        )
        if not outcome.accepted:
            return (
                PipelineResponse(
                    category=ResponseCategory.REJECTED_INPUT,
                    request=request,
                    validation=outcome,
                ),
                None,
                None,
            )

        decision = await self.quota.admit(request.identity)
        if not decision.allowed:
            return (
                PipelineResponse(
                    category=ResponseCategory.RATE_LIMITED,
                    request=request,
                    validation=outcome,
                    quota=decision,
                ),
                None,
                decision,
            )

        sanitized = request.model_copy(update={"input_value": self.guard.sanitize(request.input_value)})
        prompt = self.builder.build(sanitized)
        base_params = self.builder.base_params(sanitized)

        result = await self.orchestrator.generate(prompt, base_params)
        if not result.ok:
            logger.warning(
                "Generation failed for input %s: %s after %d attempts",
                fingerprint,
                result.failure.kind.value,
                len(result.attempts),
            )
            return (
                PipelineResponse(
                    category=ResponseCategory.GENERATION_FAILED,
                    request=request,
                    validation=outcome,
                    quota=decision,
                    reason=result.failure.kind.value,
                    last_error=result.failure.last_error,
                    attempts=result.attempts,
                ),
                None,
                decision,
            )

        return None, (result.guide, result.attempts, sanitized), decision
