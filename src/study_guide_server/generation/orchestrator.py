"""
Generation Orchestrator

Drives one study guide through the provider with bounded retries.

State machine
-------------
    DRAFTING -> INVOKING -> PARSING -> SUCCESS
    PARSING  -> REPAIRING -> PARSING -> SUCCESS
    PARSING  -> RETRYING -> INVOKING ...      (attempt < max)
    INVOKING -> RETRYING                      (retryable provider error)
    *        -> FAILED                        (attempt == max, or a
                                               non-retryable provider error)

Every attempt derives its parameters from the ORIGINAL base parameters and
its attempt number, never from the previous attempt, so adjustments do not
compound. Truncation repair runs on every attempt whose output fails to
decode, not only the last one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .models import GenerationAttempt, GenerationParams, PromptPair, StructuredGuide
from .parser import GuideParseError, parse_guide
from ..llm.client import LLMProvider, ProviderError

logger = logging.getLogger("guide.generation")


class GenerationState(str, Enum):
    DRAFTING = "drafting"
    INVOKING = "invoking"
    PARSING = "parsing"
    REPAIRING = "repairing"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"


class FailureKind(str, Enum):
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PARSE_EXHAUSTED = "parse_exhausted"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Per-attempt parameter schedule.

    For attempt `n` (1-based):
        temperature = max(min_temperature, base - (n - 1) * temperature_step)
        max_tokens  = min(max_tokens_cap, base + (n - 1) * token_step)
    """

    max_attempts: int = 3
    temperature_step: float = 0.1
    min_temperature: float = 0.1
    token_step: int = 500
    max_tokens_cap: int = 8000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def params_for(self, base: GenerationParams, attempt_number: int) -> GenerationParams:
        if attempt_number < 1:
            raise ValueError("attempt_number is 1-based")

        step = attempt_number - 1
        temperature = max(self.min_temperature, base.temperature - step * self.temperature_step)
        max_tokens = min(self.max_tokens_cap, base.max_tokens + step * self.token_step)
        return GenerationParams(
            temperature=round(temperature, 4),
            max_tokens=max_tokens,
            language=base.language,
        )


@dataclass(frozen=True)
class GenerationFailure:
    kind: FailureKind
    reason: str
    last_error: Optional[str] = None


@dataclass(frozen=True)
class GenerationOutcome:
    """
    Result of one orchestration: either a guide or a typed failure, plus
    the ordered attempt log and the states visited.
    """

    guide: Optional[StructuredGuide]
    failure: Optional[GenerationFailure]
    attempts: Tuple[GenerationAttempt, ...] = ()
    states: Tuple[GenerationState, ...] = field(default=())

    @property
    def ok(self) -> bool:
        return self.guide is not None


class GenerationOrchestrator:
    """
    Calls the provider until a complete guide parses or attempts run out.

    The provider is fixed at construction; there is no per-request fallback
    to a different provider.
    """

    def __init__(self, provider: LLMProvider, retry_policy: Optional[RetryPolicy] = None) -> None:
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()

    async def generate(self, prompt: PromptPair, base_params: GenerationParams) -> GenerationOutcome:
        policy = self.retry_policy
        attempts: List[GenerationAttempt] = []
        states: List[GenerationState] = [GenerationState.DRAFTING]
        produced_text = False
        last_error: Optional[str] = None

        for attempt_number in range(1, policy.max_attempts + 1):
            if attempt_number > 1:
                states.append(GenerationState.RETRYING)

            params = policy.params_for(base_params, attempt_number)
            states.append(GenerationState.INVOKING)

            try:
                raw = await self.provider.invoke(prompt, params)
            except ProviderError as exc:
                last_error = str(exc)
                attempts.append(
                    GenerationAttempt(
                        attempt_number=attempt_number,
                        temperature=params.temperature,
                        max_tokens=params.max_tokens,
                        provider_error=last_error,
                    )
                )
                logger.warning(
                    "Attempt %d/%d provider error (retryable=%s): %s",
                    attempt_number,
                    policy.max_attempts,
                    exc.retryable,
                    exc,
                )
                if not exc.retryable:
                    states.append(GenerationState.FAILED)
                    return GenerationOutcome(
                        guide=None,
                        failure=GenerationFailure(FailureKind.PROVIDER_UNAVAILABLE, "provider rejected request", last_error),
                        attempts=tuple(attempts),
                        states=tuple(states),
                    )
                continue

            produced_text = True
            guide, repaired, parse_error = self._parse(raw, states)
            attempts.append(
                GenerationAttempt(
                    attempt_number=attempt_number,
                    temperature=params.temperature,
                    max_tokens=params.max_tokens,
                    raw_response=raw,
                    parse_error=parse_error,
                    repaired=repaired,
                )
            )

            if guide is not None:
                states.append(GenerationState.SUCCESS)
                logger.info(
                    "Guide generated on attempt %d (temperature=%.2f, max_tokens=%d, repaired=%s)",
                    attempt_number,
                    params.temperature,
                    params.max_tokens,
                    repaired,
                )
                return GenerationOutcome(
                    guide=guide,
                    failure=None,
                    attempts=tuple(attempts),
                    states=tuple(states),
                )

            last_error = parse_error
            logger.warning(
                "Attempt %d/%d produced unusable output: %s",
                attempt_number,
                policy.max_attempts,
                parse_error,
            )

        states.append(GenerationState.FAILED)
        if produced_text:
            failure = GenerationFailure(FailureKind.PARSE_EXHAUSTED, "no attempt produced a complete guide", last_error)
        else:
            failure = GenerationFailure(FailureKind.PROVIDER_UNAVAILABLE, "provider failed on every attempt", last_error)

        logger.error("Generation failed after %d attempts: %s", len(attempts), failure.reason)
        return GenerationOutcome(
            guide=None,
            failure=failure,
            attempts=tuple(attempts),
            states=tuple(states),
        )

    @staticmethod
    def _parse(
        raw: str, states: List[GenerationState]
    ) -> Tuple[Optional[StructuredGuide], bool, Optional[str]]:
        """
        Decode and validate one response, repairing truncation if the first
        decode fails. Returns `(guide, repaired, error)`.
        """
        states.append(GenerationState.PARSING)
        repair_attempted = False

        def _repairing() -> None:
            nonlocal repair_attempted
            repair_attempted = True
            states.extend((GenerationState.REPAIRING, GenerationState.PARSING))

        try:
            guide, repaired = parse_guide(raw, on_repair=_repairing)
        except GuideParseError as exc:
            return None, repair_attempted, str(exc)
        return guide, repaired, None
