from functools import lru_cache

from ..config import settings
from ..db.guide_repository import GuideRepository
from ..db.quota_store import QuotaStore
from ..db.rate_limiter import QuotaFailurePolicy, QuotaProfile, QuotaTracker
from ..db.session import AsyncSessionLocal
from ..generation.orchestrator import GenerationOrchestrator, RetryPolicy
from ..guard.input_guard import InputGuard
from ..llm.client import LLMProvider, build_provider
from ..pipeline.handler import RequestHandler
from ..prompts.builder import PromptBuilder


@lru_cache
def get_input_guard() -> InputGuard:
    return InputGuard(max_length=settings.max_input_length, risk_threshold=settings.risk_threshold)


@lru_cache
def get_prompt_builder() -> PromptBuilder:
    return PromptBuilder()


@lru_cache
def get_llm_provider() -> LLMProvider:
    return build_provider(settings)


@lru_cache
def get_quota_tracker() -> QuotaTracker:
    return QuotaTracker(
        store=QuotaStore(AsyncSessionLocal),
        profiles={
            "anonymous": QuotaProfile(settings.quota_anonymous_limit, settings.quota_anonymous_window_minutes),
            "authenticated": QuotaProfile(settings.quota_authenticated_limit, settings.quota_authenticated_window_minutes),
        },
        failure_policies={
            "anonymous": QuotaFailurePolicy(settings.quota_anonymous_policy),
            "authenticated": QuotaFailurePolicy(settings.quota_authenticated_policy),
        },
    )


@lru_cache
def get_guide_repository() -> GuideRepository:
    return GuideRepository(AsyncSessionLocal)


@lru_cache
def get_orchestrator() -> GenerationOrchestrator:
    policy = RetryPolicy(
        max_attempts=settings.generation_max_attempts,
        temperature_step=settings.temperature_step,
        min_temperature=settings.min_temperature,
        token_step=settings.token_step,
        max_tokens_cap=settings.max_tokens_cap,
    )
    return GenerationOrchestrator(get_llm_provider(), policy)


@lru_cache
def get_request_handler() -> RequestHandler:
    return RequestHandler(
        guard=get_input_guard(),
        quota=get_quota_tracker(),
        builder=get_prompt_builder(),
        orchestrator=get_orchestrator(),
        repository=get_guide_repository(),
        timeout_seconds=settings.request_timeout_seconds,
    )
