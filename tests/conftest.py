"""
Shared fixtures: in-memory stand-ins for the quota store, the LLM provider
and the guide repository, plus canned provider output.
"""

import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple, Union

import pytest

from study_guide_server.auth.models import AnonymousIdentity, AuthenticatedIdentity
from study_guide_server.core.errors import PersistenceFailure
from study_guide_server.db.quota_store import IncrementResult, QuotaStoreUnavailable
from study_guide_server.db.rate_limiter import QuotaFailurePolicy, QuotaProfile, QuotaTracker
from study_guide_server.generation.models import GenerationParams, PromptPair
from study_guide_server.generation.orchestrator import GenerationOrchestrator, RetryPolicy
from study_guide_server.guard.input_guard import InputGuard
from study_guide_server.llm.client import LLMProvider
from study_guide_server.pipeline.handler import RequestHandler
from study_guide_server.prompts.builder import PromptBuilder


VALID_GUIDE = {
    "summary": "God so loved the world that He gave His only Son.",
    "interpretation": "Jesus explains to Nicodemus that \"eternal life\" is God's gift, received by faith.",
    "context": "A night conversation between Jesus and a Pharisee in Jerusalem.",
    "relatedVerses": ["Romans 5:8", "1 John 4:9"],
    "reflectionQuestions": ["What does it mean to believe?", "How has God shown His love to you?"],
    "prayerPoints": ["Thank God for His love.", "Pray for someone who needs to hear it."],
}

VALID_GUIDE_JSON = json.dumps(VALID_GUIDE)

# Same guide cut off mid-way through the last prayer point
TRUNCATED_GUIDE_JSON = VALID_GUIDE_JSON[: VALID_GUIDE_JSON.index("someone who needs")]


class InMemoryQuotaStore:
    """
    Quota store whose check-and-increment is atomic under one asyncio lock,
    mirroring the single-statement upsert of the real store.
    """

    def __init__(self) -> None:
        self.counts: Dict[Tuple[str, str, datetime], int] = {}
        self.windows: Dict[Tuple[str, str, datetime], int] = {}
        self.increment_calls = 0
        self.fail = False
        self._lock = asyncio.Lock()

    async def increment_if_under_limit(self, identifier, user_type, window_start, window_minutes, limit):
        self.increment_calls += 1
        if self.fail:
            raise QuotaStoreUnavailable("connection refused")
        async with self._lock:
            key = (identifier, user_type, window_start)
            current = self.counts.get(key, 0)
            # Yield inside the critical section so concurrent callers interleave
            await asyncio.sleep(0)
            if current >= limit:
                return IncrementResult(count=current, exceeded=True)
            self.counts[key] = current + 1
            self.windows[key] = window_minutes
            return IncrementResult(count=current + 1, exceeded=False)

    async def current_count(self, identifier, user_type, window_start):
        if self.fail:
            raise QuotaStoreUnavailable("connection refused")
        return self.counts.get((identifier, user_type, window_start), 0)

    async def delete_identity(self, identifier, user_type):
        if self.fail:
            raise QuotaStoreUnavailable("connection refused")
        keys = [k for k in self.counts if k[0] == identifier and k[1] == user_type]
        for key in keys:
            del self.counts[key]
            self.windows.pop(key, None)
        return len(keys)

    async def purge_expired(self, now):
        expired = [
            key for key, minutes in self.windows.items()
            if key[2] + timedelta(minutes=minutes) <= now
        ]
        for key in expired:
            self.counts.pop(key, None)
            del self.windows[key]
        return len(expired)


class ScriptedProvider(LLMProvider):
    """
    Returns (or raises) the scripted items in order and records every call.
    """

    name = "scripted"

    def __init__(self, responses: List[Union[str, Exception]], delay: float = 0.0) -> None:
        super().__init__(api_key="test")
        self._responses = list(responses)
        self.delay = delay
        self.calls: List[Tuple[PromptPair, GenerationParams]] = []

    async def invoke(self, prompt: PromptPair, params: GenerationParams) -> str:
        self.calls.append((prompt, params))
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return item


class InMemoryGuideRepository:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.saved: List[Tuple[object, object]] = []

    async def save(self, guide, request) -> uuid.UUID:
        if self.fail:
            raise PersistenceFailure("database unavailable")
        self.saved.append((guide, request))
        return uuid.uuid4()


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def quota_store() -> InMemoryQuotaStore:
    return InMemoryQuotaStore()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 5, 1, 10, 30, tzinfo=timezone.utc))


@pytest.fixture
def make_tracker(quota_store, clock):
    def _make(
        anonymous: QuotaProfile = QuotaProfile(1, 480),
        authenticated: QuotaProfile = QuotaProfile(5, 60),
        anonymous_policy: QuotaFailurePolicy = QuotaFailurePolicy.FAIL_CLOSED,
        authenticated_policy: QuotaFailurePolicy = QuotaFailurePolicy.FAIL_CLOSED,
    ) -> QuotaTracker:
        return QuotaTracker(
            store=quota_store,
            profiles={"anonymous": anonymous, "authenticated": authenticated},
            failure_policies={"anonymous": anonymous_policy, "authenticated": authenticated_policy},
            clock=clock,
        )

    return _make


@pytest.fixture
def make_handler(make_tracker):
    def _make(
        provider: LLMProvider,
        repository: Optional[InMemoryGuideRepository] = None,
        tracker: Optional[QuotaTracker] = None,
        timeout_seconds: float = 5.0,
    ) -> RequestHandler:
        return RequestHandler(
            guard=InputGuard(),
            quota=tracker or make_tracker(),
            builder=PromptBuilder(),
            orchestrator=GenerationOrchestrator(provider, RetryPolicy()),
            repository=repository or InMemoryGuideRepository(),
            timeout_seconds=timeout_seconds,
        )

    return _make


@pytest.fixture
def user() -> AuthenticatedIdentity:
    return AuthenticatedIdentity(user_id="user-123")


@pytest.fixture
def visitor() -> AnonymousIdentity:
    return AnonymousIdentity(session_id="anon-session-0001")


@pytest.fixture
def valid_guide_json() -> str:
    return VALID_GUIDE_JSON


@pytest.fixture
def truncated_guide_json() -> str:
    return TRUNCATED_GUIDE_JSON


@pytest.fixture
def scripted_provider():
    def _make(*responses: Union[str, Exception], delay: float = 0.0) -> ScriptedProvider:
        return ScriptedProvider(list(responses), delay=delay)

    return _make


@pytest.fixture
def guide_repository() -> InMemoryGuideRepository:
    return InMemoryGuideRepository()


@pytest.fixture
def failing_guide_repository() -> InMemoryGuideRepository:
    return InMemoryGuideRepository(fail=True)
