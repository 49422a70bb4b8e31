"""
Database Layer Tests

Model defaults and the SQL issued by the quota store and guide repository,
checked against a scripted session so no database is required.
"""

import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from study_guide_server.auth.models import AnonymousIdentity, AuthenticatedIdentity
from study_guide_server.core.errors import PersistenceFailure
from study_guide_server.db.guide_repository import GuideRepository, input_hash
from study_guide_server.db.models import (
    AnonymousStudyGuide,
    RateLimitUsage,
    StudyGuideRecord,
    UserStudyGuide,
)
from study_guide_server.db.quota_store import QuotaStore, QuotaStoreUnavailable
from study_guide_server.generation.models import GenerationRequest, StructuredGuide
from study_guide_server.guard.input_guard import InputType

WINDOW = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


class FakeResult:
    def __init__(self, value=None, rowcount=0):
        self.value = value
        self.rowcount = rowcount

    def scalar_one_or_none(self):
        return self.value

    def scalar_one(self):
        return self.value


class FakeSession:
    """Async session stand-in that replays scripted results."""

    def __init__(self, *results):
        self.results = list(results)
        self.statements = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def begin(self):
        return self

    async def execute(self, stmt):
        self.statements.append(stmt)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _sql(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def _guide() -> StructuredGuide:
    return StructuredGuide(
        summary="Summary",
        interpretation="Interpretation",
        context="Context",
        related_verses=["Romans 5:8"],
        reflection_questions=["Question?"],
        prayer_points=["Prayer."],
    )


def _request(identity) -> GenerationRequest:
    return GenerationRequest(
        input_type=InputType.SCRIPTURE,
        input_value="John 3:16",
        language="en",
        identity=identity,
    )


DB_DOWN = OperationalError("SELECT 1", {}, Exception("connection refused"))


class TestModels:
    def test_rate_limit_usage_fields(self):
        row = RateLimitUsage(
            identifier="user-1",
            user_type="authenticated",
            window_start=WINDOW,
            window_minutes=60,
            count=1,
        )
        assert row.identifier == "user-1"
        assert row.window_minutes == 60

    def test_window_uniqueness_constraint(self):
        names = {c.name for c in RateLimitUsage.__table__.constraints}
        assert "uq_rate_limit_window" in names

    def test_study_guide_dedup_constraint(self):
        names = {c.name for c in StudyGuideRecord.__table__.constraints}
        assert "uq_study_guide_input" in names

    def test_user_link_cascades(self):
        fk = next(iter(UserStudyGuide.__table__.c.study_guide_id.foreign_keys))
        assert fk.ondelete == "CASCADE"

    def test_anonymous_link_constraints(self):
        table = AnonymousStudyGuide.__table__
        assert "uq_anonymous_study_guide" in {c.name for c in table.constraints}
        targets = {fk.target_fullname for fk in table.foreign_keys}
        assert targets == {"anonymous_sessions.session_id", "study_guides.id"}


class TestQuotaStore:
    async def test_increment_is_single_guarded_upsert(self):
        session = FakeSession(FakeResult(3))
        store = QuotaStore(lambda: session)

        result = await store.increment_if_under_limit("user-1", "authenticated", WINDOW, 60, 5)

        assert result.count == 3
        assert not result.exceeded
        assert len(session.statements) == 1
        sql = _sql(session.statements[0])
        assert "ON CONFLICT ON CONSTRAINT uq_rate_limit_window DO UPDATE" in sql
        assert "WHERE rate_limit_usage.count <" in sql
        assert "RETURNING rate_limit_usage.count" in sql

    async def test_no_returned_row_means_exceeded(self):
        session = FakeSession(FakeResult(None), FakeResult(5))
        store = QuotaStore(lambda: session)

        result = await store.increment_if_under_limit("user-1", "authenticated", WINDOW, 60, 5)

        assert result.exceeded
        assert result.count == 5

    async def test_zero_limit_skips_database(self):
        session = FakeSession()
        result = await QuotaStore(lambda: session).increment_if_under_limit("s", "anonymous", WINDOW, 60, 0)

        assert result.exceeded
        assert session.statements == []

    async def test_database_error_wrapped(self):
        store = QuotaStore(lambda: FakeSession(DB_DOWN))

        with pytest.raises(QuotaStoreUnavailable):
            await store.increment_if_under_limit("user-1", "authenticated", WINDOW, 60, 5)

    async def test_delete_identity_returns_rowcount(self):
        store = QuotaStore(lambda: FakeSession(FakeResult(rowcount=2)))
        assert await store.delete_identity("user-1", "authenticated") == 2


class TestGuideRepository:
    async def test_authenticated_save_links_owner(self):
        guide_id = uuid.uuid4()
        session = FakeSession(FakeResult(), FakeResult(guide_id), FakeResult())

        saved = await GuideRepository(lambda: session).save(
            _guide(), _request(AuthenticatedIdentity(user_id="user-1"))
        )

        assert saved == guide_id
        assert len(session.statements) == 3
        assert "ON CONFLICT ON CONSTRAINT uq_study_guide_input DO NOTHING" in _sql(session.statements[0])
        assert "user_study_guides" in _sql(session.statements[2])

    async def test_anonymous_save_links_session(self):
        guide_id = uuid.uuid4()
        session = FakeSession(FakeResult(), FakeResult(guide_id), FakeResult(), FakeResult())

        saved = await GuideRepository(lambda: session).save(
            _guide(), _request(AnonymousIdentity(session_id="anon-session-0001"))
        )

        assert saved == guide_id
        assert len(session.statements) == 4

        touch_session = _sql(session.statements[2])
        assert "INSERT INTO anonymous_sessions" in touch_session
        assert "ON CONFLICT (session_id) DO UPDATE" in touch_session
        assert "last_activity = now()" in touch_session

        link = _sql(session.statements[3])
        assert "INSERT INTO anonymous_study_guides" in link
        assert "ON CONFLICT ON CONSTRAINT uq_anonymous_study_guide DO NOTHING" in link

    async def test_authenticated_save_does_not_touch_anonymous_tables(self):
        session = FakeSession(FakeResult(), FakeResult(uuid.uuid4()), FakeResult())

        await GuideRepository(lambda: session).save(
            _guide(), _request(AuthenticatedIdentity(user_id="user-1"))
        )

        assert all("anonymous" not in _sql(stmt) for stmt in session.statements)

    async def test_database_error_is_persistence_failure(self):
        repo = GuideRepository(lambda: FakeSession(DB_DOWN))

        with pytest.raises(PersistenceFailure):
            await repo.save(_guide(), _request(AuthenticatedIdentity(user_id="user-1")))


def test_input_hash_ignores_case_and_spacing():
    assert input_hash("John 3:16") == input_hash("  john   3:16 ")
    assert input_hash("John 3:16") != input_hash("John 3:17")
