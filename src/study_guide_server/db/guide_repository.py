"""
Guide Repository

Stores generated study guides. Content is shared: the same input, type and
language map to one `study_guides` row no matter how many users ask for it.
Each caller also gets a link row so the guide shows up in their history:
`user_study_guides` for authenticated users, `anonymous_study_guides` for
anonymous sessions. Saving for an anonymous session also records the session
and bumps its last activity.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import PersistenceFailure
from ..generation.models import GenerationRequest, StructuredGuide
from .models import AnonymousSession, AnonymousStudyGuide, StudyGuideRecord, UserStudyGuide

logger = logging.getLogger("guide.persistence")


def input_hash(input_value: str) -> str:
    """Case- and whitespace-insensitive key for deduplicating inputs."""
    normalized = " ".join(input_value.lower().split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


class GuideRepositoryProtocol(Protocol):
    async def save(self, guide: StructuredGuide, request: GenerationRequest) -> uuid.UUID: ...


class GuideRepository:
    """
    PostgreSQL persistence for study guides and their user or session links.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, guide: StructuredGuide, request: GenerationRequest) -> uuid.UUID:
        """
        Persist `guide` for `request` and return its id.

        Re-saving the same input returns the existing row's id; the content
        row is never overwritten.

        Raises
        ------
        PersistenceFailure
            On any database error.
        """
        digest = input_hash(request.input_value)

        content_stmt = (
            pg_insert(StudyGuideRecord)
            .values(
                id=uuid.uuid4(),
                input_type=request.input_type.value,
                input_value=request.input_value,
                input_value_hash=digest,
                language=request.language,
                summary=guide.summary,
                interpretation=guide.interpretation,
                context=guide.context,
                related_verses=list(guide.related_verses),
                reflection_questions=list(guide.reflection_questions),
                prayer_points=list(guide.prayer_points),
            )
            .on_conflict_do_nothing(constraint="uq_study_guide_input")
        )

        lookup = select(StudyGuideRecord.id).where(
            StudyGuideRecord.input_type == request.input_type.value,
            StudyGuideRecord.input_value_hash == digest,
            StudyGuideRecord.language == request.language,
        )

        user_id: Optional[str] = getattr(request.identity, "user_id", None)
        session_id: Optional[str] = getattr(request.identity, "session_id", None)

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(content_stmt)
                    guide_id = (await session.execute(lookup)).scalar_one()

                    if user_id is not None:
                        await session.execute(
                            pg_insert(UserStudyGuide)
                            .values(user_id=user_id, study_guide_id=guide_id)
                            .on_conflict_do_nothing(constraint="uq_user_study_guide")
                        )
                    elif session_id is not None:
                        await session.execute(
                            pg_insert(AnonymousSession)
                            .values(session_id=session_id)
                            .on_conflict_do_update(
                                index_elements=[AnonymousSession.session_id],
                                set_={"last_activity": func.now()},
                            )
                        )
                        await session.execute(
                            pg_insert(AnonymousStudyGuide)
                            .values(session_id=session_id, study_guide_id=guide_id)
                            .on_conflict_do_nothing(constraint="uq_anonymous_study_guide")
                        )
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Failed to persist study guide: %s", exc)
            raise PersistenceFailure("study guide could not be saved") from exc

        logger.info(
            "Stored study guide %s (type=%s language=%s owner=%s)",
            guide_id,
            request.input_type.value,
            request.language,
            request.identity.kind,
        )
        return guide_id
