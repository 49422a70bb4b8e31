"""
SQLAlchemy Models

Defines the database schema for:
- Quota counters for rate limiting (one row per identity per window)
- Generated study guide content (shared cache keyed by input hash)
- Ownership links between authenticated users and study guides
- Anonymous sessions and their links to study guides
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import List

from sqlalchemy import (
    String,
    Integer,
    Text,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Quota Counter Model (Rate Limiting)
# ---------------------------------------------------------------------

class RateLimitUsage(Base):
    """
    Request counter for one identity in one fixed window.

    Rows are never reset in place: a new window gets a new row and old rows
    are purged in the background.
    """
    __tablename__ = "rate_limit_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identifier: Mapped[str] = mapped_column(String(128), nullable=False)
    user_type: Mapped[str] = mapped_column(String(16), nullable=False)  # anonymous | authenticated
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("identifier", "user_type", "window_start", name="uq_rate_limit_window"),
        Index("idx_rate_limit_window_start", "window_start"),
    )


# ---------------------------------------------------------------------
# Study Guide Content Model
# ---------------------------------------------------------------------

class StudyGuideRecord(Base):
    """
    Generated study guide content, deduplicated per input and language.
    """
    __tablename__ = "study_guides"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    input_type: Mapped[str] = mapped_column(String(16), nullable=False)
    input_value: Mapped[str] = mapped_column(Text, nullable=False)
    input_value_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    language: Mapped[str] = mapped_column(String(8), nullable=False)

    summary: Mapped[str] = mapped_column(Text, nullable=False)
    interpretation: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[str] = mapped_column(Text, nullable=False)
    related_verses: Mapped[List[str]] = mapped_column(JSONB, nullable=False)
    reflection_questions: Mapped[List[str]] = mapped_column(JSONB, nullable=False)
    prayer_points: Mapped[List[str]] = mapped_column(JSONB, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("input_type", "input_value_hash", "language", name="uq_study_guide_input"),
    )


# ---------------------------------------------------------------------
# Ownership Link Model
# ---------------------------------------------------------------------

class UserStudyGuide(Base):
    """
    Link between an authenticated user and a cached study guide.
    """
    __tablename__ = "user_study_guides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    study_guide_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("study_guides.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "study_guide_id", name="uq_user_study_guide"),
        Index("idx_user_study_guides_user", "user_id"),
    )


# ---------------------------------------------------------------------
# Anonymous Session Models
# ---------------------------------------------------------------------

class AnonymousSession(Base):
    """
    A client-generated session id seen on at least one stored guide.
    """
    __tablename__ = "anonymous_sessions"

    session_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    last_activity: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class AnonymousStudyGuide(Base):
    """
    Link between an anonymous session and a cached study guide.
    """
    __tablename__ = "anonymous_study_guides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("anonymous_sessions.session_id", ondelete="CASCADE"),
        nullable=False,
    )
    study_guide_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("study_guides.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("session_id", "study_guide_id", name="uq_anonymous_study_guide"),
        Index("idx_anonymous_study_guides_session", "session_id"),
    )
