"""
Database Package

Provides SQLAlchemy async session management, model definitions and the
PostgreSQL-backed stores for quota counters and study guides.
"""

from .session import async_engine, AsyncSessionLocal, create_tables
from .models import (
    Base,
    RateLimitUsage,
    StudyGuideRecord,
    UserStudyGuide,
    AnonymousSession,
    AnonymousStudyGuide,
)
from .quota_store import QuotaStore, QuotaStoreUnavailable
from .guide_repository import GuideRepository

__all__ = [
    "async_engine",
    "AsyncSessionLocal",
    "create_tables",
    "Base",
    "RateLimitUsage",
    "StudyGuideRecord",
    "UserStudyGuide",
    "AnonymousSession",
    "AnonymousStudyGuide",
    "QuotaStore",
    "QuotaStoreUnavailable",
    "GuideRepository",
]
