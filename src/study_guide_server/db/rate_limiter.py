"""
Rate Limiter

Per-identity request quotas over fixed time windows. Counters live in
PostgreSQL (see `quota_store`); this module decides which window a request
belongs to, which limit applies, and what happens when the store is down.

Windows are aligned to the UTC epoch, so a 60-minute window always starts on
the hour and a 480-minute window on 00:00, 08:00 and 16:00 UTC.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, NamedTuple, Tuple, Union

from ..auth.models import AnonymousIdentity, AuthenticatedIdentity
from ..core.errors import QuotaBackendUnavailable
from .quota_store import QuotaStoreProtocol, QuotaStoreUnavailable

logger = logging.getLogger("guide.quota")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

AnyIdentity = Union[AuthenticatedIdentity, AnonymousIdentity]


class QuotaProfile(NamedTuple):
    """Limit and window length applied to one identity kind."""
    limit: int
    window_minutes: int


class QuotaFailurePolicy(str, Enum):
    FAIL_CLOSED = "fail_closed"
    FAIL_OPEN = "fail_open"


class QuotaWindow(NamedTuple):
    """Snapshot of one identity's counter in the current window."""
    identity: str
    window_start: datetime
    count: int
    limit: int
    window_duration_minutes: int


class QuotaDecision(NamedTuple):
    """Admission decision for one request."""
    allowed: bool
    remaining: int
    reset_at: datetime
    limit: int
    count: int
    degraded: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_window(now: datetime, window_minutes: int) -> Tuple[datetime, datetime]:
    """
    Return `(window_start, reset_at)` for the window containing `now`.

    `window_start = floor(now, duration)` measured from the UTC epoch and
    `reset_at = window_start + duration`, hence `reset_at > now` always.
    """
    if window_minutes <= 0:
        raise ValueError("window_minutes must be positive")
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")

    duration = timedelta(minutes=window_minutes)
    elapsed = now.astimezone(timezone.utc) - EPOCH
    window_start = EPOCH + (elapsed // duration) * duration
    return window_start, window_start + duration


class QuotaTracker:
    """
    Enforces per-identity quotas through the store's atomic increment.

    The tracker keeps no counters in memory; every admission decision is
    the result of exactly one `increment_if_under_limit` call.
    """

    def __init__(
        self,
        store: QuotaStoreProtocol,
        profiles: Dict[str, QuotaProfile],
        failure_policies: Dict[str, QuotaFailurePolicy],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Parameters
        ----------
        store : QuotaStoreProtocol
            Persistence collaborator providing the atomic primitive.
        profiles : Dict[str, QuotaProfile]
            Keyed by identity kind ("anonymous", "authenticated").
        failure_policies : Dict[str, QuotaFailurePolicy]
            Behaviour per identity kind when the store is unreachable.
        clock : Callable
            Returns the current timezone-aware time.
        """
        missing = {"anonymous", "authenticated"} - set(profiles)
        if missing:
            raise ValueError(f"Missing quota profile(s): {', '.join(sorted(missing))}")

        self._store = store
        self._profiles = dict(profiles)
        self._policies = dict(failure_policies)
        self._clock = clock

    def profile_for(self, identity: AnyIdentity) -> QuotaProfile:
        return self._profiles[identity.kind]

    def policy_for(self, identity: AnyIdentity) -> QuotaFailurePolicy:
        return self._policies.get(identity.kind, QuotaFailurePolicy.FAIL_CLOSED)

    async def admit(self, identity: AnyIdentity) -> QuotaDecision:
        """
        Admit or deny one request for `identity`.

        Returns
        -------
        QuotaDecision
            `allowed` reflects the store's atomic check-and-increment.

        Raises
        ------
        QuotaBackendUnavailable
            When the store is unreachable and the identity's policy is
            fail-closed.
        """
        profile = self.profile_for(identity)
        now = self._clock()
        window_start, reset_at = compute_window(now, profile.window_minutes)

        try:
            result = await self._store.increment_if_under_limit(
                identity.quota_key,
                identity.kind,
                window_start,
                profile.window_minutes,
                profile.limit,
            )
        except QuotaStoreUnavailable as exc:
            return self._on_store_failure(identity, profile, reset_at, exc)

        allowed = not result.exceeded
        remaining = max(0, profile.limit - result.count)

        logger.info(
            "Quota %s for %s identity (count=%d limit=%d window=%s)",
            "admitted" if allowed else "denied",
            identity.kind,
            result.count,
            profile.limit,
            window_start.isoformat(),
        )

        return QuotaDecision(
            allowed=allowed,
            remaining=remaining,
            reset_at=reset_at,
            limit=profile.limit,
            count=result.count,
        )

    def _on_store_failure(
        self,
        identity: AnyIdentity,
        profile: QuotaProfile,
        reset_at: datetime,
        exc: Exception,
    ) -> QuotaDecision:
        policy = self.policy_for(identity)
        logger.error(
            "Quota store unavailable for %s identity, policy=%s: %s",
            identity.kind,
            policy.value,
            exc,
        )

        if policy is QuotaFailurePolicy.FAIL_OPEN:
            return QuotaDecision(
                allowed=True,
                remaining=0,
                reset_at=reset_at,
                limit=profile.limit,
                count=0,
                degraded=True,
            )

        raise QuotaBackendUnavailable() from exc

    async def usage(self, identity: AnyIdentity) -> QuotaWindow:
        """
        Read the identity's counter for the current window without
        consuming quota.
        """
        profile = self.profile_for(identity)
        window_start, _ = compute_window(self._clock(), profile.window_minutes)

        try:
            count = await self._store.current_count(
                identity.quota_key, identity.kind, window_start
            )
        except QuotaStoreUnavailable as exc:
            raise QuotaBackendUnavailable() from exc

        return QuotaWindow(
            identity=identity.quota_key,
            window_start=window_start,
            count=count,
            limit=profile.limit,
            window_duration_minutes=profile.window_minutes,
        )

    async def reset(self, identity: AnyIdentity) -> int:
        """
        Remove all counters for an identity (administrative).

        Returns
        -------
        int
            Number of counter rows removed.
        """
        try:
            removed = await self._store.delete_identity(identity.quota_key, identity.kind)
        except QuotaStoreUnavailable as exc:
            raise QuotaBackendUnavailable() from exc

        logger.info("Quota reset for %s identity (%d rows)", identity.kind, removed)
        return removed

    async def purge_stale(self) -> int:
        """Delete counters for windows that have already ended."""
        removed = await self._store.purge_expired(self._clock())
        if removed:
            logger.info("Purged %d expired quota counters", removed)
        return removed
