"""
Admin Quota Routes

Operator endpoints to inspect and reset an identity's quota counters, for
support cases such as a user locked out by a misbehaving client.

Security
--------
All endpoints are protected by `verify_admin`, which requires the
`x-admin-key` header. Keys passed in the query string are ignored.
"""

import hmac
from typing import Literal, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Path, Header, status

from .models import QuotaResetResponse, QuotaUsageResponse
from ..auth.models import AnonymousIdentity, AuthenticatedIdentity
from ..config import settings
from ..db.rate_limiter import QuotaTracker
from .dependencies import get_quota_tracker

router = APIRouter(prefix="/admin", tags=["admin"])

IdentityKind = Literal["anonymous", "authenticated"]


# ---------------------------------------------------------------------
# Security Dependency
# ---------------------------------------------------------------------

async def verify_admin(
    x_admin_key: Optional[str] = Header(None, alias="x-admin-key"),
):
    """
    Verify the request is from an admin using the configured API key.
    """
    expected_key = settings.admin_api_key.get_secret_value() if settings.admin_api_key else None

    if not expected_key:
        # No key configured means admin access is disabled
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access is not configured (ADMIN_API_KEY missing)"
        )

    if not x_admin_key or not hmac.compare_digest(x_admin_key.encode(), expected_key.encode()):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing admin API key"
        )


def _identity(kind: IdentityKind, identifier: str) -> Union[AuthenticatedIdentity, AnonymousIdentity]:
    if kind == "authenticated":
        return AuthenticatedIdentity(user_id=identifier)
    return AnonymousIdentity(session_id=identifier)


# ---------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------

@router.get(
    "/quota/{kind}/{identifier}",
    response_model=QuotaUsageResponse,
    dependencies=[Depends(verify_admin)],
)
async def get_quota_usage(
    kind: IdentityKind,
    identifier: str = Path(..., min_length=1, max_length=128),
    tracker: QuotaTracker = Depends(get_quota_tracker),
) -> QuotaUsageResponse:
    window = await tracker.usage(_identity(kind, identifier))
    return QuotaUsageResponse(
        kind=kind,
        identifier=identifier,
        window_start=window.window_start,
        count=window.count,
        limit=window.limit,
        window_minutes=window.window_duration_minutes,
    )


@router.delete(
    "/quota/{kind}/{identifier}",
    response_model=QuotaResetResponse,
    dependencies=[Depends(verify_admin)],
)
async def reset_quota(
    kind: IdentityKind,
    identifier: str = Path(..., min_length=1, max_length=128),
    tracker: QuotaTracker = Depends(get_quota_tracker),
) -> QuotaResetResponse:
    removed = await tracker.reset(_identity(kind, identifier))
    return QuotaResetResponse(removed=removed)
