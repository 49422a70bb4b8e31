"""
Identity Resolution

This module turns request credentials into a resolved `Identity`:

1. A bearer JWT (HS256, issued by the auth provider) yields an
   `AuthenticatedIdentity` from its `sub` claim.
2. Without a bearer token, an `X-Session-Id` header yields an
   `AnonymousIdentity`.
3. Neither present is a 401.

Security Model
--------------
- A bearer token that is present but invalid is rejected outright; it never
  silently downgrades to an anonymous identity.
- Token verification failures never echo token contents back to the client.
"""

from __future__ import annotations

import re
from typing import Optional, Union

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..config import settings
from .models import AnonymousIdentity, AuthenticatedIdentity


# ---------------------------------------------------------------------
# Security Scheme
# ---------------------------------------------------------------------

security = HTTPBearer(auto_error=False)

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{8,128}$")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class JWTVerificationError(RuntimeError):
    """Raised internally when token verification cannot be configured."""


# ---------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------

def _validate_jwt_config() -> None:
    if not settings.jwt_secret:
        raise JWTVerificationError("Missing jwt_secret in configuration.")
    if not settings.JWT_ALGO:
        raise JWTVerificationError("Missing JWT_ALGO in configuration.")


def _decode_user_token(token: str) -> dict:
    """
    Decode and validate a user access token.

    Raises
    ------
    Various JWT-related exceptions, which the public wrapper handles.
    """
    _validate_jwt_config()

    return jwt.decode(
        token,
        settings.jwt_secret.get_secret_value(),
        algorithms=[settings.JWT_ALGO],
        audience=settings.jwt_audience,
        options={"require": ["sub", "exp", "aud"]},
    )


def verify_bearer_token(token: str) -> AuthenticatedIdentity:
    """
    Verify a bearer token and build an AuthenticatedIdentity.

    Raises
    ------
    HTTPException(401) for invalid or expired tokens.
    """
    try:
        payload = _decode_user_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired.",
        )
    except jwt.InvalidAudienceError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token audience.",
        )
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or malformed token.",
        )
    except JWTVerificationError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="JWT verification configuration error.",
        )

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token missing 'sub' claim.",
        )

    return AuthenticatedIdentity(user_id=subject)


# ---------------------------------------------------------------------
# Public Authentication Dependency
# ---------------------------------------------------------------------

def resolve_identity(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_session_id: Optional[str] = Header(None, alias="x-session-id"),
) -> Union[AuthenticatedIdentity, AnonymousIdentity]:
    """
    FastAPI dependency producing the caller's Identity.

    Returns
    -------
    AuthenticatedIdentity | AnonymousIdentity

    Raises
    ------
    HTTPException(401) when no usable credential is present.
    """
    if creds is not None:
        return verify_bearer_token(creds.credentials)

    if x_session_id:
        if not SESSION_ID_PATTERN.match(x_session_id):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid anonymous session id.",
            )
        return AnonymousIdentity(session_id=x_session_id)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required.",
    )
