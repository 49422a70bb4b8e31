"""
Global Error Handling

This module defines the typed failure taxonomy of the generation pipeline
and the application-wide exception handlers that render it.

Design Goals
------------
- Every failure category is a distinct type with its own status code
- Never leak provider error text or stack traces to clients
- Always return deterministic, machine-readable error responses
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("guide.errors")


# ---------------------------------------------------------------------
# Failure Taxonomy
# ---------------------------------------------------------------------

class PipelineError(RuntimeError):
    """
    Base class for caller-visible pipeline failures.

    Subclasses fix `code`, `status_code` and `public_message`; the public
    message is the only text that ever reaches the end user.
    """

    code: str = "pipeline_error"
    status_code: int = 500
    public_message: str = "The request could not be completed."

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.public_message}

    def headers(self) -> Optional[Dict[str, str]]:
        return None


class InputRejected(PipelineError):
    code = "input_rejected"
    status_code = 400
    public_message = "The input was rejected."

    def __init__(self, category: str, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"input rejected: {category}")
        self.category = category
        self.detail = detail or {}

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["category"] = self.category
        payload["detail"] = _INPUT_MESSAGES.get(self.category, self.public_message)
        return payload


class QuotaExceeded(PipelineError):
    code = "rate_limited"
    status_code = 429
    public_message = "Request quota exceeded. Try again after the reset time."

    def __init__(self, reset_at: datetime) -> None:
        super().__init__(f"quota exceeded until {reset_at.isoformat()}")
        self.reset_at = reset_at

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["reset_at"] = self.reset_at.isoformat()
        return payload

    def headers(self) -> Optional[Dict[str, str]]:
        seconds = (self.reset_at - datetime.now(timezone.utc)).total_seconds()
        return {"Retry-After": str(max(1, int(seconds + 0.999)))}


class QuotaBackendUnavailable(PipelineError):
    """Quota store unreachable and the identity's policy is fail-closed."""

    code = "quota_unavailable"
    status_code = 503
    public_message = "Usage limits cannot be verified right now. Please try again shortly."


class ProviderUnavailable(PipelineError):
    code = "provider_unavailable"
    status_code = 503
    public_message = "The content generator is temporarily unavailable."


class ParseExhausted(PipelineError):
    code = "parse_exhausted"
    status_code = 502
    public_message = "The content generator returned an unusable response. Please try again."

    def __init__(self, last_error: Optional[str] = None) -> None:
        super().__init__(f"parse exhausted: {last_error}")
        self.last_error = last_error


class PipelineTimeout(PipelineError):
    code = "timeout"
    status_code = 504
    public_message = "Generation took too long and was abandoned."


class PersistenceFailure(PipelineError):
    """
    Raised when a generated guide could not be stored.

    Distinct from generation failures: the guide exists and the caller may
    retry persistence instead of regenerating.
    """

    code = "persistence_failed"
    status_code = 500
    public_message = "The study guide was generated but could not be saved."

    def __init__(self, message: str = "persistence failed", content: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.content = content

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.content is not None:
            payload["content"] = self.content
        return payload


_INPUT_MESSAGES: Dict[str, str] = {
    "TOO_LONG": "Input exceeds the maximum allowed length.",
    "EMPTY": "Input cannot be empty.",
    "INJECTION_SUSPECTED": "Input contains content that is not allowed.",
    "MALFORMED_REFERENCE": "Scripture reference is not in a recognised format (e.g. \"John 3:16\").",
    "HIGH_RISK": "Input was flagged as high risk.",
}


# ---------------------------------------------------------------------
# Public Exception Handlers
# ---------------------------------------------------------------------

async def pipeline_error_handler(
    request: Request,
    exc: PipelineError,
) -> JSONResponse:
    """
    Render a typed pipeline failure with its stable public message.
    """
    logger.warning(
        "Pipeline failure %s during %s %s",
        exc.code,
        request.method,
        request.url.path,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(),
        headers=exc.headers(),
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Catch-all handler for uncaught exceptions.

    This handler should be registered with FastAPI as the final safety net
    for any exception not otherwise handled by route-level or framework-level
    handlers.

    Behavior
    --------
    - Logs the full exception stack trace for internal diagnostics.
    - Returns a generic 500 error to the client with no internal details.

    Parameters
    ----------
    request : Request
        The incoming HTTP request that triggered the exception.

    exc : Exception
        The uncaught exception instance.

    Returns
    -------
    JSONResponse
        A JSON 500 response with a minimal error payload.
    """

    # Log full traceback internally (never returned to client)
    logger.exception(
        "Unhandled exception during request: %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
    )

    payload: Dict[str, Any] = {
        "error": "internal_server_error",
        "detail": "Internal server error",
    }

    return JSONResponse(
        status_code=500,
        content=payload,
    )
