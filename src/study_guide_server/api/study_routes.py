"""
Study Routes: Study Guide Generation

This module exposes the single public generation endpoint. It resolves the
caller's identity, hands the request to the `RequestHandler` and maps the
pipeline outcome onto HTTP.

Outcome mapping
---------------
- ACCEPTED            -> 200 with the stored guide and quota state
- REJECTED_INPUT      -> 400 with the validation category
- RATE_LIMITED        -> 429 with `reset_at` and a Retry-After header
- GENERATION_FAILED   -> 502 (parse_exhausted), 503 (provider_unavailable),
                         504 (timeout)
- PERSISTENCE_FAILED  -> 500 carrying the generated content

Error bodies are rendered by `core.errors.pipeline_error_handler` and only
ever contain fixed public messages.
"""

from typing import Annotated, Union

from fastapi import APIRouter, Depends

from .models import (
    RateLimitInfo,
    StudyGenerateRequest,
    StudyGenerateResponse,
    StudyGuideContent,
    StudyGuideData,
    StudyGuideInput,
)
from ..auth.models import AnonymousIdentity, AuthenticatedIdentity
from ..auth.security import resolve_identity
from ..generation.models import GenerationRequest
from ..pipeline.handler import PipelineResponse, RequestHandler
from .dependencies import get_request_handler

router = APIRouter(prefix="/study", tags=["study"])


def _to_http(result: PipelineResponse) -> StudyGenerateResponse:
    error = result.as_error()
    if error is not None:
        raise error

    quota = result.quota
    return StudyGenerateResponse(
        data=StudyGuideData(
            id=result.guide_id,
            input=StudyGuideInput(
                type=result.request.input_type,
                value=result.request.input_value,
                language=result.request.language,
            ),
            content=StudyGuideContent(**result.guide.model_dump()),
        ),
        rate_limit=RateLimitInfo(
            limit=quota.limit,
            remaining=quota.remaining,
            reset_at=quota.reset_at,
            degraded=quota.degraded,
        ) if quota is not None else None,
    )


@router.post(
    "/generate",
    response_model=StudyGenerateResponse,
    summary="Generate a Bible study guide",
)
async def generate_study_guide(
    body: StudyGenerateRequest,
    identity: Annotated[Union[AuthenticatedIdentity, AnonymousIdentity], Depends(resolve_identity)],
    handler: Annotated[RequestHandler, Depends(get_request_handler)],
) -> StudyGenerateResponse:
    request = GenerationRequest(
        input_type=body.input_type,
        input_value=body.input_value,
        language=body.language,
        identity=identity,
    )
    result = await handler.handle(request)
    return _to_http(result)
