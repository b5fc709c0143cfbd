"""Blueprint generation API endpoints.

- POST /api/blueprints - Create a pending blueprint and start generation in the background
- POST /api/blueprints/{blueprint_id}/retry - Restart generation for a failed or stuck blueprint
- GET /api/blueprints/{blueprint_id} - Generation status, output and retry state

Generation never blocks the request: both POST endpoints return 202 as soon as
the blueprint row is committed.
"""

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from consum.api.dependencies import get_dispatcher, get_uow_factory
from consum.models.blueprint import Blueprint, BlueprintStatus, InvalidStateTransition
from consum.models.generation_request import ProviderName
from consum.services.generation.prompts import build_generation_request
from consum.workers.dispatcher import GenerationDispatcher

logger = structlog.get_logger()
router = APIRouter(prefix="/api/blueprints", tags=["blueprints"])


# Request/Response Models


class CreateBlueprintRequest(BaseModel):
    """Request model for a new blueprint."""

    user_id: str = Field(..., description="Opaque user id from the identity provider", min_length=1)
    content_type: Literal["youtube", "text"] = Field(..., description="Kind of source content")
    content_source: str = Field(
        ..., description="YouTube URL or the pasted text itself", min_length=1
    )
    content: Optional[str] = Field(
        default=None,
        description="Transcript text to analyze (defaults to content_source for text input)",
    )
    goal: Optional[str] = Field(default=None, description="Optional user focus", max_length=2000)
    title: Optional[str] = Field(default=None, max_length=500)
    provider: Optional[ProviderName] = Field(
        default=None, description="Override the configured LLM provider"
    )

    @model_validator(mode="after")
    def require_content(self) -> "CreateBlueprintRequest":
        if self.content is None and self.content_type == "text":
            self.content = self.content_source
        if not (self.content or "").strip():
            raise ValueError("content is required: pass the transcript text for youtube sources")
        return self


class RetryBlueprintRequest(BaseModel):
    provider: Optional[ProviderName] = None


class BlueprintAcceptedResponse(BaseModel):
    blueprint_id: UUID
    status: BlueprintStatus


class GenerationJobDTO(BaseModel):
    """Live retry job for a blueprint."""

    retry_count: int
    next_retry_at: datetime
    error_type: Optional[str] = None
    last_error: Optional[str] = None


class BlueprintResponse(BaseModel):
    id: UUID
    user_id: str
    title: Optional[str] = None
    goal: Optional[str] = None
    content_type: str
    status: BlueprintStatus
    ai_output: Optional[dict[str, Any]] = None
    job: Optional[GenerationJobDTO] = None
    created_at: datetime
    updated_at: datetime


# API Endpoints


@router.post("", response_model=BlueprintAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_blueprint(
    body: CreateBlueprintRequest,
    uow_factory=Depends(get_uow_factory),
    dispatcher: GenerationDispatcher = Depends(get_dispatcher),
) -> BlueprintAcceptedResponse:
    """Create a pending blueprint and fire its first generation attempt.

    The generation payload is stored on the blueprint so retries and orphan
    recovery regenerate from the same input.
    """
    generation_request = build_generation_request(
        body.goal,
        body.content or body.content_source,
        provider=body.provider,
        metadata={"user_id": body.user_id, "content_type": body.content_type},
    )

    async with await uow_factory() as uow:
        blueprint = await uow.blueprints.add(
            Blueprint(
                user_id=body.user_id,
                goal=body.goal,
                content_source=body.content_source,
                content_type=body.content_type,
                title=body.title,
                request_data=generation_request.to_json(),
            )
        )
        blueprint_id = blueprint.id

    logger.info(
        "blueprint.created",
        blueprint_id=str(blueprint_id),
        user_id=body.user_id,
        content_type=body.content_type,
        provider=body.provider,
    )

    dispatcher.submit(blueprint_id, generation_request)
    return BlueprintAcceptedResponse(blueprint_id=blueprint_id, status=BlueprintStatus.PENDING)


@router.post(
    "/{blueprint_id}/retry",
    response_model=BlueprintAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_blueprint(
    blueprint_id: UUID,
    body: Optional[RetryBlueprintRequest] = None,
    uow_factory=Depends(get_uow_factory),
    dispatcher: GenerationDispatcher = Depends(get_dispatcher),
) -> BlueprintAcceptedResponse:
    """Restart generation for a blueprint.

    Any live retry job is deleted first, which cancels its chain.

    Raises:
        HTTPException 404: Blueprint not found
        HTTPException 409: Blueprint already completed, or nothing to regenerate from
    """
    async with await uow_factory() as uow:
        blueprint = await uow.blueprints.get_by_id(blueprint_id)
        if blueprint is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Blueprint not found")

        generation_request = blueprint.generation_request
        if generation_request is None and blueprint.content_type == "text":
            generation_request = build_generation_request(blueprint.goal, blueprint.content_source)
        if generation_request is None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=(
                    "Blueprint has no stored generation request. "
                    "Create a new blueprint instead."
                ),
            )

        if body is not None and body.provider is not None:
            generation_request = generation_request.model_copy(update={"provider": body.provider})

        try:
            blueprint.reset_for_retry(generation_request)
        except InvalidStateTransition as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

        purged = await uow.generation_jobs.delete_jobs_for_blueprint(blueprint_id)
        uow.session.add(blueprint)

    logger.info("blueprint.retry_requested", blueprint_id=str(blueprint_id), purged_jobs=purged)

    dispatcher.submit(blueprint_id, generation_request)
    return BlueprintAcceptedResponse(blueprint_id=blueprint_id, status=BlueprintStatus.PENDING)


@router.get("/{blueprint_id}", response_model=BlueprintResponse)
async def get_blueprint(
    blueprint_id: UUID,
    uow_factory=Depends(get_uow_factory),
) -> BlueprintResponse:
    """Current status of a blueprint, its output once completed, and its live retry job."""
    async with await uow_factory() as uow:
        blueprint = await uow.blueprints.get_by_id(blueprint_id)
        if blueprint is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Blueprint not found")
        job = await uow.generation_jobs.get_by_blueprint(blueprint_id)

    return BlueprintResponse(
        id=blueprint.id,
        user_id=blueprint.user_id,
        title=blueprint.title,
        goal=blueprint.goal,
        content_type=blueprint.content_type,
        status=blueprint.status,
        ai_output=blueprint.ai_output,
        job=(
            GenerationJobDTO(
                retry_count=job.retry_count,
                next_retry_at=job.next_retry_at,
                error_type=job.error_type,
                last_error=job.last_error,
            )
            if job is not None
            else None
        ),
        created_at=blueprint.created_at,
        updated_at=blueprint.updated_at,
    )
