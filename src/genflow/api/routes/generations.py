"""
API routes for single generation requests.

Endpoints:
- POST /generations - Queue a generation; processing runs in the background
- GET /generations - Recent requests for the caller
- GET /generations/active - Pending or processing requests for the caller
- GET /generations/{id} - One request
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from opentelemetry import trace
from pydantic import BaseModel
from sqlalchemy.orm import Session

from genflow.auth.clerk import get_current_user_id
from genflow.db.database import get_db
from genflow.repositories.generation_request_repository import GenerationRequestRepository
from genflow.services.errors import PersistenceError
from genflow.services.generation_api import GenerationParams
from genflow.services.job_runner import JobRunner, get_job_runner
from genflow.services.rate_limiter import (
    SlidingWindowRateLimiter,
    build_rate_limit_key,
    get_rate_limit_rule,
)

router = APIRouter(prefix="/generations", tags=["generations"])
tracer = trace.get_tracer(__name__)


class GenerationRequestResponse(BaseModel):
    id: UUID
    owner_id: str
    status: str
    generation_params: dict
    error_message: Optional[str] = None
    result_media_id: Optional[UUID] = None
    retry_count: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


def _reject_if_rate_limited(db: Session, user_id: str) -> None:
    # Peek only; the pipeline consumes the slot when the call is made.
    rule = get_rate_limit_rule("generate", user_id)
    try:
        decision = SlidingWindowRateLimiter(db).status(
            build_rate_limit_key("generate", user_id), rule.limit, rule.window_ms
        )
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    if not decision.allowed:
        retry_after_s = max(1, -(-decision.retry_after_ms // 1000))
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
            headers={"Retry-After": str(retry_after_s)},
        )


@router.post("", response_model=GenerationRequestResponse, status_code=status.HTTP_202_ACCEPTED)
def create_generation(
    params: GenerationParams,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    runner: JobRunner = Depends(get_job_runner),
):
    """
    Record a pending generation request and start processing it.
    The response returns immediately; poll GET /generations/{id} for the result.
    """
    with tracer.start_as_current_span("create_generation"):
        _reject_if_rate_limited(db, user_id)

        try:
            request = GenerationRequestRepository.create(
                db,
                owner_id=user_id,
                generation_params=params.model_dump(exclude_none=True),
            )
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

        background_tasks.add_task(runner.run_generation, request.id)
        return request


@router.get("", response_model=List[GenerationRequestResponse])
def list_generations(
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("list_generations"):
        return GenerationRequestRepository.list_for_owner(db, user_id, limit=limit)


@router.get("/active", response_model=List[GenerationRequestResponse])
def list_active_generations(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("list_active_generations"):
        return GenerationRequestRepository.list_active_for_owner(db, user_id)


@router.get("/{request_id}", response_model=GenerationRequestResponse)
def get_generation(
    request_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("get_generation"):
        request = GenerationRequestRepository.get_by_id(db, request_id, owner_id=user_id)
        if not request:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")
        return request
