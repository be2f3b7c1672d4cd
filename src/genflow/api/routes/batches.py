"""
API routes for batch generation.

Endpoints:
- POST /batches - Start a batch of N generations sharing one set of params
- GET /batches - Recent batches for the caller
- GET /batches/active - Pending, processing or paused batches
- GET /batches/{id} - Batch progress
- GET /batches/{id}/media - Media produced so far, in item order
- POST /batches/{id}/pause - Stop after the in-flight item
- POST /batches/{id}/resume - Continue a paused batch
- POST /batches/{id}/cancel - Stop for good
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
from genflow.repositories.batch_job_repository import BatchJobRepository
from genflow.services.batch_orchestrator import BatchOrchestrator
from genflow.services.errors import (
    InvalidParamsError,
    InvalidStateTransitionError,
    JobNotFoundError,
    PersistenceError,
)
from genflow.services.generation_api import GenerationParams
from genflow.services.job_runner import JobRunner, get_job_runner

router = APIRouter(prefix="/batches", tags=["batches"])
tracer = trace.get_tracer(__name__)


class CreateBatchRequest(BaseModel):
    """Request to start a batch."""
    params: GenerationParams
    count: int

    class Config:
        json_schema_extra = {
            "example": {
                "params": {"prompt": "a lighthouse at dusk, oil painting", "model": "flux", "seed": 42},
                "count": 10,
            }
        }


class BatchJobResponse(BaseModel):
    id: UUID
    owner_id: str
    status: str
    total_count: int
    completed_count: int
    failed_count: int
    current_index: int
    generation_params: dict
    result_media_ids: List[str]
    current_item_retry_count: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class GeneratedMediaResponse(BaseModel):
    id: UUID
    url: str
    filename: str
    content_type: str
    size_bytes: int
    width: Optional[int] = None
    height: Optional[int] = None
    prompt: str
    model: str
    seed: Optional[int] = None
    visibility: str
    created_at: datetime

    class Config:
        from_attributes = True


@router.post("", response_model=BatchJobResponse, status_code=status.HTTP_202_ACCEPTED)
def create_batch(
    request: CreateBatchRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    runner: JobRunner = Depends(get_job_runner),
):
    """Start a batch of 1 to 1000 items. Items run one after another in the background."""
    with tracer.start_as_current_span("create_batch"):
        try:
            job = BatchOrchestrator(db).start(user_id, request.params, request.count)
        except InvalidParamsError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

        background_tasks.add_task(runner.run_batch, job.id)
        return job


@router.get("", response_model=List[BatchJobResponse])
def list_batches(
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("list_batches"):
        return BatchOrchestrator(db).list_for_owner(user_id, limit=limit)


@router.get("/active", response_model=List[BatchJobResponse])
def list_active_batches(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("list_active_batches"):
        return BatchOrchestrator(db).list_active_for_owner(user_id)


@router.get("/{batch_id}", response_model=BatchJobResponse)
def get_batch(
    batch_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("get_batch"):
        job = BatchJobRepository.get_by_id(db, batch_id, owner_id=user_id)
        if not job:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Batch not found")
        return job


@router.get("/{batch_id}/media", response_model=List[GeneratedMediaResponse])
def get_batch_media(
    batch_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("get_batch_media"):
        try:
            return BatchOrchestrator(db).get_batch_media(batch_id, user_id)
        except JobNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Batch not found")


def _run_command(command, batch_id: UUID, user_id: str) -> object:
    try:
        return command(batch_id, user_id)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Batch not found")
    except InvalidStateTransitionError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot {e.target_state} batch in status {e.current_state}",
        )


@router.post("/{batch_id}/pause", response_model=BatchJobResponse)
def pause_batch(
    batch_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Pause takes effect after the item currently being generated."""
    with tracer.start_as_current_span("pause_batch"):
        return _run_command(BatchOrchestrator(db).pause, batch_id, user_id)


@router.post("/{batch_id}/resume", response_model=BatchJobResponse)
def resume_batch(
    batch_id: UUID,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    runner: JobRunner = Depends(get_job_runner),
):
    with tracer.start_as_current_span("resume_batch"):
        job = _run_command(BatchOrchestrator(db).resume, batch_id, user_id)
        background_tasks.add_task(runner.run_batch, job.id)
        return job


@router.post("/{batch_id}/cancel", response_model=BatchJobResponse)
def cancel_batch(
    batch_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("cancel_batch"):
        return _run_command(BatchOrchestrator(db).cancel, batch_id, user_id)
