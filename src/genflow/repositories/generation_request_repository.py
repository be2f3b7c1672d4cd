# src/genflow/repositories/generation_request_repository.py

import logging
from datetime import datetime
from uuid import UUID

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from genflow.models.generation_request import GenerationRequest
from genflow.models.mixins import utcnow
from genflow.models.status import (
    ACTIVE_GENERATION_STATES,
    GenerationStatus,
    validate_generation_transition,
)
from genflow.services.errors import PersistenceError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class GenerationRequestRepository:

    @staticmethod
    def create(db: Session, *, owner_id: str, generation_params: dict) -> GenerationRequest:
        request = GenerationRequest(
            owner_id=owner_id,
            status=GenerationStatus.PENDING.value,
            generation_params=generation_params,
        )

        with tracer.start_as_current_span("db.create_generation_request") as span:
            span.set_attribute("owner_id", owner_id)
            try:
                db.add(request)
                db.commit()
                db.refresh(request)
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to create generation request: {e}") from e

        logger.info("Created generation request id=%s owner=%s", request.id, owner_id)
        return request

    @staticmethod
    def get_by_id(db: Session, request_id: UUID, owner_id: str | None = None) -> GenerationRequest | None:
        with tracer.start_as_current_span("db.get_generation_request") as span:
            span.set_attribute("generation_request.id", str(request_id))

            query = db.query(GenerationRequest).filter(GenerationRequest.id == request_id)
            if owner_id is not None:
                query = query.filter(GenerationRequest.owner_id == owner_id)
            result = query.first()

        logger.debug("Fetched generation request id=%s -> %s", request_id, getattr(result, "status", None))
        return result

    @staticmethod
    def list_for_owner(db: Session, owner_id: str, limit: int = 20):
        with tracer.start_as_current_span("db.list_generation_requests") as span:
            span.set_attribute("owner_id", owner_id)
            return (
                db.query(GenerationRequest)
                .filter(GenerationRequest.owner_id == owner_id)
                .order_by(GenerationRequest.created_at.desc())
                .limit(limit)
                .all()
            )

    @staticmethod
    def list_active_for_owner(db: Session, owner_id: str):
        with tracer.start_as_current_span("db.list_active_generation_requests") as span:
            span.set_attribute("owner_id", owner_id)
            return (
                db.query(GenerationRequest)
                .filter(
                    GenerationRequest.owner_id == owner_id,
                    GenerationRequest.status.in_([s.value for s in ACTIVE_GENERATION_STATES]),
                )
                .order_by(GenerationRequest.created_at.desc())
                .all()
            )

    @staticmethod
    def list_pending(db: Session, limit: int = 100):
        """Oldest pending requests first (served by the status+created_at index)."""
        with tracer.start_as_current_span("db.list_pending_generation_requests"):
            return (
                db.query(GenerationRequest)
                .filter(GenerationRequest.status == GenerationStatus.PENDING.value)
                .order_by(GenerationRequest.created_at.asc())
                .limit(limit)
                .all()
            )

    @staticmethod
    def fail_stale_processing(db: Session, *, updated_before: datetime, error_message: str) -> int:
        """
        Fail requests stuck in processing whose row has not been touched since
        ``updated_before``. Guarded on status and age, so a request that is still
        being worked on and bumps ``updated_at`` is left alone.
        """
        with tracer.start_as_current_span("db.fail_stale_generation_requests") as span:
            span.set_attribute("updated_before", updated_before.isoformat())
            try:
                failed = (
                    db.query(GenerationRequest)
                    .filter(
                        GenerationRequest.status == GenerationStatus.PROCESSING.value,
                        GenerationRequest.updated_at < updated_before,
                    )
                    .update(
                        {
                            GenerationRequest.status: GenerationStatus.FAILED.value,
                            GenerationRequest.error_message: error_message,
                            GenerationRequest.updated_at: utcnow(),
                        },
                        synchronize_session=False,
                    )
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to fail stale generation requests: {e}") from e

        db.expire_all()
        if failed:
            logger.warning("Failed %d generation requests stuck in processing", failed)
        return failed

    @staticmethod
    def transition(
        db: Session,
        request_id: UUID,
        expected: GenerationStatus,
        target: GenerationStatus,
        **fields,
    ) -> bool:
        """
        Compare-and-set the status: the row is updated only if its current
        status is still ``expected``. Returns True when this caller won.
        """
        validate_generation_transition(expected, target)

        with tracer.start_as_current_span("db.transition_generation_request") as span:
            span.set_attribute("generation_request.id", str(request_id))
            span.set_attribute("generation_request.expected", GenerationStatus(expected).value)
            span.set_attribute("generation_request.target", GenerationStatus(target).value)

            values = {
                GenerationRequest.status: GenerationStatus(target).value,
                GenerationRequest.updated_at: utcnow(),
            }
            for name, value in fields.items():
                values[getattr(GenerationRequest, name)] = value

            try:
                updated = (
                    db.query(GenerationRequest)
                    .filter(
                        GenerationRequest.id == request_id,
                        GenerationRequest.status == GenerationStatus(expected).value,
                    )
                    .update(values, synchronize_session=False)
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(
                    f"Failed to update generation request {request_id} to {GenerationStatus(target).value}: {e}"
                ) from e

        db.expire_all()
        if updated:
            logger.info(
                "Generation request %s status %s -> %s",
                request_id, GenerationStatus(expected).value, GenerationStatus(target).value,
            )
        else:
            logger.info(
                "Generation request %s was not %s; skipped transition to %s",
                request_id, GenerationStatus(expected).value, GenerationStatus(target).value,
            )
        return bool(updated)

    @staticmethod
    def claim(db: Session, request_id: UUID) -> bool:
        """pending -> processing; the mutual-exclusion point for duplicate triggers."""
        return GenerationRequestRepository.transition(
            db, request_id, GenerationStatus.PENDING, GenerationStatus.PROCESSING
        )

    @staticmethod
    def mark_completed(db: Session, request_id: UUID, *, media_id: UUID, retry_count: int | None = None) -> bool:
        return GenerationRequestRepository.transition(
            db,
            request_id,
            GenerationStatus.PROCESSING,
            GenerationStatus.COMPLETED,
            result_media_id=media_id,
            retry_count=retry_count,
            error_message=None,
        )

    @staticmethod
    def mark_failed(db: Session, request_id: UUID, *, error_message: str, retry_count: int | None = None) -> bool:
        fields = {"error_message": error_message}
        if retry_count is not None:
            fields["retry_count"] = retry_count
        return GenerationRequestRepository.transition(
            db, request_id, GenerationStatus.PROCESSING, GenerationStatus.FAILED, **fields
        )

    @staticmethod
    def record_retry_count(db: Session, request_id: UUID, retry_count: int) -> None:
        """Persist the running retry count while the request is still in flight."""
        with tracer.start_as_current_span("db.record_generation_retry") as span:
            span.set_attribute("generation_request.id", str(request_id))
            span.set_attribute("retry_count", retry_count)
            try:
                (
                    db.query(GenerationRequest)
                    .filter(
                        GenerationRequest.id == request_id,
                        GenerationRequest.status == GenerationStatus.PROCESSING.value,
                    )
                    .update(
                        {
                            GenerationRequest.retry_count: retry_count,
                            GenerationRequest.updated_at: utcnow(),
                        },
                        synchronize_session=False,
                    )
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to record retry count for {request_id}: {e}") from e
