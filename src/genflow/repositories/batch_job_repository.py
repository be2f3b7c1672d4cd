# src/genflow/repositories/batch_job_repository.py

import logging
from typing import Iterable
from uuid import UUID

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from genflow.models.batch_job import BatchJob
from genflow.models.mixins import utcnow
from genflow.models.status import (
    ACTIVE_BATCH_STATES,
    BatchStatus,
    batch_sources_for,
    validate_batch_transition,
)
from genflow.services.errors import PersistenceError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Statuses in which an in-flight item may still commit its result.
_RESULT_ACCEPTING_STATES = (BatchStatus.PROCESSING.value, BatchStatus.PAUSED.value)


class BatchJobRepository:

    @staticmethod
    def create(db: Session, *, owner_id: str, total_count: int, generation_params: dict) -> BatchJob:
        job = BatchJob(
            owner_id=owner_id,
            status=BatchStatus.PENDING.value,
            total_count=total_count,
            completed_count=0,
            failed_count=0,
            current_index=0,
            generation_params=generation_params,
            result_media_ids=[],
            consecutive_failures=0,
        )

        with tracer.start_as_current_span("db.create_batch_job") as span:
            span.set_attribute("owner_id", owner_id)
            span.set_attribute("batch.total_count", total_count)
            try:
                db.add(job)
                db.commit()
                db.refresh(job)
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to create batch job: {e}") from e

        logger.info("Created batch job id=%s owner=%s total=%d", job.id, owner_id, total_count)
        return job

    @staticmethod
    def get_by_id(db: Session, batch_id: UUID, owner_id: str | None = None) -> BatchJob | None:
        with tracer.start_as_current_span("db.get_batch_job") as span:
            span.set_attribute("batch.id", str(batch_id))
            query = db.query(BatchJob).filter(BatchJob.id == batch_id)
            if owner_id is not None:
                query = query.filter(BatchJob.owner_id == owner_id)
            return query.first()

    @staticmethod
    def list_for_owner(db: Session, owner_id: str, limit: int = 10):
        with tracer.start_as_current_span("db.list_batch_jobs") as span:
            span.set_attribute("owner_id", owner_id)
            return (
                db.query(BatchJob)
                .filter(BatchJob.owner_id == owner_id)
                .order_by(BatchJob.created_at.desc())
                .limit(limit)
                .all()
            )

    @staticmethod
    def list_active_for_owner(db: Session, owner_id: str):
        with tracer.start_as_current_span("db.list_active_batch_jobs") as span:
            span.set_attribute("owner_id", owner_id)
            return (
                db.query(BatchJob)
                .filter(
                    BatchJob.owner_id == owner_id,
                    BatchJob.status.in_([s.value for s in ACTIVE_BATCH_STATES]),
                )
                .order_by(BatchJob.created_at.desc())
                .all()
            )

    @staticmethod
    def list_runnable(db: Session, limit: int = 100):
        """Pending or processing batches, oldest first. Paused batches wait for resume."""
        with tracer.start_as_current_span("db.list_runnable_batch_jobs"):
            return (
                db.query(BatchJob)
                .filter(BatchJob.status.in_([BatchStatus.PENDING.value, BatchStatus.PROCESSING.value]))
                .order_by(BatchJob.created_at.asc())
                .limit(limit)
                .all()
            )

    @staticmethod
    def transition(
        db: Session,
        batch_id: UUID,
        target: BatchStatus,
        *,
        expected: Iterable[BatchStatus] | None = None,
        owner_id: str | None = None,
        **fields,
    ) -> bool:
        """
        Compare-and-set the batch status. ``expected`` defaults to every
        status from which ``target`` is reachable. Returns True when the row
        was updated.
        """
        target = BatchStatus(target)
        sources = [BatchStatus(s) for s in expected] if expected is not None else list(batch_sources_for(target))
        for source in sources:
            validate_batch_transition(source, target)

        with tracer.start_as_current_span("db.transition_batch_job") as span:
            span.set_attribute("batch.id", str(batch_id))
            span.set_attribute("batch.target", target.value)

            values = {BatchJob.status: target.value, BatchJob.updated_at: utcnow()}
            for name, value in fields.items():
                values[getattr(BatchJob, name)] = value

            query = db.query(BatchJob).filter(
                BatchJob.id == batch_id,
                BatchJob.status.in_([s.value for s in sources]),
            )
            if owner_id is not None:
                query = query.filter(BatchJob.owner_id == owner_id)

            try:
                updated = query.update(values, synchronize_session=False)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to update batch {batch_id} to {target.value}: {e}") from e

        db.expire_all()
        logger.info(
            "Batch %s transition -> %s %s",
            batch_id, target.value, "applied" if updated else "skipped",
        )
        return bool(updated)

    @staticmethod
    def record_item_result(
        db: Session,
        batch_id: UUID,
        *,
        item_index: int,
        success: bool,
        media_id: UUID | None = None,
        retry_count: int | None = None,
    ) -> BatchJob | None:
        """
        Commit one item's outcome and advance the cursor.

        Runs as a locked read-modify-write and only applies while the batch
        still accepts results and ``current_index == item_index``. A cancel
        that landed mid-item, or a duplicate runner for the same index,
        gets None back and nothing is counted.
        """
        with tracer.start_as_current_span("db.record_batch_item_result") as span:
            span.set_attribute("batch.id", str(batch_id))
            span.set_attribute("batch.item_index", item_index)
            span.set_attribute("batch.item_success", success)

            try:
                job = (
                    db.query(BatchJob)
                    .filter(BatchJob.id == batch_id)
                    .with_for_update()
                    .populate_existing()
                    .first()
                )
                if job is None:
                    db.rollback()
                    return None

                if job.status not in _RESULT_ACCEPTING_STATES or job.current_index != item_index:
                    logger.info(
                        "Dropping result for batch %s item %d (status=%s, current_index=%d)",
                        batch_id, item_index, job.status, job.current_index,
                    )
                    db.rollback()
                    return None

                if success:
                    job.completed_count += 1
                    if media_id is not None:
                        # New list object so the JSON column is flagged dirty
                        job.result_media_ids = [*job.result_media_ids, str(media_id)]
                    job.consecutive_failures = 0
                else:
                    job.failed_count += 1
                    job.consecutive_failures += 1

                job.current_index = item_index + 1
                job.current_item_retry_count = retry_count or 0
                job.updated_at = utcnow()

                if job.current_index >= job.total_count:
                    validate_batch_transition(job.status, BatchStatus.COMPLETED)
                    job.status = BatchStatus.COMPLETED.value

                db.commit()
                db.refresh(job)
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to record result for batch {batch_id} item {item_index}: {e}") from e

        logger.info(
            "Batch %s item %d recorded (%s): %d/%d done, %d failed",
            batch_id,
            item_index,
            "ok" if success else "failed",
            job.completed_count,
            job.total_count,
            job.failed_count,
        )
        return job

    @staticmethod
    def record_item_retry(db: Session, batch_id: UUID, *, item_index: int, retry_count: int) -> None:
        with tracer.start_as_current_span("db.record_batch_item_retry") as span:
            span.set_attribute("batch.id", str(batch_id))
            span.set_attribute("retry_count", retry_count)
            try:
                (
                    db.query(BatchJob)
                    .filter(
                        BatchJob.id == batch_id,
                        BatchJob.current_index == item_index,
                        BatchJob.status.in_(_RESULT_ACCEPTING_STATES),
                    )
                    .update(
                        {BatchJob.current_item_retry_count: retry_count, BatchJob.updated_at: utcnow()},
                        synchronize_session=False,
                    )
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to record retry count for batch {batch_id}: {e}") from e
