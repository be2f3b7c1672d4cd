"""
Batch orchestration: runs a BatchJob one item at a time and handles the
owner's pause, resume and cancel commands.

Progress lives entirely on the batch row. The runner re-reads it at the
start of every item, so a pause or cancel written by an API request takes
effect at the next item boundary and a restarted process continues from
``current_index``.
"""

import logging
import os
import random
from typing import Iterable, Optional
from uuid import UUID

from opentelemetry import trace
from pydantic import ValidationError
from sqlalchemy.orm import Session

from genflow.metrics import batch_items_total, batch_jobs_finished_total
from genflow.models.batch_job import BatchJob
from genflow.models.generated_media import GeneratedMedia
from genflow.models.status import BatchStatus, batch_sources_for
from genflow.repositories.batch_job_repository import BatchJobRepository
from genflow.repositories.generated_media_repository import GeneratedMediaRepository
from genflow.services.credential_service import CredentialService
from genflow.services.errors import (
    AuthError,
    InvalidParamsError,
    InvalidStateTransitionError,
    JobNotFoundError,
)
from genflow.services.generation_api import GenerationParams, derive_item_params
from genflow.services.media_pipeline import ItemOutcome, MediaPipeline

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 1000

# 0 disables the consecutive-failure stop.
MAX_CONSECUTIVE_FAILURES = int(os.getenv("BATCH_MAX_CONSECUTIVE_FAILURES", "0"))


class BatchOrchestrator:

    def __init__(
        self,
        db: Session,
        pipeline: Optional[MediaPipeline] = None,
        credentials: Optional[CredentialService] = None,
        rng: Optional[random.Random] = None,
        max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES,
    ):
        self.db = db
        self.pipeline = pipeline
        self.credentials = credentials or CredentialService(db)
        self.rng = rng
        self.max_consecutive_failures = max_consecutive_failures

    # ---- owner commands ----

    def start(self, owner_id: str, params: GenerationParams, count: int) -> BatchJob:
        """Create a pending batch of ``count`` items sharing ``params``."""
        if not MIN_BATCH_SIZE <= count <= MAX_BATCH_SIZE:
            raise InvalidParamsError(
                f"Batch size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}, got {count}"
            )
        return BatchJobRepository.create(
            self.db,
            owner_id=owner_id,
            total_count=count,
            generation_params=params.model_dump(exclude_none=True),
        )

    def pause(self, batch_id: UUID, owner_id: str) -> BatchJob:
        return self._command(batch_id, owner_id, BatchStatus.PAUSED)

    def resume(self, batch_id: UUID, owner_id: str) -> BatchJob:
        return self._command(batch_id, owner_id, BatchStatus.PROCESSING, expected=[BatchStatus.PAUSED])

    def cancel(self, batch_id: UUID, owner_id: str) -> BatchJob:
        return self._command(batch_id, owner_id, BatchStatus.CANCELLED)

    def _command(
        self,
        batch_id: UUID,
        owner_id: str,
        target: BatchStatus,
        expected: Optional[Iterable[BatchStatus]] = None,
    ) -> BatchJob:
        with tracer.start_as_current_span("batch.command") as span:
            span.set_attribute("batch.id", str(batch_id))
            span.set_attribute("batch.target", target.value)

            job = BatchJobRepository.get_by_id(self.db, batch_id, owner_id=owner_id)
            if job is None:
                raise JobNotFoundError("batch", batch_id)

            sources = list(expected) if expected is not None else list(batch_sources_for(target))
            if BatchStatus(job.status) not in sources:
                raise InvalidStateTransitionError("batch", job.status, target.value)

            if not BatchJobRepository.transition(
                self.db, batch_id, target, expected=sources, owner_id=owner_id
            ):
                # Lost a race with the runner or another command.
                current = BatchJobRepository.get_by_id(self.db, batch_id)
                raise InvalidStateTransitionError("batch", current.status, target.value)

            if target == BatchStatus.CANCELLED:
                batch_jobs_finished_total.labels(status="cancelled").inc()

            logger.info("Batch %s %s by owner", batch_id, target.value)
            return BatchJobRepository.get_by_id(self.db, batch_id)

    # ---- queries ----

    def list_for_owner(self, owner_id: str, limit: int = 10):
        return BatchJobRepository.list_for_owner(self.db, owner_id, limit=limit)

    def list_active_for_owner(self, owner_id: str):
        return BatchJobRepository.list_active_for_owner(self.db, owner_id)

    def get_batch_media(self, batch_id: UUID, owner_id: str) -> list[GeneratedMedia]:
        """Media produced by the batch, in item order."""
        job = BatchJobRepository.get_by_id(self.db, batch_id, owner_id=owner_id)
        if job is None:
            raise JobNotFoundError("batch", batch_id)
        return GeneratedMediaRepository.get_many(self.db, job.result_media_ids or [])

    # ---- runner ----

    async def run(self, batch_id: UUID) -> Optional[BatchJob]:
        """Process items until the batch stops being ``processing``."""
        while await self.run_next_item(batch_id):
            pass
        return BatchJobRepository.get_by_id(self.db, batch_id)

    async def run_next_item(self, batch_id: UUID) -> bool:
        """
        Process the item at ``current_index``. Returns True while there is
        more work to do and the batch is still processing.
        """
        job = BatchJobRepository.get_by_id(self.db, batch_id)
        if job is None:
            raise JobNotFoundError("batch", batch_id)

        if job.status == BatchStatus.PENDING.value:
            BatchJobRepository.transition(
                self.db, batch_id, BatchStatus.PROCESSING, expected=[BatchStatus.PENDING]
            )
            job = BatchJobRepository.get_by_id(self.db, batch_id)

        if job.status != BatchStatus.PROCESSING.value:
            logger.info("Batch %s is %s; stopping", batch_id, job.status)
            return False

        if job.current_index >= job.total_count:
            BatchJobRepository.transition(
                self.db, batch_id, BatchStatus.COMPLETED, expected=[BatchStatus.PROCESSING]
            )
            return False

        item_index = job.current_index
        owner_id = job.owner_id
        total = job.total_count

        try:
            api_key = self.credentials.resolve_api_key(owner_id)
        except AuthError as e:
            self.fail(batch_id, str(e))
            return False

        try:
            template = GenerationParams.model_validate(job.generation_params)
        except ValidationError as e:
            self.fail(batch_id, f"Invalid generation parameters: {e}")
            return False

        params = derive_item_params(template, item_index, self.rng)

        with tracer.start_as_current_span("batch.item") as span:
            span.set_attribute("batch.id", str(batch_id))
            span.set_attribute("batch.item_index", item_index)
            logger.info("Processing batch %s item %d/%d", batch_id, item_index + 1, total)

            def on_retry(attempt, classification, delay_ms):
                BatchJobRepository.record_item_retry(
                    self.db, batch_id, item_index=item_index, retry_count=attempt
                )

            try:
                outcome = await self.pipeline.generate(
                    owner_id=owner_id,
                    params=params,
                    api_key=api_key,
                    batch_job_id=batch_id,
                    on_retry=on_retry,
                )
            except Exception as e:
                logger.exception("Error processing batch %s item %d", batch_id, item_index)
                outcome = ItemOutcome(success=False, attempts_made=1, error=str(e) or "Unknown error")

            span.set_attribute("batch.item_success", outcome.success)

        if not outcome.success:
            logger.warning(
                "Batch %s item %d failed after %d attempts: %s",
                batch_id, item_index, outcome.attempts_made, outcome.error,
            )
        batch_items_total.labels(result="completed" if outcome.success else "failed").inc()

        updated = BatchJobRepository.record_item_result(
            self.db,
            batch_id,
            item_index=item_index,
            success=outcome.success,
            media_id=outcome.media_id,
            retry_count=outcome.retry_count,
        )
        if updated is None:
            return False

        if updated.status == BatchStatus.COMPLETED.value:
            batch_jobs_finished_total.labels(status="completed").inc()
            logger.info(
                "Batch %s completed: %d succeeded, %d failed",
                batch_id, updated.completed_count, updated.failed_count,
            )
            return False

        if self.max_consecutive_failures and updated.consecutive_failures >= self.max_consecutive_failures:
            self.fail(
                batch_id,
                f"Stopped after {updated.consecutive_failures} consecutive failed items. "
                f"Last error: {outcome.error}",
            )
            return False

        return updated.status == BatchStatus.PROCESSING.value

    def fail(self, batch_id: UUID, message: str) -> bool:
        """Mark a non-terminal batch failed with ``message``."""
        logger.error("Batch %s failed: %s", batch_id, message)
        failed = BatchJobRepository.transition(
            self.db,
            batch_id,
            BatchStatus.FAILED,
            expected=[BatchStatus.PENDING, BatchStatus.PROCESSING, BatchStatus.PAUSED],
            error_message=message,
        )
        if failed:
            batch_jobs_finished_total.labels(status="failed").inc()
        return failed
