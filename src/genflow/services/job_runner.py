"""
Background execution of generation requests and batches.

Each run opens its own database session and HTTP client, so a job never
shares a session with the API request that scheduled it. Everything that
matters is persisted on the job rows; ``process_pending`` picks up work
left behind by a restart.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Callable, Optional
from uuid import UUID

import httpx

from genflow.db.database import SessionLocal
from genflow.models.mixins import utcnow
from genflow.repositories.batch_job_repository import BatchJobRepository
from genflow.repositories.generation_request_repository import GenerationRequestRepository
from genflow.services import storage
from genflow.services.batch_orchestrator import BatchOrchestrator
from genflow.services.credential_service import CredentialService
from genflow.services.generation_processor import GenerationProcessor
from genflow.services.media_pipeline import MediaPipeline, Uploader
from genflow.services.rate_limiter import SlidingWindowRateLimiter
from genflow.services.retry_client import RetryAwareClient, RetryConfig

logger = logging.getLogger(__name__)

# A processing request untouched for this long is treated as abandoned.
STALE_PROCESSING_AFTER_S = int(os.getenv("GENERATION_STALE_AFTER_S", "1800"))
STALE_PROCESSING_MESSAGE = "Generation was interrupted before its result could be recorded. Please try again."


class JobRunner:

    def __init__(
        self,
        session_factory=SessionLocal,
        retry_config: Optional[RetryConfig] = None,
        uploader: Uploader = storage.upload_media,
        http_client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        sleep=asyncio.sleep,
        stale_after_s: int = STALE_PROCESSING_AFTER_S,
    ):
        self.session_factory = session_factory
        self.retry_config = retry_config or RetryConfig.from_env()
        self.uploader = uploader
        self.http_client_factory = http_client_factory or (
            lambda: httpx.AsyncClient(timeout=self.retry_config.request_timeout_s)
        )
        self.sleep = sleep
        self.stale_after_s = stale_after_s
        self._running_batches: set[UUID] = set()

    @asynccontextmanager
    async def _pipeline(self):
        db = self.session_factory()
        try:
            async with self.http_client_factory() as http_client:
                client = RetryAwareClient(http_client, self.retry_config, sleep=self.sleep)
                yield db, MediaPipeline(db, client, SlidingWindowRateLimiter(db), uploader=self.uploader)
        finally:
            db.close()

    async def run_generation(self, request_id: UUID) -> None:
        async with self._pipeline() as (db, pipeline):
            processor = GenerationProcessor(db, pipeline, CredentialService(db))
            try:
                await processor.process(request_id)
            except Exception:
                logger.exception("Generation %s crashed", request_id)

    async def run_batch(self, batch_id: UUID) -> None:
        """Drive a batch until it stops. A second call for a batch already running here is a no-op."""
        if batch_id in self._running_batches:
            logger.info("Batch %s already running in this process", batch_id)
            return

        self._running_batches.add(batch_id)
        try:
            async with self._pipeline() as (db, pipeline):
                orchestrator = BatchOrchestrator(db, pipeline, CredentialService(db))
                try:
                    await orchestrator.run(batch_id)
                except Exception as e:
                    logger.exception("Batch %s crashed", batch_id)
                    orchestrator.fail(batch_id, f"Batch processing stopped unexpectedly: {e}")
        finally:
            self._running_batches.discard(batch_id)

    async def process_pending(self, limit: int = 100) -> dict:
        """
        Fail generations abandoned in processing, then run every pending
        generation and every pending or processing batch.
        """
        db = self.session_factory()
        try:
            stale = GenerationRequestRepository.fail_stale_processing(
                db,
                updated_before=utcnow() - timedelta(seconds=self.stale_after_s),
                error_message=STALE_PROCESSING_MESSAGE,
            )
            request_ids = [r.id for r in GenerationRequestRepository.list_pending(db, limit=limit)]
            batch_ids = [b.id for b in BatchJobRepository.list_runnable(db, limit=limit)]
        finally:
            db.close()

        logger.info("Found %d pending generations and %d runnable batches", len(request_ids), len(batch_ids))

        await asyncio.gather(
            *(self.run_generation(request_id) for request_id in request_ids),
            *(self.run_batch(batch_id) for batch_id in batch_ids),
        )
        return {"generations": len(request_ids), "batches": len(batch_ids), "stale_generations": stale}


_job_runner = None


def get_job_runner() -> JobRunner:
    """Process-wide runner used by the API routes."""
    global _job_runner
    if _job_runner is None:
        _job_runner = JobRunner()
    return _job_runner
