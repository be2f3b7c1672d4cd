"""
Single-item processor: drives one GenerationRequest from pending to a
terminal status.
"""

import logging
import random
from typing import Optional
from uuid import UUID

from opentelemetry import trace
from pydantic import ValidationError
from sqlalchemy.orm import Session

from genflow.metrics import generation_jobs_finished_total
from genflow.repositories.generation_request_repository import GenerationRequestRepository
from genflow.services.credential_service import CredentialService
from genflow.services.errors import AuthError, PersistenceError
from genflow.services.generation_api import GenerationParams, normalize_params
from genflow.services.media_pipeline import MediaPipeline

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class GenerationProcessor:

    def __init__(
        self,
        db: Session,
        pipeline: MediaPipeline,
        credentials: CredentialService,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.pipeline = pipeline
        self.credentials = credentials
        self.rng = rng

    async def process(self, request_id: UUID) -> None:
        """
        Run one generation request. Only a request that is still pending is
        processed; the pending → processing claim is atomic, so a duplicate
        trigger is a no-op.
        """
        with tracer.start_as_current_span("generation.process") as span:
            span.set_attribute("generation_request.id", str(request_id))

            if not GenerationRequestRepository.claim(self.db, request_id):
                logger.info("Generation %s is not pending, skipping", request_id)
                return

            request = GenerationRequestRepository.get_by_id(self.db, request_id)
            owner_id = request.owner_id
            logger.info("Processing generation %s", request_id)

            try:
                api_key = self.credentials.resolve_api_key(owner_id)
            except AuthError as e:
                self._fail(request_id, str(e))
                return

            try:
                params = normalize_params(GenerationParams.model_validate(request.generation_params), self.rng)
            except ValidationError as e:
                self._fail(request_id, f"Invalid generation parameters: {e}")
                return

            def on_retry(attempt, classification, delay_ms):
                GenerationRequestRepository.record_retry_count(self.db, request_id, attempt)

            try:
                outcome = await self.pipeline.generate(
                    owner_id=owner_id,
                    params=params,
                    api_key=api_key,
                    on_retry=on_retry,
                )
            except Exception as e:
                logger.exception("Error processing generation %s", request_id)
                self._fail(request_id, str(e) or "Unknown error")
                return

            if outcome.success:
                try:
                    GenerationRequestRepository.mark_completed(
                        self.db,
                        request_id,
                        media_id=outcome.media_id,
                        retry_count=outcome.retry_count or None,
                    )
                except PersistenceError as e:
                    logger.error("Could not record result %s for generation %s: %s", outcome.media_id, request_id, e)
                    self._fail(request_id, f"Failed to record generation result: {e}", outcome.retry_count)
                    return
                generation_jobs_finished_total.labels(status="completed").inc()
                if outcome.attempts_made > 1:
                    logger.info(
                        "Generation %s completed after %d attempts", request_id, outcome.attempts_made
                    )
                else:
                    logger.info("Generation %s completed", request_id)
                return

            self._fail(request_id, outcome.error, outcome.retry_count)

    def _fail(self, request_id: UUID, message: str, retry_count: Optional[int] = None) -> None:
        logger.warning("Generation %s failed: %s", request_id, message)
        try:
            GenerationRequestRepository.mark_failed(
                self.db, request_id, error_message=message, retry_count=retry_count
            )
        except PersistenceError:
            # Left in processing; the recovery sweep fails it once it goes stale.
            logger.exception("Could not record failure for generation %s", request_id)
            return
        generation_jobs_finished_total.labels(status="failed").inc()
