"""
The per-item generation sequence shared by single requests and batches:

    rate-limit gate → retry-aware call → upload → persist metadata

Failures come back as an ItemOutcome rather than an exception so callers
can record them on their own job rows.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

from opentelemetry import trace
from sqlalchemy.orm import Session

from genflow.repositories.generated_media_repository import GeneratedMediaRepository
from genflow.services import storage
from genflow.services.error_classifier import ErrorKind
from genflow.services.errors import PersistenceError, StorageError
from genflow.services.generation_api import (
    DEFAULT_DIMENSION,
    DEFAULT_MODEL,
    GENERATION_API_BASE_URL,
    GenerationParams,
    build_generation_url,
)
from genflow.services.rate_limiter import SlidingWindowRateLimiter
from genflow.services.retry_client import GenerationCall, RetryAwareClient, RetryCallback
from genflow.utils.storage_paths import build_media_key

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MEDIA_CATEGORY = "generated"
GENERATE_ENDPOINT = "generate"

Uploader = Callable[[bytes, str, str], storage.UploadResult]


@dataclass
class ItemOutcome:
    success: bool
    attempts_made: int
    media_id: Optional[UUID] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def retry_count(self) -> int:
        return max(self.attempts_made - 1, 0)


class MediaPipeline:

    def __init__(
        self,
        db: Session,
        client: RetryAwareClient,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        uploader: Uploader = storage.upload_media,
        base_url: str = GENERATION_API_BASE_URL,
    ):
        self.db = db
        self.client = client
        self.rate_limiter = rate_limiter
        self.uploader = uploader
        self.base_url = base_url

    async def generate(
        self,
        *,
        owner_id: str,
        params: GenerationParams,
        api_key: str,
        batch_job_id: Optional[UUID] = None,
        on_retry: Optional[RetryCallback] = None,
    ) -> ItemOutcome:
        """
        Generate, upload and record one media item. ``params.seed`` must
        already be normalized.
        """
        with tracer.start_as_current_span("pipeline.generate") as span:
            span.set_attribute("owner_id", owner_id)
            span.set_attribute("generation.model", params.model or DEFAULT_MODEL)
            if batch_job_id is not None:
                span.set_attribute("batch.id", str(batch_job_id))

            url = build_generation_url(params, self.base_url)
            # Prompt stays out of the logs; it may contain personal data.
            logger.info(
                "Generating with model=%s size=%sx%s seed=%s",
                params.model or DEFAULT_MODEL, params.width, params.height, params.seed,
            )

            gate = None
            if self.rate_limiter is not None:
                gate = lambda: self.rate_limiter.admit_endpoint(GENERATE_ENDPOINT, owner_id)  # noqa: E731

            result = await self.client.call(GenerationCall(url=url, api_key=api_key), gate=gate, on_retry=on_retry)
            if not result.success:
                logger.warning(
                    "Generation API error after %d attempts: %s", result.attempts_made, result.error
                )
                return ItemOutcome(
                    success=False,
                    attempts_made=result.attempts_made,
                    error=result.error or "Generation failed after retries",
                    error_kind=result.error_kind,
                )

            response = result.data
            key = build_media_key(MEDIA_CATEGORY, owner_id, response.content_type)

            try:
                upload = await asyncio.to_thread(self.uploader, response.content, key, response.content_type)
            except StorageError as e:
                logger.error("Upload failed for key=%s (%d bytes): %s", key, len(response.content), e)
                return ItemOutcome(
                    success=False,
                    attempts_made=result.attempts_made,
                    error=str(e),
                    error_kind=ErrorKind.STORAGE_ERROR,
                )

            logger.info("Upload complete: %s", upload.url)

            width = params.width or DEFAULT_DIMENSION
            height = params.height or DEFAULT_DIMENSION
            try:
                media = GeneratedMediaRepository.create(
                    self.db,
                    owner_id=owner_id,
                    storage_key=upload.key,
                    url=upload.url,
                    content_type=response.content_type,
                    size_bytes=upload.size_bytes,
                    width=width,
                    height=height,
                    prompt=params.prompt,
                    negative_prompt=params.negative_prompt,
                    model=params.model or DEFAULT_MODEL,
                    seed=params.seed,
                    generation_params=params.model_dump(exclude_none=True),
                    visibility="unlisted" if params.private else "public",
                    batch_job_id=batch_job_id,
                )
            except PersistenceError as e:
                logger.error("Media uploaded to %s but metadata was not saved: %s", upload.key, e)
                return ItemOutcome(
                    success=False,
                    attempts_made=result.attempts_made,
                    error=str(e),
                    error_kind=ErrorKind.PERSISTENCE_ERROR,
                )

            span.set_attribute("media.id", str(media.id))
            return ItemOutcome(success=True, attempts_made=result.attempts_made, media_id=media.id)
