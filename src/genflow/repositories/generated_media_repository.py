# src/genflow/repositories/generated_media_repository.py

import logging
import secrets
import time
from typing import Sequence
from uuid import UUID

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from genflow.models.generated_media import GeneratedMedia
from genflow.services.errors import PersistenceError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class GeneratedMediaRepository:

    @staticmethod
    def create(
        db: Session,
        *,
        owner_id: str,
        storage_key: str,
        url: str,
        content_type: str,
        size_bytes: int,
        prompt: str,
        model: str,
        generation_params: dict,
        width: int | None = None,
        height: int | None = None,
        seed: int | None = None,
        negative_prompt: str | None = None,
        visibility: str = "public",
        batch_job_id: UUID | None = None,
    ) -> GeneratedMedia:
        aspect_ratio = None
        if width and height:
            aspect_ratio = max(width, height) / min(width, height)

        media = GeneratedMedia(
            owner_id=owner_id,
            storage_key=storage_key,
            url=url,
            filename=f"img_{int(time.time() * 1000)}_{secrets.token_hex(4)}",
            content_type=content_type,
            size_bytes=size_bytes,
            width=width,
            height=height,
            aspect_ratio=aspect_ratio,
            prompt=prompt,
            negative_prompt=negative_prompt,
            model=model,
            seed=seed,
            generation_params=generation_params,
            visibility=visibility,
            batch_job_id=batch_job_id,
        )

        with tracer.start_as_current_span("db.create_generated_media") as span:
            span.set_attribute("owner_id", owner_id)
            span.set_attribute("media.storage_key", storage_key)
            try:
                db.add(media)
                db.commit()
                db.refresh(media)
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to save media metadata for {storage_key}: {e}") from e

        logger.info("Stored media id=%s key=%s owner=%s", media.id, storage_key, owner_id)
        return media

    @staticmethod
    def get_many(db: Session, media_ids: Sequence[UUID | str]) -> list[GeneratedMedia]:
        """Rows for ``media_ids`` in the given order; ids with no row are skipped."""
        if not media_ids:
            return []
        ids = [UUID(str(m)) for m in media_ids]
        with tracer.start_as_current_span("db.get_generated_media_many") as span:
            span.set_attribute("media.count", len(ids))
            rows = db.query(GeneratedMedia).filter(GeneratedMedia.id.in_(ids)).all()
        by_id = {row.id: row for row in rows}
        return [by_id[i] for i in ids if i in by_id]
