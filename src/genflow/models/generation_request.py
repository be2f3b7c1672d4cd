"""
GenerationRequest model - one asynchronous single-item generation.

Rows are created pending by the intake route and are mutated only by the
single-item processor, which moves them pending → processing →
completed | failed.
"""
from sqlalchemy import Column, String, Integer, JSON, Text, Index, Uuid

from genflow.db.database import Base
from genflow.models.base_model import uuid_pk
from genflow.models.mixins import TimestampMixin
from genflow.models.status import GenerationStatus


class GenerationRequest(Base, TimestampMixin):
    __tablename__ = "generation_requests"

    id = uuid_pk()
    owner_id = Column(String(255), nullable=False)

    status = Column(String(32), nullable=False, default=GenerationStatus.PENDING.value)
    generation_params = Column(JSON, nullable=False)

    error_message = Column(Text, nullable=True)
    # Plain id (no FK) so media housekeeping never blocks on job history.
    result_media_id = Column(Uuid(as_uuid=True), nullable=True)
    retry_count = Column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_generation_requests_owner_created", "owner_id", "created_at"),
        Index("ix_generation_requests_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<GenerationRequest(id={self.id}, owner_id={self.owner_id}, status={self.status})>"
