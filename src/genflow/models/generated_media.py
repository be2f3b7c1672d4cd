"""
GeneratedMedia model - metadata for one uploaded generation result.
"""
from sqlalchemy import Column, String, Integer, BigInteger, Float, JSON, Text, Index, Uuid

from genflow.db.database import Base
from genflow.models.base_model import uuid_pk
from genflow.models.mixins import TimestampMixin


class GeneratedMedia(Base, TimestampMixin):
    __tablename__ = "generated_media"

    id = uuid_pk()
    owner_id = Column(String(255), nullable=False)

    # Visibility: 'public' (listed) or 'unlisted' (URL-only access)
    visibility = Column(String(16), nullable=False, default="public")

    storage_key = Column(String(1024), nullable=False)
    url = Column(String(2048), nullable=False)
    filename = Column(String(255), nullable=False)
    content_type = Column(String(128), nullable=False)
    size_bytes = Column(BigInteger, nullable=False)

    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    aspect_ratio = Column(Float, nullable=True)

    prompt = Column(Text, nullable=False)
    negative_prompt = Column(Text, nullable=True)
    model = Column(String(128), nullable=False)
    seed = Column(BigInteger, nullable=True)
    generation_params = Column(JSON, nullable=False)

    batch_job_id = Column(Uuid(as_uuid=True), nullable=True, index=True)

    __table_args__ = (
        Index("ix_generated_media_owner_created", "owner_id", "created_at"),
    )

    def __repr__(self):
        return f"<GeneratedMedia(id={self.id}, key={self.storage_key})>"
