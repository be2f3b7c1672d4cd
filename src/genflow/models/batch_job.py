"""
BatchJob model - a sequence of generations sharing one parameter template.

The orchestrator advances ``current_index`` one item at a time. After every
recorded item ``completed_count + failed_count == current_index`` and
``len(result_media_ids) == completed_count``.
"""
from sqlalchemy import Column, String, Integer, JSON, Text, Index, CheckConstraint

from genflow.db.database import Base
from genflow.models.base_model import uuid_pk
from genflow.models.mixins import TimestampMixin
from genflow.models.status import BatchStatus


class BatchJob(Base, TimestampMixin):
    __tablename__ = "batch_jobs"

    id = uuid_pk()
    owner_id = Column(String(255), nullable=False)

    status = Column(String(32), nullable=False, default=BatchStatus.PENDING.value)

    total_count = Column(Integer, nullable=False)
    completed_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    current_index = Column(Integer, nullable=False, default=0)

    # Shared template; per-item seeds are derived by the orchestrator.
    generation_params = Column(JSON, nullable=False)
    # Ordered ids (as strings) of successfully generated media.
    result_media_ids = Column(JSON, nullable=False, default=list)

    current_item_retry_count = Column(Integer, nullable=True)
    consecutive_failures = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("total_count >= 1", name="ck_batch_jobs_total_positive"),
        CheckConstraint("current_index <= total_count", name="ck_batch_jobs_index_bounded"),
        Index("ix_batch_jobs_owner_created", "owner_id", "created_at"),
        Index("ix_batch_jobs_status_created", "status", "created_at"),
    )

    @property
    def processed_count(self) -> int:
        return self.completed_count + self.failed_count

    def __repr__(self):
        return (
            f"<BatchJob(id={self.id}, status={self.status}, "
            f"progress={self.current_index}/{self.total_count})>"
        )
