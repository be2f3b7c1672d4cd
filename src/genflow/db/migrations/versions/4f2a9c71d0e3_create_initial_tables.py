"""create initial tables

Revision ID: 4f2a9c71d0e3
Revises:
Create Date: 2026-10-17 09:12:44.318402

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4f2a9c71d0e3"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="UTC timestamp when record was created",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="UTC timestamp when record was last updated",
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "generation_requests",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("generation_params", sa.JSON(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("result_media_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_generation_requests_owner_created", "generation_requests", ["owner_id", "created_at"]
    )
    op.create_index(
        "ix_generation_requests_status_created", "generation_requests", ["status", "created_at"]
    )

    op.create_table(
        "batch_jobs",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("total_count", sa.Integer(), nullable=False),
        sa.Column("completed_count", sa.Integer(), nullable=False),
        sa.Column("failed_count", sa.Integer(), nullable=False),
        sa.Column("current_index", sa.Integer(), nullable=False),
        sa.Column("generation_params", sa.JSON(), nullable=False),
        sa.Column("result_media_ids", sa.JSON(), nullable=False),
        sa.Column("current_item_retry_count", sa.Integer(), nullable=True),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("total_count >= 1", name="ck_batch_jobs_total_positive"),
        sa.CheckConstraint("current_index <= total_count", name="ck_batch_jobs_index_bounded"),
    )
    op.create_index("ix_batch_jobs_owner_created", "batch_jobs", ["owner_id", "created_at"])
    op.create_index("ix_batch_jobs_status_created", "batch_jobs", ["status", "created_at"])

    op.create_table(
        "generated_media",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("visibility", sa.String(16), nullable=False),
        sa.Column("storage_key", sa.String(1024), nullable=False),
        sa.Column("url", sa.String(2048), nullable=False),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("content_type", sa.String(128), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("aspect_ratio", sa.Float(), nullable=True),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("negative_prompt", sa.Text(), nullable=True),
        sa.Column("model", sa.String(128), nullable=False),
        sa.Column("seed", sa.BigInteger(), nullable=True),
        sa.Column("generation_params", sa.JSON(), nullable=False),
        sa.Column("batch_job_id", sa.Uuid(as_uuid=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_generated_media_owner_created", "generated_media", ["owner_id", "created_at"])
    op.create_index("ix_generated_media_batch_job_id", "generated_media", ["batch_job_id"])

    op.create_table(
        "rate_limit_windows",
        sa.Column("key", sa.String(255), primary_key=True),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("window_start_ms", sa.BigInteger(), nullable=False),
    )
    op.create_index("ix_rate_limit_windows_window_start_ms", "rate_limit_windows", ["window_start_ms"])

    op.create_table(
        "user_credentials",
        sa.Column("user_id", sa.String(255), primary_key=True),
        sa.Column("encrypted_api_key", sa.Text(), nullable=False),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("user_credentials")
    op.drop_index("ix_rate_limit_windows_window_start_ms", table_name="rate_limit_windows")
    op.drop_table("rate_limit_windows")
    op.drop_index("ix_generated_media_batch_job_id", table_name="generated_media")
    op.drop_index("ix_generated_media_owner_created", table_name="generated_media")
    op.drop_table("generated_media")
    op.drop_index("ix_batch_jobs_status_created", table_name="batch_jobs")
    op.drop_index("ix_batch_jobs_owner_created", table_name="batch_jobs")
    op.drop_table("batch_jobs")
    op.drop_index("ix_generation_requests_status_created", table_name="generation_requests")
    op.drop_index("ix_generation_requests_owner_created", table_name="generation_requests")
    op.drop_table("generation_requests")
