from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from genflow.db import database
from genflow.db.database import Base
from genflow.models.batch_job import BatchJob
from genflow.repositories.generation_request_repository import GenerationRequestRepository
from genflow.services.rate_limiter import SlidingWindowRateLimiter

MIGRATIONS_DIR = Path(database.__file__).parent / "migrations"

EXPECTED_INDEXES = {
    "generation_requests": {"ix_generation_requests_owner_created", "ix_generation_requests_status_created"},
    "batch_jobs": {"ix_batch_jobs_owner_created", "ix_batch_jobs_status_created"},
    "generated_media": {"ix_generated_media_owner_created", "ix_generated_media_batch_job_id"},
    "rate_limit_windows": {"ix_rate_limit_windows_window_start_ms"},
    "user_credentials": set(),
}


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'genflow.db'}"


@pytest.fixture
def alembic_config(database_url):
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", database_url)
    return config


@pytest.fixture
def migrated_engine(alembic_config, database_url):
    command.upgrade(alembic_config, "head")
    engine = create_engine(database_url)
    yield engine
    engine.dispose()


def test_upgrade_creates_every_model_table(migrated_engine):
    inspector = inspect(migrated_engine)

    assert set(inspector.get_table_names()) == set(Base.metadata.tables) | {"alembic_version"}
    for name, table in Base.metadata.tables.items():
        columns = {c["name"] for c in inspector.get_columns(name)}
        assert columns == {c.name for c in table.columns}, name
        assert {i["name"] for i in inspector.get_indexes(name)} == EXPECTED_INDEXES[name]


def test_upgraded_schema_enforces_batch_constraints(migrated_engine):
    session = sessionmaker(bind=migrated_engine)()
    try:
        session.add(BatchJob(owner_id="user_1", total_count=0, generation_params={"prompt": "x"}))
        with pytest.raises(IntegrityError):
            session.commit()
    finally:
        session.close()


def test_upgraded_schema_serves_intake_writes(migrated_engine):
    session = sessionmaker(bind=migrated_engine)()
    try:
        assert SlidingWindowRateLimiter(session).admit_endpoint("generate", "user_1").allowed
        request = GenerationRequestRepository.create(
            session, owner_id="user_1", generation_params={"prompt": "a cat"}
        )
        assert GenerationRequestRepository.get_by_id(session, request.id).status == "pending"
    finally:
        session.close()


def test_downgrade_removes_tables(alembic_config, migrated_engine):
    command.downgrade(alembic_config, "base")

    assert set(inspect(migrated_engine).get_table_names()) == {"alembic_version"}
