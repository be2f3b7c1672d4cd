"""Standard column definitions for consistency."""
import uuid

from sqlalchemy import Column, Uuid


def uuid_pk():
    return Column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )
