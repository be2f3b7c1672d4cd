# src/genflow/repositories/user_credential_repository.py

import logging

from opentelemetry import trace
from sqlalchemy.orm import Session

from genflow.models.user_credential import UserCredential

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class UserCredentialRepository:

    @staticmethod
    def get_encrypted_api_key(db: Session, user_id: str) -> str | None:
        with tracer.start_as_current_span("db.get_user_credential") as span:
            span.set_attribute("user_id", user_id)
            row = db.query(UserCredential).filter(UserCredential.user_id == user_id).first()
        return row.encrypted_api_key if row else None

    @staticmethod
    def upsert(db: Session, user_id: str, encrypted_api_key: str) -> UserCredential:
        with tracer.start_as_current_span("db.upsert_user_credential") as span:
            span.set_attribute("user_id", user_id)
            row = db.query(UserCredential).filter(UserCredential.user_id == user_id).first()
            if row is None:
                row = UserCredential(user_id=user_id, encrypted_api_key=encrypted_api_key)
                db.add(row)
            else:
                row.encrypted_api_key = encrypted_api_key
            db.commit()
            db.refresh(row)

        logger.info("Stored API key for user %s", user_id)
        return row

    @staticmethod
    def delete(db: Session, user_id: str) -> bool:
        with tracer.start_as_current_span("db.delete_user_credential") as span:
            span.set_attribute("user_id", user_id)
            deleted = db.query(UserCredential).filter(UserCredential.user_id == user_id).delete()
            db.commit()

        logger.info("Deleted API key for user %s (found=%s)", user_id, bool(deleted))
        return bool(deleted)
