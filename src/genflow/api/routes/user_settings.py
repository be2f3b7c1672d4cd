"""
API routes for the caller's generation-API key.

The key is stored Fernet-encrypted and never returned.
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from opentelemetry import trace
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session
import logging

from genflow.auth.clerk import get_current_user_id
from genflow.db.database import get_db
from genflow.repositories.user_credential_repository import UserCredentialRepository
from genflow.services.credential_service import CredentialService

router = APIRouter(prefix="/user", tags=["user-settings"])
tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class ApiKeyRequest(BaseModel):
    api_key: str = Field(..., min_length=1, max_length=512)

    @field_validator("api_key")
    @classmethod
    def strip_api_key(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("API key must not be blank")
        return value


class ApiKeyStatusResponse(BaseModel):
    configured: bool


@router.get("/api-key", response_model=ApiKeyStatusResponse)
def get_api_key_status(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("get_api_key_status"):
        return {"configured": UserCredentialRepository.get_encrypted_api_key(db, user_id) is not None}


@router.put("/api-key", status_code=status.HTTP_204_NO_CONTENT)
def set_api_key(
    request: ApiKeyRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("set_api_key"):
        try:
            CredentialService(db).store_api_key(user_id, request.api_key)
        except ValueError as e:
            logger.error("Could not store API key for %s: %s", user_id, e)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="API key storage is not configured",
            )
        return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/api-key", status_code=status.HTTP_204_NO_CONTENT)
def delete_api_key(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("delete_api_key"):
        if not CredentialService(db).delete_api_key(user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No API key configured")
        return Response(status_code=status.HTTP_204_NO_CONTENT)
