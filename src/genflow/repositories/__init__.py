# src/genflow/repositories/__init__.py
from .generation_request_repository import GenerationRequestRepository
from .batch_job_repository import BatchJobRepository
from .generated_media_repository import GeneratedMediaRepository
from .rate_limit_repository import RateLimitRepository
from .user_credential_repository import UserCredentialRepository

__all__ = [
    "GenerationRequestRepository",
    "BatchJobRepository",
    "GeneratedMediaRepository",
    "RateLimitRepository",
    "UserCredentialRepository",
]
