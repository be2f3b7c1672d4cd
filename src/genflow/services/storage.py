# src/genflow/services/storage.py
import os
import logging
from dataclasses import dataclass

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from opentelemetry import trace

from genflow.metrics import media_uploads_total
from genflow.services.errors import StorageError

STORAGE_REGION = os.getenv("STORAGE_REGION") or os.getenv("AWS_DEFAULT_REGION") or "auto"
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET")  # must be set
# S3-compatible endpoint, e.g. https://<account>.r2.cloudflarestorage.com
STORAGE_ENDPOINT_URL = os.getenv("STORAGE_ENDPOINT_URL") or None
# Public base URL objects are served from (CDN / R2 public bucket)
STORAGE_PUBLIC_URL = os.getenv("STORAGE_PUBLIC_URL")

CACHE_CONTROL = "public, max-age=31536000, immutable"

_s3_client = boto3.client(
    "s3",
    region_name=STORAGE_REGION,
    endpoint_url=STORAGE_ENDPOINT_URL,
    # boto3 will pick credentials from env, ~/.aws, or IAM role
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class UploadResult:
    key: str
    url: str
    size_bytes: int


def public_url_for(key: str) -> str:
    if STORAGE_PUBLIC_URL:
        return f"{STORAGE_PUBLIC_URL.rstrip('/')}/{key}"
    return f"s3://{STORAGE_BUCKET}/{key}"


def upload_media(data: bytes, key: str, content_type: str) -> UploadResult:
    """
    Synchronously upload generated media. Objects are content-addressed by
    a unique key and never overwritten, so they are cached as immutable.

    Raises:
        StorageError: bucket not configured or the upload failed
    """
    if not STORAGE_BUCKET:
        raise StorageError(key, "STORAGE_BUCKET is not set in environment variables")

    size = len(data) if data is not None else 0
    with tracer.start_as_current_span("storage.upload") as span:
        span.set_attribute("storage.key", key)
        span.set_attribute("file.size", size)
        span.set_attribute("file.content_type", content_type)
        try:
            logger.info("Uploading to storage: %s (%d bytes)", key, size)
            _s3_client.put_object(
                Bucket=STORAGE_BUCKET,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl=CACHE_CONTROL,
            )
        except (ClientError, BotoCoreError) as e:
            media_uploads_total.labels(outcome="failure").inc()
            logger.error("Storage upload failed for key=%s size=%d: %s", key, size, e)
            raise StorageError(key, str(e)) from e

    media_uploads_total.labels(outcome="success").inc()
    return UploadResult(key=key, url=public_url_for(key), size_bytes=size)
