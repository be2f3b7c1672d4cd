"""
Error classification for generation API responses.

Decides whether a failed call to the generation endpoint is worth retrying.
Pure functions only: no I/O, no logging.
"""

import enum
import json
from dataclasses import dataclass

import httpx


class ErrorKind(str, enum.Enum):
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    TRANSIENT_UPSTREAM = "transient_upstream"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    INVALID_PARAMS = "invalid_params"
    AUTH_ERROR = "auth_error"
    STORAGE_ERROR = "storage_error"
    PERSISTENCE_ERROR = "persistence_error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorClassification:
    is_retryable: bool
    kind: ErrorKind


# Messages the upstream returns while its model workers are being rotated.
TRANSIENT_UPSTREAM_PHRASES = (
    "No active flux servers available",
    "no active servers available",
)


def _contains_transient_phrase(text: str) -> bool:
    lowered = text.lower()
    return any(phrase.lower() in lowered for phrase in TRANSIENT_UPSTREAM_PHRASES)


def is_transient_upstream_error(body: str) -> bool:
    """
    True when the body reports a known transient upstream condition, either
    as plain text or nested in a JSON ``message`` / ``error`` field.
    """
    if not body:
        return False

    if _contains_transient_phrase(body):
        return True

    try:
        parsed = json.loads(body)
    except (ValueError, TypeError):
        return False

    if isinstance(parsed, dict):
        nested = parsed.get("message") or parsed.get("error")
        if isinstance(nested, str) and _contains_transient_phrase(nested):
            return True
        if isinstance(nested, dict):
            return is_transient_upstream_error(json.dumps(nested))
    return False


def classify_http_status(status: int) -> ErrorClassification:
    if status == 429:
        return ErrorClassification(True, ErrorKind.RATE_LIMITED)
    if status >= 500:
        return ErrorClassification(True, ErrorKind.SERVER_ERROR)
    if status == 400:
        return ErrorClassification(False, ErrorKind.INVALID_PARAMS)
    if status in (401, 403):
        return ErrorClassification(False, ErrorKind.AUTH_ERROR)
    # Unmatched statuses fail loudly instead of hiding behind retries.
    return ErrorClassification(False, ErrorKind.UNKNOWN)


def classify_api_error(status: int, body: str) -> ErrorClassification:
    """
    Classify a failed generation response from its status code and body.

    Body content is checked first because the upstream sometimes reports
    transient failures in-band, on 200 or 4xx envelopes.
    """
    if is_transient_upstream_error(body):
        return ErrorClassification(True, ErrorKind.TRANSIENT_UPSTREAM)
    return classify_http_status(status)


def classify_transport_error(exc: Exception) -> ErrorClassification:
    """Network-level failures never produced a response; all are retryable."""
    if isinstance(exc, httpx.TimeoutException):
        return ErrorClassification(True, ErrorKind.TIMEOUT)
    return ErrorClassification(True, ErrorKind.NETWORK_ERROR)
