"""
Retry-aware client for the generation endpoint.

One outbound call, retried with exponential backoff when the error
classifier says the failure is transient. The awaited backoff sleep is the
only suspension point in job execution.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx
from opentelemetry import trace

from genflow.metrics import generation_attempts_total, generation_retry_delay_seconds
from genflow.services.error_classifier import (
    ErrorClassification,
    ErrorKind,
    classify_api_error,
    classify_transport_error,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    base_delay_ms: int = 2000
    max_delay_ms: int = 30000
    # Per-attempt bound so a hung upstream cannot stall a job forever.
    request_timeout_s: float = 120.0

    @classmethod
    def from_env(cls) -> "RetryConfig":
        return cls(
            max_retries=int(os.getenv("GENERATION_MAX_RETRIES", "3")),
            base_delay_ms=int(os.getenv("GENERATION_BASE_DELAY_MS", "2000")),
            max_delay_ms=int(os.getenv("GENERATION_MAX_DELAY_MS", "30000")),
            request_timeout_s=float(os.getenv("GENERATION_REQUEST_TIMEOUT_S", "120")),
        )


DEFAULT_RETRY_CONFIG = RetryConfig()


@dataclass(frozen=True)
class GenerationCall:
    url: str
    api_key: str


@dataclass(frozen=True)
class GenerationResponse:
    content: bytes
    content_type: str


@dataclass
class RetryResult:
    success: bool
    attempts_made: int
    data: Optional[GenerationResponse] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    was_non_retryable: bool = False

    @property
    def retry_count(self) -> int:
        return max(self.attempts_made - 1, 0)


# gate() -> object with .allowed and .retry_after_ms (a RateLimitDecision)
Gate = Callable[[], Any]
# on_retry(attempt_number_that_failed, classification, delay_ms)
RetryCallback = Callable[[int, ErrorClassification, int], None]
Sleep = Callable[[float], Awaitable[None]]


def calculate_backoff_delay(attempt_number: int, base_delay_ms: int, max_delay_ms: int) -> int:
    """
    Delay after failed attempt ``attempt_number`` (1-based):
    ``min(base * 2^(attempt_number - 1), max)``.
    """
    if attempt_number < 1:
        raise ValueError("attempt_number is 1-based")
    return min(base_delay_ms * (2 ** (attempt_number - 1)), max_delay_ms)


def format_error_body(text: str) -> str:
    """
    Make upstream error bodies readable. The API sometimes double-encodes
    JSON inside JSON strings; unwrap every level before pretty-printing.
    """

    def parse_recursive(value):
        if not isinstance(value, str):
            return value
        try:
            parsed = json.loads(value)
        except (ValueError, TypeError):
            return value
        if isinstance(parsed, dict):
            return {k: parse_recursive(v) for k, v in parsed.items()}
        if isinstance(parsed, list):
            return [parse_recursive(v) for v in parsed]
        return parsed

    parsed = parse_recursive(text)
    if isinstance(parsed, str):
        return parsed
    return json.dumps(parsed, indent=2)


DEFAULT_CONTENT_TYPE = "image/jpeg"


def _is_in_band_error(content_type: str) -> bool:
    media_type = content_type.split(";")[0].strip().lower()
    return media_type.startswith("text/") or media_type.endswith("json")


class RetryAwareClient:
    """
    Calls the generation endpoint, retrying transient failures.

    ``http_client`` is an ``httpx.AsyncClient`` owned by the caller.
    ``sleep`` is injectable so tests can record delays instead of waiting.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        config: RetryConfig = DEFAULT_RETRY_CONFIG,
        sleep: Sleep = asyncio.sleep,
        log_prefix: str = "generation",
    ):
        self.http_client = http_client
        self.config = config
        self.sleep = sleep
        self.log_prefix = log_prefix

    async def call(
        self,
        request: GenerationCall,
        gate: Optional[Gate] = None,
        on_retry: Optional[RetryCallback] = None,
    ) -> RetryResult:
        max_attempts = self.config.max_retries + 1
        last_error: Optional[str] = None
        last_kind: Optional[ErrorKind] = None

        with tracer.start_as_current_span("generation.call_with_retry") as span:
            span.set_attribute("retry.max_attempts", max_attempts)

            for attempt in range(1, max_attempts + 1):
                min_delay_ms = 0

                if gate is not None:
                    decision = gate()
                    if not decision.allowed:
                        classification = ErrorClassification(True, ErrorKind.RATE_LIMITED)
                        last_error = "Rate limit exceeded for generation requests"
                        last_kind = classification.kind
                        min_delay_ms = decision.retry_after_ms or 0
                        generation_attempts_total.labels(outcome="throttled").inc()
                        logger.info(
                            "[%s] Attempt %d/%d throttled by rate limiter (retry after %dms)",
                            self.log_prefix, attempt, max_attempts, min_delay_ms,
                        )
                        if not await self._backoff(attempt, max_attempts, classification, min_delay_ms, on_retry):
                            break
                        continue

                outcome = await self._attempt(request)
                if isinstance(outcome, GenerationResponse):
                    generation_attempts_total.labels(outcome="success").inc()
                    span.set_attribute("retry.attempts_made", attempt)
                    return RetryResult(success=True, attempts_made=attempt, data=outcome)

                classification, last_error = outcome
                last_kind = classification.kind

                if not classification.is_retryable:
                    generation_attempts_total.labels(outcome="non_retryable").inc()
                    logger.info(
                        "[%s] Non-retryable error (%s), not retrying",
                        self.log_prefix, classification.kind.value,
                    )
                    span.set_attribute("retry.attempts_made", attempt)
                    return RetryResult(
                        success=False,
                        attempts_made=attempt,
                        error=last_error,
                        error_kind=classification.kind,
                        was_non_retryable=True,
                    )

                generation_attempts_total.labels(outcome="retryable").inc()
                if not await self._backoff(attempt, max_attempts, classification, min_delay_ms, on_retry):
                    break

            logger.warning("[%s] All %d attempts failed", self.log_prefix, max_attempts)
            span.set_attribute("retry.attempts_made", max_attempts)
            return RetryResult(
                success=False,
                attempts_made=max_attempts,
                error=last_error or "Generation failed after retries",
                error_kind=last_kind,
            )

    async def _backoff(
        self,
        attempt: int,
        max_attempts: int,
        classification: ErrorClassification,
        min_delay_ms: int,
        on_retry: Optional[RetryCallback],
    ) -> bool:
        """Sleep before the next attempt. Returns False when attempts are exhausted."""
        if attempt >= max_attempts:
            return False

        delay_ms = calculate_backoff_delay(attempt, self.config.base_delay_ms, self.config.max_delay_ms)
        delay_ms = max(delay_ms, min_delay_ms)

        logger.info(
            "[%s] Attempt %d/%d failed (%s), retrying in %dms",
            self.log_prefix, attempt, max_attempts, classification.kind.value, delay_ms,
        )
        if on_retry is not None:
            on_retry(attempt, classification, delay_ms)

        generation_retry_delay_seconds.observe(delay_ms / 1000)
        await self.sleep(delay_ms / 1000)
        return True

    async def _attempt(self, request: GenerationCall):
        """
        One HTTP round trip. Returns a GenerationResponse on success, or a
        ``(classification, error_message)`` tuple on failure.
        """
        headers = {"Authorization": f"Bearer {request.api_key}"}
        try:
            response = await self.http_client.get(
                request.url,
                headers=headers,
                timeout=self.config.request_timeout_s,
                follow_redirects=True,
            )
        except httpx.TransportError as e:
            classification = classify_transport_error(e)
            return classification, f"{classification.kind.value}: {e}"

        content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE

        if response.is_success and not _is_in_band_error(content_type):
            return GenerationResponse(content=response.content, content_type=content_type)

        body = response.text
        classification = classify_api_error(response.status_code, body)
        if response.is_success:
            # 2xx without media: the API reported the error in-band.
            message = f"HTTP {response.status_code} (in-band error): {format_error_body(body)}"
        else:
            message = f"HTTP {response.status_code}: {format_error_body(body)}"
        return classification, message
