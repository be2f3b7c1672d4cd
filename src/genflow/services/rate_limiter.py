"""
Sliding-window rate limiting backed by the database.

Each ``{endpoint}:{user}`` key owns one RateLimitWindow row. The
read-check-increment for a key runs inside a single transaction holding the
row lock, so two concurrent requests can never both take the last slot.
No Redis or in-process state: every API worker and background job shares
the same windows.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from genflow.metrics import rate_limit_decisions_total
from genflow.repositories.rate_limit_repository import RateLimitRepository
from genflow.services.errors import PersistenceError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ANONYMOUS_USER = "anonymous"


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_ms: int


# Per-endpoint limits by caller tier.
RATE_LIMIT_CONFIG: Dict[str, Dict[str, RateLimitRule]] = {
    "enhance-prompt": {
        "authenticated": RateLimitRule(limit=10, window_ms=60_000),
        "anonymous": RateLimitRule(limit=3, window_ms=60_000),
    },
    "suggestions": {
        "authenticated": RateLimitRule(limit=20, window_ms=60_000),
        "anonymous": RateLimitRule(limit=5, window_ms=60_000),
    },
    "generate": {
        "authenticated": RateLimitRule(limit=60, window_ms=60_000),
        "anonymous": RateLimitRule(limit=10, window_ms=60_000),
    },
}


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at_ms: int
    retry_after_ms: Optional[int] = None


def now_ms() -> int:
    return int(time.time() * 1000)


def build_rate_limit_key(endpoint: str, user_id: Optional[str]) -> str:
    return f"{endpoint}:{user_id or ANONYMOUS_USER}"


def get_rate_limit_rule(endpoint: str, user_id: Optional[str]) -> RateLimitRule:
    """
    Raises:
        ValueError: if the endpoint has no configured limits
    """
    tiers = RATE_LIMIT_CONFIG.get(endpoint)
    if tiers is None:
        raise ValueError(f"No rate limit configured for endpoint '{endpoint}'")
    return tiers["authenticated" if user_id else "anonymous"]


def max_configured_window_ms() -> int:
    return max(rule.window_ms for tiers in RATE_LIMIT_CONFIG.values() for rule in tiers.values())


class SlidingWindowRateLimiter:
    """Admission control over RateLimitWindow rows in ``db``."""

    def __init__(self, db: Session, clock: Callable[[], int] = now_ms):
        self.db = db
        self.clock = clock

    def admit(self, key: str, limit: int, window_ms: int) -> RateLimitDecision:
        """
        Consume one request for ``key`` if the window has room.

        An absent or expired window is reset (count 0, start now) as part of
        the same transaction that makes the decision.
        """
        with tracer.start_as_current_span("rate_limit.admit") as span:
            span.set_attribute("rate_limit.key", key)
            span.set_attribute("rate_limit.limit", limit)

            # A second pass covers losing the insert race for a brand-new key:
            # after the rollback the winner's row exists and gets locked.
            for _ in range(2):
                try:
                    decision = self._admit_locked(key, limit, window_ms)
                    self.db.commit()
                    break
                except IntegrityError:
                    self.db.rollback()
                    logger.debug("Concurrent window creation for %s; retrying", key)
                except SQLAlchemyError as e:
                    self.db.rollback()
                    raise PersistenceError(f"Rate limit check failed for {key}: {e}") from e
            else:
                raise PersistenceError(f"Rate limit check failed for {key}: window creation kept conflicting")

            span.set_attribute("rate_limit.allowed", decision.allowed)

        endpoint = key.split(":", 1)[0]
        rate_limit_decisions_total.labels(
            endpoint=endpoint, decision="allowed" if decision.allowed else "denied"
        ).inc()
        if not decision.allowed:
            logger.info("Rate limit exceeded for %s; retry after %dms", key, decision.retry_after_ms)
        return decision

    def _admit_locked(self, key: str, limit: int, window_ms: int) -> RateLimitDecision:
        now = self.clock()
        window = RateLimitRepository.get_for_update(self.db, key)

        if window is None:
            window = RateLimitRepository.add(self.db, key, count=0, window_start_ms=now)
        elif now - window.window_start_ms >= window_ms:
            window.count = 0
            window.window_start_ms = now

        reset_at = window.window_start_ms + window_ms

        if window.count < limit:
            window.count += 1
            self.db.flush()
            return RateLimitDecision(
                allowed=True,
                remaining=max(limit - window.count, 0),
                reset_at_ms=reset_at,
            )

        return RateLimitDecision(
            allowed=False,
            remaining=0,
            reset_at_ms=reset_at,
            retry_after_ms=max(reset_at - now, 1),
        )

    def admit_endpoint(self, endpoint: str, user_id: Optional[str]) -> RateLimitDecision:
        """Admit using the configured tier for ``endpoint`` and caller."""
        rule = get_rate_limit_rule(endpoint, user_id)
        return self.admit(build_rate_limit_key(endpoint, user_id), rule.limit, rule.window_ms)

    def status(self, key: str, limit: int, window_ms: int) -> RateLimitDecision:
        """Remaining quota for ``key`` without consuming a request."""
        now = self.clock()
        try:
            window = RateLimitRepository.get(self.db, key)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Rate limit status failed for {key}: {e}") from e

        if window is None or now - window.window_start_ms >= window_ms:
            return RateLimitDecision(allowed=limit > 0, remaining=limit, reset_at_ms=now + window_ms)

        remaining = max(limit - window.count, 0)
        reset_at = window.window_start_ms + window_ms
        return RateLimitDecision(
            allowed=remaining > 0,
            remaining=remaining,
            reset_at_ms=reset_at,
            retry_after_ms=None if remaining > 0 else max(reset_at - now, 1),
        )

    def cleanup_expired(self, max_window_ms: Optional[int] = None) -> int:
        """
        Delete windows that started more than twice the longest configured
        window ago. Returns the number of rows removed.
        """
        max_window_ms = max_window_ms or max_configured_window_ms()
        cutoff = self.clock() - max_window_ms * 2
        try:
            deleted = RateLimitRepository.delete_older_than(self.db, cutoff)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Rate limit cleanup failed: {e}") from e

        logger.info("Rate limit cleanup removed %d windows", deleted)
        return deleted
