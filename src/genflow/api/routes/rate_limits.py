"""
Remaining quota for the caller on a rate-limited endpoint. Reading the
status does not consume a request.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from opentelemetry import trace
from pydantic import BaseModel
from sqlalchemy.orm import Session

from genflow.auth.clerk import get_optional_user_id
from genflow.db.database import get_db
from genflow.services.errors import PersistenceError
from genflow.services.rate_limiter import (
    SlidingWindowRateLimiter,
    build_rate_limit_key,
    get_rate_limit_rule,
)

router = APIRouter(prefix="/rate-limits", tags=["rate-limits"])
tracer = trace.get_tracer(__name__)


class RateLimitStatusResponse(BaseModel):
    endpoint: str
    limit: int
    window_ms: int
    allowed: bool
    remaining: int
    reset_at_ms: int
    retry_after_ms: Optional[int] = None


@router.get("/{endpoint}", response_model=RateLimitStatusResponse)
def get_rate_limit_status(
    endpoint: str,
    user_id: Optional[str] = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
):
    with tracer.start_as_current_span("get_rate_limit_status"):
        try:
            rule = get_rate_limit_rule(endpoint, user_id)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

        try:
            decision = SlidingWindowRateLimiter(db).status(
                build_rate_limit_key(endpoint, user_id), rule.limit, rule.window_ms
            )
        except PersistenceError as e:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
        return RateLimitStatusResponse(
            endpoint=endpoint,
            limit=rule.limit,
            window_ms=rule.window_ms,
            allowed=decision.allowed,
            remaining=decision.remaining,
            reset_at_ms=decision.reset_at_ms,
            retry_after_ms=decision.retry_after_ms,
        )
