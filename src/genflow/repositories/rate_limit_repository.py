# src/genflow/repositories/rate_limit_repository.py

import logging

from opentelemetry import trace
from sqlalchemy.orm import Session

from genflow.models.rate_limit_window import RateLimitWindow

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class RateLimitRepository:
    """
    Row access for rate-limit windows. Methods do not commit; the rate
    limiter owns the transaction around each admit decision.
    """

    @staticmethod
    def get_for_update(db: Session, key: str) -> RateLimitWindow | None:
        return (
            db.query(RateLimitWindow)
            .filter(RateLimitWindow.key == key)
            .with_for_update()
            .populate_existing()
            .first()
        )

    @staticmethod
    def get(db: Session, key: str) -> RateLimitWindow | None:
        return db.query(RateLimitWindow).filter(RateLimitWindow.key == key).first()

    @staticmethod
    def add(db: Session, key: str, count: int, window_start_ms: int) -> RateLimitWindow:
        window = RateLimitWindow(key=key, count=count, window_start_ms=window_start_ms)
        db.add(window)
        db.flush()
        return window

    @staticmethod
    def delete_older_than(db: Session, cutoff_ms: int) -> int:
        with tracer.start_as_current_span("db.delete_stale_rate_limits") as span:
            span.set_attribute("cutoff_ms", cutoff_ms)
            deleted = (
                db.query(RateLimitWindow)
                .filter(RateLimitWindow.window_start_ms < cutoff_ms)
                .delete(synchronize_session=False)
            )
        logger.debug("Deleted %d stale rate limit windows", deleted)
        return deleted
