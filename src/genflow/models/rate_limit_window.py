from sqlalchemy import Column, String, Integer, BigInteger

from genflow.db.database import Base


class RateLimitWindow(Base):
    """Sliding-window counter for one ``{endpoint}:{user}`` key."""

    __tablename__ = "rate_limit_windows"

    key = Column(String(255), primary_key=True)
    count = Column(Integer, nullable=False, default=0)
    # Epoch milliseconds; the housekeeping sweep scans on this column.
    window_start_ms = Column(BigInteger, nullable=False, index=True)

    def __repr__(self):
        return f"<RateLimitWindow(key={self.key}, count={self.count})>"
