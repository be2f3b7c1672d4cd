#!/usr/bin/env python3
"""
Delete rate-limit windows that can no longer affect a decision.

Usage:
    python scripts/cleanup_rate_limits.py

Add to crontab to run automatically:
    # Every hour
    0 * * * * cd /path/to/genflow && python scripts/cleanup_rate_limits.py
"""

import sys
import logging
from pathlib import Path

# Add src to path so we can import genflow
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
load_dotenv()

from genflow.db.database import SessionLocal
from genflow.logging_config import configure_logging
from genflow.services.errors import PersistenceError
from genflow.services.rate_limiter import SlidingWindowRateLimiter

configure_logging()
logger = logging.getLogger(__name__)


def main():
    db = SessionLocal()
    try:
        deleted = SlidingWindowRateLimiter(db).cleanup_expired()
    except PersistenceError:
        logger.exception("Rate limit cleanup failed")
        sys.exit(1)
    finally:
        db.close()

    logger.info("Removed %d expired rate limit windows", deleted)


if __name__ == "__main__":
    main()
