#!/usr/bin/env python3
"""
Pick up generation requests and batches left unfinished, e.g. after a
server restart.

Usage:
    python scripts/process_pending_jobs.py

Add to crontab to run automatically:
    # Every 5 minutes
    */5 * * * * cd /path/to/genflow && python scripts/process_pending_jobs.py
"""

import asyncio
import sys
import logging
from pathlib import Path

# Add src to path so we can import genflow
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
load_dotenv()

from genflow.logging_config import configure_logging
from genflow.services.job_runner import JobRunner

configure_logging()
logger = logging.getLogger(__name__)


async def main():
    logger.info("Processing pending generation jobs")

    try:
        results = await JobRunner().process_pending()
    except Exception:
        logger.exception("Fatal error while processing pending jobs")
        sys.exit(1)

    logger.info(
        "Done: %d generations, %d batches, %d stale generations failed",
        results["generations"], results["batches"], results["stale_generations"],
    )


if __name__ == "__main__":
    asyncio.run(main())
