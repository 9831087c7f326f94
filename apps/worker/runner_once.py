"""
Worker runner (one-shot mode for cron jobs).
Processes the currently triggered appointments once and exits.
"""
import logging
import os
import sys
import time

# Add project root to path
sys.path.append(os.getcwd())

from packages.db.database import init_db
from apps.worker.runner import poll_once

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    """Sweep triggered appointments once and exit."""
    logger.info("Worker (one-shot) started. Looking for triggered appointments...")
    init_db()

    start = time.monotonic()
    results = poll_once()
    if not results:
        logger.info("No triggered appointments found. Exiting.")
        sys.exit(0)

    elapsed = time.monotonic() - start
    failed = sum(1 for r in results if r.status_code >= 500)
    logger.info(f"Processed {len(results)} appointment(s) in {elapsed:.1f}s ({failed} failed). Exiting.")


if __name__ == "__main__":
    main()
