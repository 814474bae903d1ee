#!/usr/bin/env python3
"""
Cron script that reports job items stuck in RUNNING/PROCESSING.

Stale items are only reported (log + non-zero exit for monitoring); they
are never re-queued automatically, because a worker may still own them.

Usage:
    python scripts/check_stale_claims.py [threshold_seconds]

Add to crontab to run automatically:
    # Run every 10 minutes
    */10 * * * * cd /path/to/contentops-backend && python scripts/check_stale_claims.py
"""

import sys
import logging
from pathlib import Path

# Add src to path so we can import contentops
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
load_dotenv()

from contentops.db.database import SessionLocal
from contentops.errors import StaleClaim
from contentops.services.claim_scheduler import report_stale_claims

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)

logger = logging.getLogger(__name__)


def main():
    threshold = int(sys.argv[1]) if len(sys.argv) > 1 else None

    db = SessionLocal()

    try:
        stale = report_stale_claims(db, threshold)
        if stale:
            raise StaleClaim([item.id for item in stale])

        logger.info("No stale claims")

    except StaleClaim as e:
        logger.error(str(e))
        sys.exit(2)  # Non-zero exit code for monitoring

    finally:
        db.close()


if __name__ == "__main__":
    main()
