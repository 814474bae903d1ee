#!/usr/bin/env python3
"""
Cron script to start new billing cycles for tenants whose own billing date
has passed.

Each tenant is reset on its own next_billing_at, never on a calendar
boundary, and credits_total is left untouched. Workers run the same sweep;
this script is for deployments that want it on a fixed schedule.

Usage:
    python scripts/reset_billing_cycles.py

Add to crontab to run automatically:
    # Run every 15 minutes
    */15 * * * * cd /path/to/contentops-backend && python scripts/reset_billing_cycles.py
"""

import sys
import logging
from pathlib import Path

# Add src to path so we can import contentops
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
load_dotenv()

from contentops.db.database import SessionLocal
from contentops.services.credit_ledger import reset_due_cycles

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('reset_billing_cycles.log'),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)


def main():
    logger.info("Starting billing cycle sweep")

    db = SessionLocal()

    try:
        reset_count = reset_due_cycles(db)
        logger.info(f"Billing cycles reset: {reset_count}")

    except Exception:
        logger.exception("Fatal error during billing cycle sweep")
        sys.exit(1)

    finally:
        db.close()

    logger.info("Billing cycle sweep complete")


if __name__ == "__main__":
    main()
