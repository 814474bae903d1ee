#!/usr/bin/env python3
"""
Start a background worker (equivalent to the `contentops-worker` command).

Usage:
    python scripts/run_worker.py

Run as many copies as needed; they coordinate only through the database.
"""

import sys
from pathlib import Path

# Add src to path so we can import contentops
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from contentops.cli.main import worker


if __name__ == "__main__":
    worker()
