#!/usr/bin/env python3
"""Start RQ worker for delivering queued push notifications.

Usage:
    python scripts/start_worker.py [--burst]

Used when NOTIFICATION_BACKEND=rq; the API process enqueues notifications
and this worker sends them to the push provider.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from rq import Worker
from chathub.infra.logging import app_logger
from chathub.infra.queue import push_queue, redis_conn


def main():
    parser = argparse.ArgumentParser(description="Start push notification worker")
    parser.add_argument(
        "--burst",
        action="store_true",
        help="Run in burst mode (exit when queue is empty)",
    )

    args = parser.parse_args()

    app_logger.info("Starting push worker", extra={"queue": push_queue.name, "burst": args.burst})

    worker = Worker([push_queue], connection=redis_conn)
    worker.work(burst=args.burst)


if __name__ == "__main__":
    main()
