#!/usr/bin/env python3
"""Run the scheduled job sequence once against a running deployment.
Schedule every minute, e.g. ``* * * * * python scripts/run_cron.py``.
"""

from __future__ import annotations

import argparse
import sys

from app import app
from services.orchestrator import run_cron_jobs


def main():
    parser = argparse.ArgumentParser(description='SignalsLoop cron runner')
    parser.add_argument('--base-url', help='Defaults to SITE_URL')
    args = parser.parse_args()

    with app.app_context():
        summary = run_cron_jobs(base_url=args.base_url)

    for result in summary['results']:
        state = 'ok' if result['success'] else f"FAILED ({result['error']})"
        print(f"{result['job']}: {state} in {result['duration_ms']}ms")
    print(f"run_id={summary['run_id']} succeeded={summary['succeeded']} failed={summary['failed']}")
    return 1 if summary['failed'] else 0


if __name__ == '__main__':
    sys.exit(main())
