#!/usr/bin/env python3
"""
Pull campaigns and stats from Yandex Direct into the database without the API server.

Run from backend directory:
  python scripts/force_sync.py            # last 7 days
  python scripts/force_sync.py --full     # last 90 days
"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path

# Ensure backend root is on path
backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from adsteward.config import get_settings
from adsteward.container import build_container


async def main():
    parser = argparse.ArgumentParser(description="Force a Yandex Direct data sync")
    parser.add_argument("--full", action="store_true", help="Sync the last 90 days instead of the last 7")
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    container = build_container(settings)
    try:
        await container.database.init_db()
        summary = await container.orchestrator.sync_yandex_data("full" if args.full else "recent")
        print(f"Synced {summary.campaigns} campaigns, {summary.stats} stat rows, {summary.keywords} keywords "
              f"({summary.date_from} to {summary.date_to})")
        if summary.auxiliary_failures:
            print(f"  Keywords/modifiers failed for: {', '.join(summary.auxiliary_failures)}")
    finally:
        await container.aclose()


if __name__ == "__main__":
    asyncio.run(main())
