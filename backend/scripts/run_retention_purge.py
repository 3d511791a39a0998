"""
One-shot retention purge of notarized deliveries.

The API process schedules this nightly; this script is for cron hosts that do
not run the scheduler, and for manual dry runs.

Usage (from backend/):
  python -m scripts.run_retention_purge                       # uses RETENTION_* env
  python -m scripts.run_retention_purge --dry-run             # log only, delete nothing
  python -m scripts.run_retention_purge --retention-days 14

Production (cron example):
  0 3 * * * cd /app/backend && python -m scripts.run_retention_purge
"""
import asyncio
import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import database
from job_runner import run_retention_purge


def main():
    parser = argparse.ArgumentParser(description="Delete notarized files older than the retention window")
    parser.add_argument("--dry-run", action="store_true", default=None, help="Log what would be deleted without deleting")
    parser.add_argument("--retention-days", type=float, default=None, help="Override RETENTION_DAYS (default 7)")
    args = parser.parse_args()

    async def _():
        await database.connect()
        try:
            result = await run_retention_purge(dry_run=args.dry_run, retention_days=args.retention_days)
            print(result["message"])
            print(json.dumps(result["summary"], indent=2))
            return 0 if not result["summary"].get("failed") else 1
        finally:
            await database.close()

    return asyncio.run(_())


if __name__ == "__main__":
    sys.exit(main())
