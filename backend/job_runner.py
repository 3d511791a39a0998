"""
Shared job runner for scheduled background jobs.
Used by server (scheduler), admin (manual run) and scripts (cron).
Each run_* returns a dict with "message" and "count", plus the job summary.
"""
import logging
from typing import Optional

logger = logging.getLogger(__name__)


async def run_retention_purge(dry_run: Optional[bool] = None, retention_days: Optional[float] = None):
    try:
        from services.retention_purge import RetentionConfig, run_retention_purge as purge
        config = RetentionConfig.from_env(dry_run=dry_run, retention_days=retention_days)
        summary = await purge(config)
        count = summary["wouldDelete"] if summary["dryRun"] else summary["deleted"]
        verb = "would delete" if summary["dryRun"] else "deleted"
        logger.info(f"Retention purge job completed: examined {summary['examined']}, {verb} {count}")
        return {
            "message": f"Retention purge examined {summary['examined']} file(s), {verb} {count}",
            "count": count,
            "summary": summary,
        }
    except Exception as e:
        logger.error(f"Retention purge job failed: {e}")
        raise


JOB_RUNNERS = {
    "retention_purge": run_retention_purge,
}
