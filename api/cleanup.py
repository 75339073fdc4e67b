# Entry point for the scheduled export-retention job (serverless cron).
# The sweep itself lives in app.services.storage.cleanup_s3_job.
import logging

from app.core.logging import setup_logging
from app.services.storage.cleanup_s3_job import run_s3_cleanup

setup_logging()
logger = logging.getLogger(__name__)


def handler(event, context):
    """Scheduled function deleting exported documents past the retention window."""
    logger.info("Export retention cron job invoked.")
    counts = run_s3_cleanup()
    if counts.get("errors"):
        logger.error("Export retention cron job failed: %s", counts)
        return {"status": "error", **counts}
    logger.info("Export retention cron job finished: %s", counts)
    return {"status": "success", **counts}


if __name__ == "__main__":
    handler(None, None)
