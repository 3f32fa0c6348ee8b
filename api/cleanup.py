# This file serves as the entry point for a scheduled cron job.
# It imports the actual cleanup logic from the application package.
import asyncio
import logging

from app.services.storage.cleanup_reports_job import run_report_cleanup

logger = logging.getLogger(__name__)


def handler(event, context):
    """Scheduled cleanup function to delete stored reports past their retention window."""
    logger.info("Report cleanup cron job invoked.")
    counts = asyncio.run(run_report_cleanup())
    logger.info("Report cleanup cron job finished.")
    return {"status": "success", **counts}


if __name__ == "__main__":
    asyncio.run(run_report_cleanup())
