# app/services/storage/cleanup_reports_job.py
"""Deletes stored files of generated reports past their retention window.

Report rows are immutable and stay in the database, so version numbering keeps
increasing; only the bytes go away. Downloads of a purged version answer 404.
"""

import asyncio
import logging
import os
from datetime import UTC
from datetime import datetime

from dotenv import load_dotenv

# Load .env when run locally; in deployment the variables are set directly
dotenv_path = os.path.join(os.path.dirname(__file__), "../../../.env")
load_dotenv(dotenv_path=dotenv_path)

from app.services.engagements import list_expired_reports  # noqa: E402
from app.services.storage.file_storage import delete_file  # noqa: E402

logger = logging.getLogger(__name__)


async def run_report_cleanup(now: datetime | None = None) -> dict[str, int]:
    """Delete the files of every expired report. Returns scanned/deleted counts."""
    cutoff = now or datetime.now(UTC)
    expired = await list_expired_reports(cutoff)
    logger.info("Report cleanup: %d expired report(s) before %s", len(expired), cutoff.isoformat())

    deleted = 0
    for report in expired:
        if await delete_file(report.file_path):
            deleted += 1
            logger.info("Deleted expired report %s v%d: %s", report.engagement_id, report.version, report.file_path)

    logger.info("Report cleanup complete. Scanned %d report(s). Deleted %d file(s).", len(expired), deleted)
    return {"scanned": len(expired), "deleted": deleted}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    logger.info("Running report cleanup script directly...")
    asyncio.run(run_report_cleanup())
    logger.info("Report cleanup script finished.")
