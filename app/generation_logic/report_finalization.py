"""Completion of a successful run and streaming of the stored report."""

import logging
from datetime import UTC
from datetime import datetime
from urllib.parse import quote

from fastapi import HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.exceptions import HardStageError
from app.generation_logic.job_store import JobStore
from app.generation_logic.job_store import job_store
from app.models.db_models import EngagementRecord
from app.models.db_models import GeneratedReportRecord
from app.models.job_models import JobStage
from app.models.job_models import JobStatus
from app.services.email.notify import notify_report_complete
from app.services.engagements import get_latest_report
from app.services.engagements import record_completed_report
from app.services.storage.file_storage import DOCX_MEDIA_TYPE
from app.services.storage.file_storage import StorageError
from app.services.storage.file_storage import StoredFileNotFoundError
from app.services.storage.file_storage import delete_file
from app.services.storage.file_storage import generate_file_name
from app.services.storage.file_storage import read_file
from app.services.storage.file_storage import save_file

__all__ = [
    "finalize_successful_run",
    "build_download_filename",
    "stream_latest_report",
    "DOCX_MEDIA_TYPE",
]

logger = logging.getLogger(__name__)

COMPLETE_MESSAGE = "Report generated successfully"


async def finalize_successful_run(
    job_id: str,
    engagement: EngagementRecord,
    document: bytes,
    warnings: list[str],
    store: JobStore = job_store,
) -> GeneratedReportRecord:
    """Persist *document* as the next report version and close the run.

    Raises:
        HardStageError: if the file or the report row cannot be written.
    """
    file_name = generate_file_name(engagement.company_name or "report", "docx")
    try:
        path = await save_file(document, settings.reports_dir, file_name)
    except StorageError as e:
        raise HardStageError(f"Failed to save document: {e}") from e

    try:
        report = await record_completed_report(engagement.id, path, settings.report_retention_days)
    except SQLAlchemyError as e:
        logger.error("[%s] Recording report version failed, removing %s: %s", job_id, path, e)
        await delete_file(path)
        raise HardStageError("Failed to record report version") from e

    store.update(
        job_id,
        status=JobStatus.COMPLETE,
        stage=JobStage.COMPLETE,
        progress=100,
        message=COMPLETE_MESSAGE,
        warnings=warnings,
        completed_at=datetime.now(UTC),
    )
    logger.info("[%s] Report v%d saved for engagement %s", job_id, report.version, engagement.id)

    await notify_report_complete(engagement.id, warnings)
    return report


def build_download_filename(engagement: EngagementRecord, version: int) -> str:
    company = engagement.company_name or "Company"
    valuation_date = engagement.valuation_date.isoformat() if engagement.valuation_date else "undated"
    return f"{company} - {engagement.report_type.short_label} - {valuation_date} - DRAFT_v{version}.docx"


def _content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "replace").decode("ascii").replace('"', "'")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


async def stream_latest_report(engagement: EngagementRecord) -> StreamingResponse:
    """Stream the newest stored report version of *engagement* as an attachment."""
    report = await get_latest_report(engagement.id)
    if report is None:
        raise HTTPException(status_code=404, detail="No generated report found")

    try:
        data = await read_file(report.file_path)
    except StoredFileNotFoundError as e:
        logger.warning("Report file %s for engagement %s is gone", report.file_path, engagement.id)
        raise HTTPException(status_code=404, detail="Report file not found") from e
    except StorageError as e:
        logger.error("Failed to read report %s: %s", report.file_path, e)
        raise HTTPException(status_code=500, detail="Failed to download report") from e

    filename = build_download_filename(engagement, report.version)
    return StreamingResponse(
        iter([data]),
        media_type=DOCX_MEDIA_TYPE,
        headers={
            "Content-Disposition": _content_disposition(filename),
            "Content-Length": str(len(data)),
        },
    )
