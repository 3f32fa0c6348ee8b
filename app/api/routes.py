import logging
import re
from datetime import date
from datetime import datetime

from fastapi import APIRouter
from fastapi import Depends
from fastapi import File
from fastapi import Form
from fastapi import HTTPException
from fastapi import UploadFile
from fastapi import status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from pydantic import Field as PydanticField

from app.core.config import settings
from app.core.exceptions import PreconditionError
from app.core.security import get_current_user_id
from app.core.security import verify_api_key
from app.core.validation import validate_model_upload
from app.core.validation import validate_outlook_upload
from app.generation_logic.launcher import launcher
from app.generation_logic.report_finalization import stream_latest_report
from app.generation_logic.status_query import get_status
from app.models.db_models import EngagementRecord
from app.models.db_models import EngagementStatus
from app.models.db_models import ReportType
from app.models.job_models import JobStatusResponse
from app.models.report_models import ApproachType
from app.services import engagements as engagement_service
from app.services.economic_outlook import MAX_YEAR
from app.services.economic_outlook import MIN_YEAR
from app.services.economic_outlook import EconomicOutlookInfo
from app.services.economic_outlook import OutlookExistsError
from app.services.economic_outlook import delete_outlook
from app.services.economic_outlook import is_valid_quarter
from app.services.economic_outlook import is_valid_year
from app.services.economic_outlook import list_outlooks
from app.services.economic_outlook import store_outlook
from app.services.storage.file_storage import StorageError
from app.services.storage.file_storage import generate_file_name
from app.services.storage.file_storage import save_file

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(verify_api_key)])


# --- Payloads -----------------------------------------------------------------


class CreateEngagementPayload(BaseModel):
    reportType: ReportType
    companyName: str | None = PydanticField(default=None, max_length=255)
    valuationDate: date | None = None
    ownerEmail: str | None = PydanticField(default=None, max_length=255)
    selectedApproaches: list[ApproachType] = PydanticField(default_factory=list)
    qualitativeContext: str | None = None


class ReportVersionResponse(BaseModel):
    version: int
    createdAt: datetime
    expiresAt: datetime


class EngagementResponse(BaseModel):
    id: str
    reportType: ReportType
    companyName: str | None
    valuationDate: date | None
    status: EngagementStatus
    errorMessage: str | None
    hasModel: bool
    selectedApproaches: list[str]
    createdAt: datetime
    updatedAt: datetime
    reports: list[ReportVersionResponse] = PydanticField(default_factory=list)


class GenerateResponse(BaseModel):
    engagementId: str
    jobId: str
    status: str = EngagementStatus.PROCESSING.value


# --- Helpers ------------------------------------------------------------------


async def _load_owned_engagement(engagement_id: str, user_id: str) -> EngagementRecord:
    engagement = await engagement_service.get_engagement(engagement_id)
    if engagement is None:
        raise HTTPException(status_code=404, detail="Engagement not found")
    if engagement.owner_id != user_id:
        logger.warning("User %s denied access to engagement %s", user_id, engagement_id)
        raise HTTPException(status_code=403, detail="Forbidden")
    return engagement


async def _to_response(engagement: EngagementRecord) -> EngagementResponse:
    reports = await engagement_service.list_reports(engagement.id)
    return EngagementResponse(
        id=engagement.id,
        reportType=engagement.report_type,
        companyName=engagement.company_name,
        valuationDate=engagement.valuation_date,
        status=engagement.status,
        errorMessage=engagement.error_message,
        hasModel=bool(engagement.model_file_path),
        selectedApproaches=list(engagement.selected_approaches or []),
        createdAt=engagement.created_at,
        updatedAt=engagement.updated_at,
        reports=[ReportVersionResponse(version=r.version, createdAt=r.created_at, expiresAt=r.expires_at) for r in reports],
    )


# --- Engagements ----------------------------------------------------------------


@router.post("/engagements", status_code=status.HTTP_201_CREATED, tags=["Engagements"])
async def create_engagement(
    payload: CreateEngagementPayload,
    user_id: str = Depends(get_current_user_id),
) -> EngagementResponse:
    engagement = await engagement_service.create_engagement(
        owner_id=user_id,
        report_type=payload.reportType,
        company_name=payload.companyName,
        valuation_date=payload.valuationDate,
        owner_email=payload.ownerEmail,
        selected_approaches=[a.value for a in payload.selectedApproaches],
        qualitative_context=payload.qualitativeContext,
    )
    return await _to_response(engagement)


@router.get("/engagements/{engagement_id}", tags=["Engagements"])
async def read_engagement(
    engagement_id: str,
    user_id: str = Depends(get_current_user_id),
) -> EngagementResponse:
    engagement = await _load_owned_engagement(engagement_id, user_id)
    return await _to_response(engagement)


@router.post("/engagements/{engagement_id}/model", tags=["Engagements"])
async def upload_model(
    engagement_id: str,
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
) -> EngagementResponse:
    """Store the valuation workbook for the engagement, replacing any previous upload."""
    engagement = await _load_owned_engagement(engagement_id, user_id)
    if engagement.status == EngagementStatus.PROCESSING:
        raise HTTPException(status_code=400, detail="Cannot replace the model while a report is being generated")

    content = await file.read()
    ext = await validate_model_upload(file.filename, content)
    name = generate_file_name(engagement.company_name or engagement_id, ext)
    try:
        path = await save_file(content, settings.models_dir, name)
    except StorageError as e:
        logger.error("Model upload for engagement %s failed: %s", engagement_id, e)
        raise HTTPException(status_code=500, detail="Failed to store the uploaded model") from e

    updated = await engagement_service.set_model_file_path(engagement_id, path)
    if updated is None:
        raise HTTPException(status_code=404, detail="Engagement not found")
    logger.info("Model %s uploaded for engagement %s", name, engagement_id)
    return await _to_response(updated)


# --- Generation -----------------------------------------------------------------


@router.post("/engagements/{engagement_id}/generate", tags=["Generation"])
async def generate_report(
    engagement_id: str,
    user_id: str = Depends(get_current_user_id),
) -> GenerateResponse:
    """Start report generation in the background and return the job id to poll."""
    await _load_owned_engagement(engagement_id, user_id)
    try:
        job_id = await launcher.launch(engagement_id)
    except PreconditionError as e:
        logger.info("Generation for engagement %s rejected: %s", engagement_id, e)
        raise HTTPException(status_code=400, detail=str(e)) from e
    return GenerateResponse(engagementId=engagement_id, jobId=job_id)


@router.get("/jobs/{job_id}", tags=["Generation"])
async def read_job_status(job_id: str) -> JobStatusResponse:
    job_status = get_status(job_id)
    if job_status is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job_status


@router.get("/engagements/{engagement_id}/download", tags=["Generation"])
async def download_report(
    engagement_id: str,
    user_id: str = Depends(get_current_user_id),
) -> StreamingResponse:
    engagement = await _load_owned_engagement(engagement_id, user_id)
    if engagement.status != EngagementStatus.COMPLETE:
        raise HTTPException(status_code=400, detail="Report is not ready for download")
    return await stream_latest_report(engagement)


# --- Economic outlooks ----------------------------------------------------------


def _parse_outlook_id(outlook_id: str) -> tuple[int, int]:
    match = re.fullmatch(r"Q(\d)_(\d{4})", outlook_id)
    if not match or not is_valid_quarter(int(match.group(1))) or not is_valid_year(int(match.group(2))):
        raise HTTPException(status_code=404, detail="Economic outlook not found")
    return int(match.group(1)), int(match.group(2))


@router.get("/economic-outlooks", tags=["Economic outlooks"])
async def read_economic_outlooks(
    user_id: str = Depends(get_current_user_id),
) -> list[EconomicOutlookInfo]:
    try:
        return await list_outlooks()
    except StorageError as e:
        logger.error("Listing economic outlooks failed: %s", e)
        raise HTTPException(status_code=500, detail="Failed to fetch economic outlooks") from e


@router.post("/economic-outlooks", status_code=status.HTTP_201_CREATED, tags=["Economic outlooks"])
async def upload_economic_outlook(
    file: UploadFile = File(...),
    quarter: int = Form(...),
    year: int = Form(...),
    user_id: str = Depends(get_current_user_id),
) -> EconomicOutlookInfo:
    """Store the economic outlook document used by reports valued in that quarter."""
    if not is_valid_quarter(quarter):
        raise HTTPException(status_code=400, detail="Quarter must be 1, 2, 3, or 4")
    if not is_valid_year(year):
        raise HTTPException(status_code=400, detail=f"Year must be between {MIN_YEAR} and {MAX_YEAR}")

    content = await file.read()
    await validate_outlook_upload(file.filename, content)
    try:
        outlook = await store_outlook(quarter, year, content)
    except OutlookExistsError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except StorageError as e:
        logger.error("Storing economic outlook Q%d %d failed: %s", quarter, year, e)
        raise HTTPException(status_code=500, detail="Failed to create economic outlook") from e
    logger.info("Economic outlook Q%d %d uploaded by %s", quarter, year, user_id)
    return outlook


@router.delete("/economic-outlooks/{outlook_id}", tags=["Economic outlooks"])
async def remove_economic_outlook(
    outlook_id: str,
    user_id: str = Depends(get_current_user_id),
) -> dict[str, str]:
    quarter, year = _parse_outlook_id(outlook_id)
    try:
        deleted = await delete_outlook(quarter, year)
    except StorageError as e:
        logger.error("Deleting economic outlook %s failed: %s", outlook_id, e)
        raise HTTPException(status_code=500, detail="Failed to delete economic outlook") from e
    if not deleted:
        raise HTTPException(status_code=404, detail="Economic outlook not found")
    logger.info("Economic outlook %s deleted by %s", outlook_id, user_id)
    return {"message": "Economic outlook deleted successfully"}
