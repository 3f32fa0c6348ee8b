"""Engagement and generated-report persistence.

All functions are coroutines that run their SQLAlchemy unit of work in a worker
thread and hand back frozen pydantic snapshots, never live ORM objects.
"""

import asyncio
import logging
from datetime import UTC
from datetime import date
from datetime import datetime
from datetime import timedelta

from sqlalchemy import func
from sqlalchemy import select
from sqlalchemy import update

from app.core.database import session_scope
from app.models.db_models import Engagement
from app.models.db_models import EngagementRecord
from app.models.db_models import EngagementStatus
from app.models.db_models import GeneratedReport
from app.models.db_models import GeneratedReportRecord
from app.models.db_models import ReportType

logger = logging.getLogger(__name__)


async def create_engagement(
    owner_id: str,
    report_type: ReportType,
    company_name: str | None = None,
    valuation_date: date | None = None,
    owner_email: str | None = None,
    model_file_path: str | None = None,
    selected_approaches: list[str] | None = None,
    qualitative_context: str | None = None,
) -> EngagementRecord:
    def _sync() -> EngagementRecord:
        with session_scope() as session:
            engagement = Engagement(
                owner_id=owner_id,
                owner_email=owner_email,
                report_type=report_type,
                company_name=company_name,
                valuation_date=valuation_date,
                model_file_path=model_file_path,
                selected_approaches=selected_approaches,
                qualitative_context=qualitative_context,
            )
            session.add(engagement)
            session.flush()
            return EngagementRecord.model_validate(engagement)

    record = await asyncio.to_thread(_sync)
    logger.info("Engagement %s created for owner %s", record.id, owner_id)
    return record


async def get_engagement(engagement_id: str) -> EngagementRecord | None:
    def _sync() -> EngagementRecord | None:
        with session_scope() as session:
            engagement = session.get(Engagement, engagement_id)
            return EngagementRecord.model_validate(engagement) if engagement else None

    return await asyncio.to_thread(_sync)


async def set_model_file_path(engagement_id: str, path: str) -> EngagementRecord | None:
    def _sync() -> EngagementRecord | None:
        with session_scope() as session:
            engagement = session.get(Engagement, engagement_id)
            if engagement is None:
                return None
            engagement.model_file_path = path
            session.flush()
            return EngagementRecord.model_validate(engagement)

    return await asyncio.to_thread(_sync)


async def list_reports(engagement_id: str) -> list[GeneratedReportRecord]:
    def _sync() -> list[GeneratedReportRecord]:
        with session_scope() as session:
            rows = session.scalars(
                select(GeneratedReport).where(GeneratedReport.engagement_id == engagement_id).order_by(GeneratedReport.version)
            ).all()
            return [GeneratedReportRecord.model_validate(row) for row in rows]

    return await asyncio.to_thread(_sync)


async def get_latest_report(engagement_id: str) -> GeneratedReportRecord | None:
    def _sync() -> GeneratedReportRecord | None:
        with session_scope() as session:
            row = session.scalars(
                select(GeneratedReport)
                .where(GeneratedReport.engagement_id == engagement_id)
                .order_by(GeneratedReport.version.desc())
                .limit(1)
            ).first()
            return GeneratedReportRecord.model_validate(row) if row else None

    return await asyncio.to_thread(_sync)


def _add_next_version(session, engagement_id: str, file_path: str, retention_days: int) -> GeneratedReport:
    current_max = session.scalar(select(func.max(GeneratedReport.version)).where(GeneratedReport.engagement_id == engagement_id))
    created_at = datetime.now(UTC)
    report = GeneratedReport(
        engagement_id=engagement_id,
        file_path=file_path,
        version=(current_max or 0) + 1,
        created_at=created_at,
        expires_at=created_at + timedelta(days=retention_days),
    )
    session.add(report)
    session.flush()
    return report


async def create_report_version(engagement_id: str, file_path: str, retention_days: int) -> GeneratedReportRecord:
    """Insert the next report version for the engagement.

    The version is one more than the highest existing version, so it keeps
    increasing even after the stored files of older versions were purged.
    """

    def _sync() -> GeneratedReportRecord:
        with session_scope() as session:
            return GeneratedReportRecord.model_validate(_add_next_version(session, engagement_id, file_path, retention_days))

    record = await asyncio.to_thread(_sync)
    logger.info("Report v%d recorded for engagement %s", record.version, engagement_id)
    return record


async def record_completed_report(engagement_id: str, file_path: str, retention_days: int) -> GeneratedReportRecord:
    """Insert the next report version and mark the engagement COMPLETE in one transaction.

    Either both writes land or neither does.
    """

    def _sync() -> GeneratedReportRecord:
        with session_scope() as session:
            report = _add_next_version(session, engagement_id, file_path, retention_days)
            session.execute(
                update(Engagement)
                .where(Engagement.id == engagement_id)
                .values(status=EngagementStatus.COMPLETE, error_message=None)
            )
            return GeneratedReportRecord.model_validate(report)

    record = await asyncio.to_thread(_sync)
    logger.info("Report v%d recorded, engagement %s COMPLETE", record.version, engagement_id)
    return record


async def list_expired_reports(now: datetime | None = None) -> list[GeneratedReportRecord]:
    cutoff = now or datetime.now(UTC)

    def _sync() -> list[GeneratedReportRecord]:
        with session_scope() as session:
            rows = session.scalars(select(GeneratedReport).where(GeneratedReport.expires_at < cutoff)).all()
            return [GeneratedReportRecord.model_validate(row) for row in rows]

    return await asyncio.to_thread(_sync)
