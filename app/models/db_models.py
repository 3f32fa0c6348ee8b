"""Durable tables: engagements and the report versions generated for them."""

import enum
import uuid
from datetime import UTC
from datetime import date
from datetime import datetime

from pydantic import BaseModel
from pydantic import ConfigDict
from sqlalchemy import JSON
from sqlalchemy import Date
from sqlalchemy import DateTime
from sqlalchemy import Enum
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped
from sqlalchemy.orm import mapped_column
from sqlalchemy.orm import relationship

from app.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


class EngagementStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PROCESSING = "PROCESSING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


class ReportType(str, enum.Enum):
    FOUR09A = "FOUR09A"
    FIFTY_NINE_SIXTY = "FIFTY_NINE_SIXTY"

    @property
    def short_label(self) -> str:
        return "409A" if self is ReportType.FOUR09A else "59-60"

    @property
    def display_name(self) -> str:
        return "409A Valuation" if self is ReportType.FOUR09A else "Gift & Estate (59-60)"


class Engagement(Base):
    __tablename__ = "engagements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    owner_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    report_type: Mapped[ReportType] = mapped_column(Enum(ReportType, native_enum=False), nullable=False)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    valuation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    model_file_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    selected_approaches: Mapped[list | None] = mapped_column(JSON, nullable=True)
    qualitative_context: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[EngagementStatus] = mapped_column(
        Enum(EngagementStatus, native_enum=False),
        nullable=False,
        default=EngagementStatus.DRAFT,
        index=True,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    generated_reports: Mapped[list["GeneratedReport"]] = relationship(
        back_populates="engagement",
        order_by="GeneratedReport.version",
    )

    def __repr__(self) -> str:
        return f"<Engagement {self.id} | {self.status.value} | {self.company_name}>"


class GeneratedReport(Base):
    __tablename__ = "generated_reports"
    __table_args__ = (UniqueConstraint("engagement_id", "version", name="uq_report_engagement_version"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    engagement_id: Mapped[str] = mapped_column(ForeignKey("engagements.id"), nullable=False, index=True)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    engagement: Mapped[Engagement] = relationship(back_populates="generated_reports")

    def __repr__(self) -> str:
        return f"<GeneratedReport {self.engagement_id} v{self.version}>"


# Detached, read-only snapshots handed out of the session scope ------------------------


class EngagementRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    owner_id: str
    owner_email: str | None = None
    report_type: ReportType
    company_name: str | None = None
    valuation_date: date | None = None
    model_file_path: str | None = None
    selected_approaches: list[str] | None = None
    qualitative_context: str | None = None
    status: EngagementStatus
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


class GeneratedReportRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    engagement_id: str
    file_path: str
    version: int
    created_at: datetime
    expires_at: datetime
