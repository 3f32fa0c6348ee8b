from datetime import datetime
from enum import Enum

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.PENDING, JobStatus.RUNNING)


class JobStage(str, Enum):
    PARSING_MODEL = "parsing_model"
    RESEARCHING_COMPANY = "researching_company"
    RESEARCHING_INDUSTRY = "researching_industry"
    GENERATING_NARRATIVES = "generating_narratives"
    ASSEMBLING_DOCUMENT = "assembling_document"
    SAVING_REPORT = "saving_report"
    COMPLETE = "complete"
    FAILED = "failed"


# Fixed pipeline order; FAILED is absorbing and may follow any of these.
STAGE_ORDER: tuple[JobStage, ...] = (
    JobStage.PARSING_MODEL,
    JobStage.RESEARCHING_COMPANY,
    JobStage.RESEARCHING_INDUSTRY,
    JobStage.GENERATING_NARRATIVES,
    JobStage.ASSEMBLING_DOCUMENT,
    JobStage.SAVING_REPORT,
    JobStage.COMPLETE,
)

# Progress reported when a stage is entered.
STAGE_CHECKPOINTS: dict[JobStage, int] = {
    JobStage.PARSING_MODEL: 10,
    JobStage.RESEARCHING_COMPANY: 25,
    JobStage.RESEARCHING_INDUSTRY: 40,
    JobStage.GENERATING_NARRATIVES: 55,
    JobStage.ASSEMBLING_DOCUMENT: 85,
    JobStage.SAVING_REPORT: 92,
    JobStage.COMPLETE: 100,
}
NARRATIVES_FINAL_PROGRESS = 80


class Job(BaseModel):
    """Ephemeral execution record of one pipeline run. Instances are immutable snapshots."""

    model_config = ConfigDict(frozen=True)

    id: str
    engagement_id: str
    status: JobStatus = JobStatus.PENDING
    stage: JobStage = JobStage.PARSING_MODEL
    progress: int = Field(default=0, ge=0, le=100)
    message: str = "Job queued"
    warnings: tuple[str, ...] = ()
    error: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobStatusResponse(BaseModel):
    """Payload returned to polling clients."""

    id: str
    engagementId: str
    status: JobStatus
    stage: JobStage
    progress: int
    message: str
    warnings: list[str]
    error: str | None = None
    createdAt: datetime
    startedAt: datetime | None = None
    completedAt: datetime | None = None
