from app.generation_logic.job_store import JobStore
from app.generation_logic.job_store import job_store
from app.models.job_models import JobStatusResponse


def get_status(job_id: str, store: JobStore = job_store) -> JobStatusResponse | None:
    """Read-only view of a job for polling clients; None once unknown or evicted."""
    job = store.get(job_id)
    if job is None:
        return None
    return JobStatusResponse(
        id=job.id,
        engagementId=job.engagement_id,
        status=job.status,
        stage=job.stage,
        progress=job.progress,
        message=job.message,
        warnings=list(job.warnings),
        error=job.error,
        createdAt=job.created_at,
        startedAt=job.started_at,
        completedAt=job.completed_at,
    )
