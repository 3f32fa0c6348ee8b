"""Starts generation runs without blocking the HTTP request."""

import asyncio
import logging

from app.core.exceptions import AlreadyRunningError
from app.core.exceptions import NotEligibleError
from app.generation_logic.engagement_state import CLAIMABLE_STATUSES
from app.generation_logic.engagement_state import claim_for_processing
from app.generation_logic.engagement_state import update_engagement_status
from app.generation_logic.job_store import JobStore
from app.generation_logic.job_store import job_store
from app.generation_logic.stage_executor import ReportPipeline
from app.models.db_models import EngagementStatus
from app.services.engagements import get_engagement

logger = logging.getLogger(__name__)


class PipelineLauncher:
    """Validates preconditions, claims the engagement, and detaches the run.

    Detached tasks are kept in ``_tasks`` until they finish; the event loop only
    holds weak references to tasks.
    """

    def __init__(self, store: JobStore = job_store, pipeline: ReportPipeline | None = None):
        self.store = store
        self.pipeline = pipeline or ReportPipeline(store=store)
        self._tasks: dict[str, asyncio.Task[None]] = {}

    async def launch(self, engagement_id: str) -> str:
        """Start a run for *engagement_id* and return its job id immediately.

        Raises:
            AlreadyRunningError: a live job exists or the engagement is already PROCESSING.
            NotEligibleError: unknown engagement, wrong status, or no model uploaded.
        """
        active = self.store.find_active_job_for(engagement_id)
        if active is not None:
            raise AlreadyRunningError(f"Report is already being generated (job {active.id})")

        engagement = await get_engagement(engagement_id)
        if engagement is None:
            raise NotEligibleError("Engagement not found")
        if engagement.status == EngagementStatus.PROCESSING:
            raise AlreadyRunningError("Report is already being generated")
        if engagement.status not in CLAIMABLE_STATUSES:
            raise NotEligibleError(f"Engagement is in {engagement.status.value} status")
        if not engagement.model_file_path:
            raise NotEligibleError("No model file uploaded")

        if not await claim_for_processing(engagement_id):
            raise AlreadyRunningError("Report is already being generated")

        try:
            job_id = self.store.create(engagement_id)
        except AlreadyRunningError:
            # Lost the in-process race after winning the durable claim; hand the status back
            await update_engagement_status(engagement_id, engagement.status, engagement.error_message)
            raise

        task = asyncio.create_task(self.pipeline.run(job_id, engagement_id), name=f"report-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda t, jid=job_id: self._on_done(jid, t))
        logger.info("[%s] Generation launched for engagement %s", job_id, engagement_id)
        return job_id

    def _on_done(self, job_id: str, task: asyncio.Task[None]) -> None:
        self._tasks.pop(job_id, None)
        if task.cancelled():
            logger.warning("[%s] Generation task was cancelled", job_id)
        elif task.exception() is not None:
            logger.error("[%s] Generation task crashed: %s", job_id, task.exception())

    def get_task(self, job_id: str) -> asyncio.Task[None] | None:
        return self._tasks.get(job_id)

    def in_flight(self) -> list[str]:
        return list(self._tasks)


launcher = PipelineLauncher()
