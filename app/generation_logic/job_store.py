"""Process-local registry of ephemeral generation jobs.

Each job lives in its own entry guarded by its own lock, so a running pipeline
only ever contends with pollers of the same job. The registry lock is held just
long enough to insert, look up or evict entries. Readers always receive a
frozen ``Job`` snapshot, which means ``stage`` and ``progress`` are observed as
the pair written by a single ``update`` call.
"""

import logging
import threading
import uuid
from datetime import UTC
from datetime import datetime
from datetime import timedelta
from typing import Any

from app.core.config import settings
from app.core.exceptions import AlreadyRunningError
from app.models.job_models import Job
from app.models.job_models import JobStatus

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset({"status", "stage", "progress", "message", "warnings", "error", "started_at", "completed_at"})


class _JobEntry:
    __slots__ = ("job", "lock")

    def __init__(self, job: Job):
        self.job = job
        self.lock = threading.Lock()


class JobStore:
    def __init__(self, ttl_seconds: int | None = None):
        self._ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.job_ttl_seconds)
        self._entries: dict[str, _JobEntry] = {}
        self._by_engagement: dict[str, set[str]] = {}
        self._registry_lock = threading.Lock()

    @staticmethod
    def _new_job_id() -> str:
        return f"job_{uuid.uuid4().hex[:16]}"

    def create(self, engagement_id: str) -> str:
        """Register a pending job for *engagement_id* and return its id.

        Raises:
            AlreadyRunningError: if a pending/running job already exists for the engagement.
        """
        self.evict_expired()
        with self._registry_lock:
            active = self._find_active_locked(engagement_id)
            if active is not None:
                raise AlreadyRunningError(f"Report is already being generated (job {active.id})")

            job_id = self._new_job_id()
            job = Job(id=job_id, engagement_id=engagement_id, created_at=datetime.now(UTC))
            self._entries[job_id] = _JobEntry(job)
            self._by_engagement.setdefault(engagement_id, set()).add(job_id)

        logger.info("[%s] Job created for engagement %s", job_id, engagement_id)
        return job_id

    def get(self, job_id: str) -> Job | None:
        entry = self._entries.get(job_id)
        if entry is None:
            return None
        with entry.lock:
            job = entry.job
        if self._is_expired(job, datetime.now(UTC)):
            self._evict(job_id)
            return None
        return job

    def update(self, job_id: str, **patch: Any) -> Job | None:
        """Apply *patch* to the job atomically and return the new snapshot.

        Progress never moves backwards: a lower value than the current one is
        ignored, the rest of the patch still applies.
        """
        unknown = set(patch) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update job fields: {sorted(unknown)}")

        entry = self._entries.get(job_id)
        if entry is None:
            logger.warning("[%s] Update for unknown job ignored", job_id)
            return None

        with entry.lock:
            current = entry.job
            if "progress" in patch and patch["progress"] < current.progress:
                logger.debug(
                    "[%s] Ignoring progress regression %s -> %s",
                    job_id,
                    current.progress,
                    patch["progress"],
                )
                patch["progress"] = current.progress
            if "warnings" in patch:
                patch["warnings"] = tuple(patch["warnings"])
            updated = current.model_copy(update=patch)
            entry.job = updated
        return updated

    def find_active_job_for(self, engagement_id: str) -> Job | None:
        with self._registry_lock:
            return self._find_active_locked(engagement_id)

    def active_jobs(self) -> list[Job]:
        with self._registry_lock:
            entries = list(self._entries.values())
        return [entry.job for entry in entries if entry.job.status.is_active]

    def evict_expired(self) -> int:
        """Drop finished jobs older than the TTL. Returns the number evicted."""
        now = datetime.now(UTC)
        with self._registry_lock:
            expired = [job_id for job_id, entry in self._entries.items() if self._is_expired(entry.job, now)]
        for job_id in expired:
            self._evict(job_id)
        if expired:
            logger.info("Evicted %d expired job(s)", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._registry_lock:
            self._entries.clear()
            self._by_engagement.clear()

    def __len__(self) -> int:
        return len(self._entries)

    # -- internals ------------------------------------------------------------------

    def _find_active_locked(self, engagement_id: str) -> Job | None:
        for job_id in self._by_engagement.get(engagement_id, ()):
            entry = self._entries.get(job_id)
            if entry is not None and entry.job.status.is_active:
                return entry.job
        return None

    def _is_expired(self, job: Job, now: datetime) -> bool:
        return job.completed_at is not None and not job.status.is_active and now - job.completed_at > self._ttl

    def _evict(self, job_id: str) -> None:
        with self._registry_lock:
            entry = self._entries.pop(job_id, None)
            if entry is None:
                return
            siblings = self._by_engagement.get(entry.job.engagement_id)
            if siblings is not None:
                siblings.discard(job_id)
                if not siblings:
                    del self._by_engagement[entry.job.engagement_id]


job_store = JobStore()
