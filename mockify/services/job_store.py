"""In-memory render job store with TTL.

The store is the only owner of job records. Callers receive copies, and the
only mutations are ``update_progress``, ``complete`` and ``fail``. Records are
per-instance; nothing is shared across processes.
"""

import copy
import logging
import threading
import time
import uuid
from datetime import datetime, timezone

from mockify.exceptions import JobNotFoundError, JobStateError
from mockify.schemas.job import Job, JobParams, JobStatus, RenderResult

logger = logging.getLogger(__name__)


class JobStore:
    """Thread-safe in-memory job store with TTL-based expiration."""

    def __init__(self, ttl_seconds: int = 86400) -> None:  # 24h default
        self._jobs: dict[str, Job] = {}
        self._created: dict[str, float] = {}
        self._lock = threading.Lock()
        self._ttl = ttl_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def create(self, params: JobParams) -> Job:
        """Create a job in ``processing`` with progress 0."""
        job = Job(id=uuid.uuid4().hex, params=params)
        with self._lock:
            self._cleanup_expired()
            self._jobs[job.id] = job
            self._created[job.id] = time.monotonic()
        logger.info(f"[JOB] Created {job.id} ({params.quality}, aspect={params.aspect_ratio:.3f})")
        return copy.deepcopy(job)

    def get(self, job_id: str) -> Job:
        """Return a copy of the job.

        Raises:
            JobNotFoundError: if the id is unknown or expired
        """
        with self._lock:
            return copy.deepcopy(self._get(job_id))

    def update_progress(self, job_id: str, progress: float) -> int:
        """Raise progress. Decreases and updates to terminal jobs are ignored.

        Returns:
            The job's progress after the update
        """
        value = max(0, min(100, int(progress)))
        with self._lock:
            job = self._get(job_id)
            if job.status.terminal or value <= job.progress:
                return job.progress
            job.progress = value
            job.updated_at = datetime.now(timezone.utc)
            return job.progress

    def complete(self, job_id: str, result: RenderResult) -> Job:
        """Transition ``processing -> completed`` and attach the result."""
        with self._lock:
            job = self._get(job_id)
            self._check_processing(job, JobStatus.COMPLETED)
            now = datetime.now(timezone.utc)
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.result = result
            job.updated_at = now
            job.completed_at = now
            snapshot = copy.deepcopy(job)
        logger.info(f"[JOB] Completed {job_id}: {result.path} ({result.size_bytes} bytes)")
        return snapshot

    def fail(self, job_id: str, message: str, code: str = "INTERNAL_ERROR") -> Job:
        """Transition ``processing -> failed``. No result is ever attached."""
        with self._lock:
            job = self._get(job_id)
            self._check_processing(job, JobStatus.FAILED)
            now = datetime.now(timezone.utc)
            job.status = JobStatus.FAILED
            job.error = message
            job.error_code = code
            job.result = None
            job.updated_at = now
            job.completed_at = now
            snapshot = copy.deepcopy(job)
        logger.warning(f"[JOB] Failed {job_id}: [{code}] {message}")
        return snapshot

    def _get(self, job_id: str) -> Job:
        """Look up a live record (called under lock)."""
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if time.monotonic() - self._created[job_id] > self._ttl:
            del self._jobs[job_id]
            del self._created[job_id]
            raise JobNotFoundError(job_id)
        return job

    @staticmethod
    def _check_processing(job: Job, target: JobStatus) -> None:
        if job.status.terminal:
            raise JobStateError(job.id, job.status.value, target.value)

    def _cleanup_expired(self) -> None:
        """Remove expired entries (called under lock)."""
        now = time.monotonic()
        expired = [k for k, created in self._created.items() if now - created > self._ttl]
        for k in expired:
            del self._jobs[k]
            del self._created[k]
        if expired:
            logger.info(f"[JOB] Pruned {len(expired)} expired jobs")
