"""Caller-side polling policy for render jobs."""

import asyncio
import logging
from dataclasses import dataclass

from mockify.config import Settings, get_settings
from mockify.exceptions import NetworkError, RenderTimeoutError
from mockify.schemas.job import JobStatusResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollPolicy:
    """How long and how often a caller waits on a job."""

    interval_s: float = 2.0
    max_attempts: int = 120
    # Consecutive NetworkErrors tolerated before giving up
    max_transient_errors: int = 3

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PollPolicy":
        settings = settings or get_settings()
        return cls(
            interval_s=settings.poll_interval_s,
            max_attempts=settings.poll_max_attempts,
            max_transient_errors=settings.poll_max_transient_errors,
        )


async def wait_for_job(client, job_id: str, policy: PollPolicy | None = None) -> JobStatusResponse:
    """Poll ``client`` until the job is completed or failed.

    Args:
        client: Anything with ``async poll(job_id) -> JobStatusResponse``
        job_id: Job to wait for
        policy: Poll budget; defaults from settings

    Returns:
        The terminal status

    Raises:
        RenderTimeoutError: if the job is still processing after ``max_attempts`` polls
        NetworkError: after more than ``max_transient_errors`` consecutive network faults
        JobNotFoundError: if the job id is unknown
    """
    policy = policy or PollPolicy.from_settings()
    transient_errors = 0

    for attempt in range(1, policy.max_attempts + 1):
        try:
            status = await client.poll(job_id)
        except NetworkError as e:
            transient_errors += 1
            if transient_errors > policy.max_transient_errors:
                raise
            logger.warning(
                f"[CLIENT] Poll {attempt} for {job_id} failed ({transient_errors}/"
                f"{policy.max_transient_errors}): {e.message}"
            )
        else:
            transient_errors = 0
            if status.terminal:
                return status
            logger.debug(f"[CLIENT] Job {job_id}: {status.status} {status.progress}%")

        if attempt < policy.max_attempts:
            await asyncio.sleep(policy.interval_s)

    raise RenderTimeoutError(job_id, policy.max_attempts)
