"""
Client Poller: read a job's status on a fixed interval until it is terminal.

Stops with PollTimeout after a wall-clock deadline even if the job is still
`processing` (e.g. the process running it crashed mid fan-out). Polling only
stops observing; it does not cancel server-side work.
"""
import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable

from app.core.config import settings
from app.core.errors import JobNotFound, PollTimeout
from app.models import AnalysisJob

logger = logging.getLogger(__name__)

StatusReader = Callable[[str], AnalysisJob | None | Awaitable[AnalysisJob | None]]


async def _read(get_status: StatusReader, job_id: str) -> AnalysisJob | None:
    value = get_status(job_id)
    if inspect.isawaitable(value):
        value = await value
    return value


async def poll_job(
    get_status: StatusReader,
    job_id: str,
    interval_s: float | None = None,
    timeout_s: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> AnalysisJob:
    """
    `get_status` may be sync (JobStore.get_job) or async. Returns the job once
    completed or failed; raises JobNotFound or PollTimeout.
    """
    interval = settings.poll_interval_s if interval_s is None else interval_s
    timeout = settings.poll_timeout_s if timeout_s is None else timeout_s
    deadline = clock() + timeout
    last_status: str | None = None
    while True:
        job = await _read(get_status, job_id)
        if job is None:
            raise JobNotFound(job_id)
        last_status = job.status
        if job.is_terminal:
            return job
        remaining = deadline - clock()
        if remaining <= 0:
            logger.warning("Polling job %s timed out after %.1fs (status=%s)", job_id, timeout, last_status)
            raise PollTimeout(job_id, timeout, last_status)
        await asyncio.sleep(min(interval, remaining))
