"""
Background task ownership for batch jobs.

Each running job has one asyncio task and one CancelToken. The token is passed
through every Model Invoker call, so cancelling it stops outstanding model
requests of that job; the task itself is left to settle and persist its state.
"""
import asyncio
import logging
from collections.abc import Awaitable, Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from app.core.errors import JobCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str) -> bool:
        """First reason wins. Returns False if already cancelled."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable`, cancelling it and raising JobCancelled if the token fires first."""
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise JobCancelled(self.reason or "cancelled")
        call = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            # Also covers cancellation of the awaiting task itself
            if not waiter.done():
                waiter.cancel()
            if not call.done():
                call.cancel()
        if call not in done:
            raise JobCancelled(self.reason or "cancelled")
        return call.result()


@dataclass
class ScheduledJob:
    job_id: str
    task: asyncio.Task
    token: CancelToken

    @property
    def done(self) -> bool:
        return self.task.done()


class JobScheduler:
    def __init__(self) -> None:
        self._jobs: dict[str, ScheduledJob] = {}

    def start(self, job_id: str, run: Coroutine[Any, Any, None], token: CancelToken) -> ScheduledJob:
        """Must be called from inside the running event loop."""
        task = asyncio.create_task(run, name=f"batch-job-{job_id}")
        scheduled = ScheduledJob(job_id=job_id, task=task, token=token)
        self._jobs[job_id] = scheduled
        task.add_done_callback(lambda t, jid=job_id: self._on_done(jid, t))
        return scheduled

    def is_running(self, job_id: str) -> bool:
        scheduled = self._jobs.get(job_id)
        return scheduled is not None and not scheduled.done

    def cancel(self, job_id: str, reason: str) -> bool:
        scheduled = self._jobs.get(job_id)
        if scheduled is None or scheduled.done:
            return False
        logger.info("Cancelling job %s: %s", job_id, reason)
        return scheduled.token.cancel(reason)

    async def wait(self, job_id: str, timeout: float | None = None) -> bool:
        """True once no task is running for the job in this process (False on timeout)."""
        scheduled = self._jobs.get(job_id)
        if scheduled is None:
            return True
        done, _ = await asyncio.wait({scheduled.task}, timeout=timeout)
        return bool(done)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel every running job task (application shutdown)."""
        running = [s.task for s in self._jobs.values() if not s.done]
        if not running:
            return
        logger.info("Shutting down %s running batch job(s)", len(running))
        for task in running:
            task.cancel()
        await asyncio.wait(running, timeout=timeout)

    def _on_done(self, job_id: str, task: asyncio.Task) -> None:
        self._jobs.pop(job_id, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Batch job task %s crashed: %s", job_id, exc, exc_info=exc)
