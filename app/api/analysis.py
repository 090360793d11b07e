"""Batch image analysis: submit, status, results, change events, cancel."""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from app.api.deps import get_current_user_id, get_orchestrator
from app.core.config import settings
from app.core.errors import BatchValidationError
from app.core.events import JOB_TABLE, ChangeEvent
from app.core.rate_limit import limiter
from app.models import AnalysisJob
from app.models.analysis_job import TERMINAL_JOB_STATUSES
from app.schemas.analysis import (
    BatchAnalysisRequest,
    BatchAnalysisResponse,
    CancelResponse,
    ImageResultItem,
    JobStatus,
)
from app.services.batch_orchestrator import BatchOrchestrator

log = logging.getLogger(__name__)

router = APIRouter(prefix="/analysis", tags=["analysis"])
_SUBMIT_LIMIT = f"{settings.rate_limit_submit_per_minute}/minute"
_DEFAULT_LIMIT = f"{settings.rate_limit_per_minute}/minute"
# Comment line sent on idle event streams so proxies keep the connection open
_KEEPALIVE_S = 15.0


def _owned_job(orchestrator: BatchOrchestrator, job_id: str, user_id: str) -> AnalysisJob:
    job = orchestrator.store.get_job(job_id)
    if job is None or job.user_id != user_id:
        raise HTTPException(status_code=404, detail="Batch analysis not found.")
    return job


@router.post("/batch", response_model=BatchAnalysisResponse)
@limiter.limit(_SUBMIT_LIMIT)
async def submit_batch(
    request: Request,
    body: BatchAnalysisRequest,
    user_id: str = Depends(get_current_user_id),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Starts the batch in the background and answers immediately with the polling handle."""
    log.info("Starting advanced image analysis for user=%s type=%s images=%s", user_id, body.analysis_type, len(body.image_urls))
    try:
        job = orchestrator.submit(user_id, body.image_urls, body.field_id, body.analysis_type)
    except BatchValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return BatchAnalysisResponse(batchAnalysisId=job.id, status=job.status, totalImages=job.total_images)


@router.get("/batch/{job_id}", response_model=JobStatus)
async def get_batch(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    return _owned_job(orchestrator, job_id, user_id)


@router.get("/batch/{job_id}/results", response_model=list[ImageResultItem])
async def get_batch_results(
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    _owned_job(orchestrator, job_id, user_id)
    return orchestrator.list_results(job_id)


@router.post("/batch/{job_id}/cancel", response_model=CancelResponse)
@limiter.limit(_DEFAULT_LIMIT)
async def cancel_batch(
    request: Request,
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Stops outstanding model calls; the job ends `failed` once its images settle."""
    job = _owned_job(orchestrator, job_id, user_id)
    cancelled = False
    if job.status not in TERMINAL_JOB_STATUSES:
        cancelled = orchestrator.cancel(job_id, f"cancelled by user {user_id}")
    return CancelResponse(cancelled=cancelled, status=job.status)


def _sse(event_type: str, payload: dict) -> str:
    return f"event: {event_type}\ndata: {json.dumps(payload, default=str)}\n\n"


def _is_terminal_event(event: ChangeEvent) -> bool:
    return event.table == JOB_TABLE and event.record.get("status") in TERMINAL_JOB_STATUSES


@router.get("/batch/{job_id}/events")
@limiter.limit(_DEFAULT_LIMIT)
async def stream_batch_events(
    request: Request,
    job_id: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """
    Server-Sent Events: a SNAPSHOT of the job, then INSERT/UPDATE change events of
    the job and its result rows. The stream ends when the job is terminal.
    """
    _owned_job(orchestrator, job_id, user_id)
    store = orchestrator.store

    async def event_stream():
        # Subscribe before the snapshot read so no transition falls in between
        with store.bus.subscribe(job_id) as subscription:
            job = store.require_job(job_id)
            yield _sse("SNAPSHOT", {"table": JOB_TABLE, "record": job.model_dump(mode="json")})
            if job.is_terminal:
                return
            while True:
                event = await subscription.get(timeout=_KEEPALIVE_S)
                if event is None:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse(event.event_type, event.to_payload())
                if _is_terminal_event(event):
                    return

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
