"""Admin API: only with ADMIN_SECRET. Batch job queue overview."""
import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from app.api.deps import get_orchestrator, log_security_event
from app.core.config import settings
from app.models.analysis_job import JOB_TRANSITIONS
from app.schemas.analysis import JobStatus
from app.services.batch_orchestrator import BatchOrchestrator

router = APIRouter(prefix="/admin", tags=["admin"])


def _admin_secret_constant_time_compare(provided: str | None, expected: str | None) -> bool:
    """Timing-safe comparison."""
    return hmac.compare_digest((provided or "").encode("utf-8"), (expected or "").encode("utf-8"))


def _require_admin(request: Request, x_admin_secret: str | None = Header(None, alias="X-Admin-Secret")) -> None:
    if not (settings.admin_secret or "").strip():
        raise HTTPException(status_code=503, detail="Admin API is not configured (ADMIN_SECRET missing).")
    if not _admin_secret_constant_time_compare(x_admin_secret, settings.admin_secret):
        log_security_event(request, "admin_denied")
        raise HTTPException(status_code=403, detail="Forbidden.")


@router.get("/jobs", response_model=list[JobStatus])
def list_jobs(
    _=Depends(_require_admin),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
    status: str | None = None,
    user_id: str | None = None,
    limit: int = Query(100, ge=1, le=500),
):
    """Most recent batch jobs, optionally filtered by status or owner."""
    if status and status not in JOB_TRANSITIONS:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    return orchestrator.store.list_jobs(status=status, user_id=user_id, limit=limit)
