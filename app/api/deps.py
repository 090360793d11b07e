import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from app.core.database import engine
from app.core.rate_limit import client_ip
from app.core.security import decode_access_token
from app.models import SecurityLog
from app.services.batch_orchestrator import BatchOrchestrator

log = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def log_security_event(request: Request, event: str, detail: str | None = None) -> None:
    """security_logs row; a failed write is only logged."""
    try:
        with Session(engine) as db:
            db.add(SecurityLog(event=event, ip=client_ip(request), endpoint=request.url.path, detail=detail))
            db.commit()
    except Exception as e:
        log.warning("SecurityLog %s write failed: %s", event, e)


def get_current_user_id(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        log_security_event(request, "invalid_token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
        )
    return str(payload["sub"])


def get_orchestrator(request: Request) -> BatchOrchestrator:
    """Created in the app lifespan (app/main.py)."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Analysis service is not ready.")
    return orchestrator
