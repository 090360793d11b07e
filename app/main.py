import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root wherever uvicorn is started from
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlmodel import Session

from app.api.admin import router as admin_router
from app.api.analysis import router as analysis_router
from app.api.deps import log_security_event
from app.core.config import is_openai_configured, settings
from app.core.database import engine, init_db, ping_db
from app.core.rate_limit import limiter
from app.models import ErrorLog
from app.services.batch_orchestrator import BatchOrchestrator
from app.services.vision import OpenAIVisionInvoker
from app.logging import setup_logging

setup_logging(level=settings.log_level)
log = logging.getLogger("greeneye")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    log.info("OPENAI_API_KEY loaded: %s", "yes" if is_openai_configured() else "NO (add OPENAI_API_KEY=sk-... to .env)")
    if settings.environment.strip().lower() == "production" and settings.secret_key == "change-me-in-production":
        log.warning("SECRET_KEY is the default value; bearer tokens can be forged. Set SECRET_KEY in .env.")
    # Tests may install their own orchestrator (fake model invoker) before startup
    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = BatchOrchestrator(OpenAIVisionInvoker())
    yield
    await app.state.orchestrator.scheduler.shutdown()


app = FastAPI(
    title="GreenEye API",
    description="Agricultural image analysis: batch crop health, disease, pest, growth and soil analysis",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    log_security_event(request, "rate_limit", "Rate limit exceeded")
    return _error_response(request, 429, "Too many requests. Please wait a minute.")


def _validation_error_message(exc: RequestValidationError) -> str:
    errs = exc.errors()
    if not errs:
        return "Invalid request."
    first = errs[0]
    loc = list(first.get("loc") or [])
    field = str(loc[-1]) if len(loc) > 0 else None
    if first.get("type") == "missing":
        if field == "imageUrls":
            return "Please provide at least one image."
        if field == "body":
            return "Request body is missing."
        return f"Missing field: {field}"
    if field == "analysisType":
        return "analysisType must be one of comprehensive, health_focused, disease_detection, pest_monitoring."
    return first.get("msg") or "Invalid request."


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning(
        "Request validation error (422): path=%s method=%s detail=%s",
        request.url.path,
        request.method,
        errs,
    )
    rid = getattr(request.state, "request_id", None)
    body = {"error": _validation_error_message(exc), "status_code": 422, "detail": jsonable_encoder(errs)}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=422, content=body)


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    response = _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc, exc_info=True)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                user_id=None,
                endpoint=request.url.path,
                method=request.method,
                error_message=str(exc)[:2000],
                stack_trace=traceback.format_exc()[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    path = (request.url.path or "").strip()
    if path.startswith("/analysis"):
        user_msg = "Analysis request failed."
    else:
        user_msg = "Unexpected server error."
    return JSONResponse(status_code=500, content={"error": user_msg})


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(analysis_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "openai_configured": is_openai_configured(),
        "database": "ok" if ping_db() else "error",
    }
