"""
Job Status Store: batch_image_analysis + advanced_image_results.

Jobs only move forward (pending -> processing -> completed | failed); result
rows are inserted once and never updated. Every committed write is published
on the change event bus.
"""
import logging
from datetime import datetime

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core.database import engine as default_engine
from app.core.errors import InvalidJobTransition, JobNotFound
from app.core.events import JOB_TABLE, RESULT_TABLE, ChangeEvent, EventBus, event_bus
from app.models import AnalysisJob, ImageAnalysisResult
from app.models.analysis_job import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_PROCESSING,
    JOB_TRANSITIONS,
    TERMINAL_JOB_STATUSES,
)

logger = logging.getLogger(__name__)


class DuplicateResult(ValueError):
    """A result row for this (batch_id, image_index) already exists."""


class JobStore:
    def __init__(self, engine: Engine | None = None, bus: EventBus | None = None) -> None:
        self._engine = engine or default_engine
        self.bus = bus or event_bus

    def _session(self) -> Session:
        return Session(self._engine, expire_on_commit=False)

    # ---------- jobs ----------
    def create_job(self, user_id: str, total_images: int, field_id: str | None, analysis_type: str) -> AnalysisJob:
        job = AnalysisJob(
            user_id=user_id,
            field_id=field_id,
            analysis_type=analysis_type,
            total_images=total_images,
            status=JOB_PENDING,
        )
        with self._session() as db:
            db.add(job)
            db.commit()
            db.refresh(job)
        self._publish(JOB_TABLE, "INSERT", job.id, job)
        return job

    def get_job(self, job_id: str) -> AnalysisJob | None:
        with self._session() as db:
            return db.get(AnalysisJob, job_id)

    def require_job(self, job_id: str) -> AnalysisJob:
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def list_jobs(self, status: str | None = None, user_id: str | None = None, limit: int = 100) -> list[AnalysisJob]:
        stmt = select(AnalysisJob).order_by(AnalysisJob.created_at.desc()).limit(limit)
        if status:
            stmt = stmt.where(AnalysisJob.status == status)
        if user_id:
            stmt = stmt.where(AnalysisJob.user_id == user_id)
        with self._session() as db:
            return list(db.exec(stmt).all())

    def _transition(
        self,
        job_id: str,
        target: str,
        results_summary: dict | None = None,
        error_message: str | None = None,
    ) -> AnalysisJob:
        with self._session() as db:
            job = db.get(AnalysisJob, job_id)
            if job is None:
                raise JobNotFound(job_id)
            if target not in JOB_TRANSITIONS.get(job.status, frozenset()):
                raise InvalidJobTransition(job_id, job.status, target)
            job.status = target
            if results_summary is not None:
                job.results_summary = results_summary
            if error_message is not None:
                job.error_message = error_message[:2000]
            if target in TERMINAL_JOB_STATUSES:
                job.completed_at = datetime.utcnow()
            db.add(job)
            db.commit()
            db.refresh(job)
        logger.info("Job %s -> %s", job_id, target)
        self._publish(JOB_TABLE, "UPDATE", job.id, job)
        return job

    def mark_processing(self, job_id: str) -> AnalysisJob:
        return self._transition(job_id, JOB_PROCESSING)

    def complete_job(self, job_id: str, results_summary: dict) -> AnalysisJob:
        return self._transition(job_id, JOB_COMPLETED, results_summary=results_summary)

    def fail_job(self, job_id: str, error_message: str) -> AnalysisJob:
        return self._transition(job_id, JOB_FAILED, error_message=error_message)

    # ---------- results ----------
    def save_result(self, result: ImageAnalysisResult) -> ImageAnalysisResult:
        """Insert only. A second row for the same image raises DuplicateResult."""
        with self._session() as db:
            db.add(result)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise DuplicateResult(
                    f"Result already stored for batch {result.batch_id} image #{result.image_index}"
                ) from e
            db.refresh(result)
        self._publish(RESULT_TABLE, "INSERT", result.batch_id, result)
        return result

    def list_results(self, job_id: str) -> list[ImageAnalysisResult]:
        stmt = (
            select(ImageAnalysisResult)
            .where(ImageAnalysisResult.batch_id == job_id)
            .order_by(ImageAnalysisResult.image_index, ImageAnalysisResult.id)
        )
        with self._session() as db:
            return list(db.exec(stmt).all())

    def _publish(self, table: str, event_type: str, job_id: str, row: AnalysisJob | ImageAnalysisResult) -> None:
        self.bus.publish(ChangeEvent(table=table, event_type=event_type, job_id=job_id, record=row.model_dump(mode="json")))
