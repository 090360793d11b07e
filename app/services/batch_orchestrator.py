"""
Batch Orchestrator: submit -> fan-out per image -> fan-in -> finalize.

submit() returns as soon as the job row is `processing` and its background
task is scheduled; callers observe progress through the store (poll) or the
change event bus (push).
"""
import asyncio
import logging

from app.core.config import settings
from app.core.errors import BatchFinalizationFailure, BatchValidationError
from app.models import AnalysisJob, ImageAnalysisResult
from app.models.analysis_job import ANALYSIS_TYPES
from app.models.image_result import RESULT_FAILED
from app.services.batch_summary import summarize
from app.services.crop_analysis import ImageAnalyzer
from app.services.job_scheduler import CancelToken, JobScheduler
from app.services.job_store import DuplicateResult, JobStore
from app.services.vision import ModelInvoker

logger = logging.getLogger(__name__)


def validate_submission(
    image_urls: list[str],
    field_id: str | None,
    analysis_type: str,
    max_images: int,
) -> list[str]:
    """Returns the cleaned URL list or raises BatchValidationError."""
    if not image_urls:
        raise BatchValidationError("Please provide at least one image.")
    if len(image_urls) > max_images:
        raise BatchValidationError(f"Too many images: {len(image_urls)} (max {max_images} per batch).")
    cleaned = [(u or "").strip() for u in image_urls]
    if any(not u for u in cleaned):
        raise BatchValidationError("Image URLs must not be empty.")
    if not (field_id or "").strip():
        raise BatchValidationError("Please select a field.")
    if analysis_type not in ANALYSIS_TYPES:
        raise BatchValidationError(f"Unknown analysis type: {analysis_type}")
    return cleaned


class BatchOrchestrator:
    def __init__(
        self,
        invoker: ModelInvoker,
        store: JobStore | None = None,
        scheduler: JobScheduler | None = None,
        max_images: int | None = None,
        max_workers: int | None = None,
        retry_attempts: int | None = None,
        retry_wait_s: float | None = None,
    ) -> None:
        self.store = store or JobStore()
        self.scheduler = scheduler or JobScheduler()
        self.analyzer = ImageAnalyzer(invoker, self.store, retry_attempts=retry_attempts, retry_wait_s=retry_wait_s)
        self.max_images = max_images or settings.batch_max_images
        self.max_workers = max_workers or settings.batch_max_workers

    def submit(
        self,
        owner_id: str,
        image_urls: list[str],
        field_id: str | None,
        analysis_type: str = "comprehensive",
    ) -> AnalysisJob:
        """Not idempotent: every call creates a new job. Needs a running event loop."""
        urls = validate_submission(image_urls, field_id, analysis_type, self.max_images)
        job = self.store.create_job(owner_id, len(urls), field_id.strip(), analysis_type)
        job = self.store.mark_processing(job.id)
        token = CancelToken()
        self.scheduler.start(job.id, self._run(job.id, urls, token), token)
        logger.info("Starting batch analysis %s for user %s: %s image(s), type=%s", job.id, owner_id, len(urls), analysis_type)
        return job

    def get_job_status(self, job_id: str) -> AnalysisJob:
        return self.store.require_job(job_id)

    def list_results(self, job_id: str) -> list[ImageAnalysisResult]:
        return self.store.list_results(job_id)

    def cancel(self, job_id: str, reason: str = "cancelled by user") -> bool:
        return self.scheduler.cancel(job_id, reason)

    async def _run(self, job_id: str, image_urls: list[str], token: CancelToken) -> None:
        workers = asyncio.Semaphore(self.max_workers)
        write_errors: dict[int, str] = {}

        async def analyze_one(index: int, url: str) -> None:
            async with workers:
                try:
                    await self.analyzer.analyze(job_id, url, index, token)
                except Exception as e:
                    # Row write itself failed; a failed row is stored for it before finalization
                    logger.exception("Result for batch %s image #%s not stored: %s", job_id, index + 1, e)
                    write_errors[index] = f"Result could not be stored: {type(e).__name__}: {e}"

        try:
            await asyncio.gather(*(analyze_one(i, url) for i, url in enumerate(image_urls)))
        except asyncio.CancelledError:
            self._store_missing_rows(job_id, image_urls, {}, "Batch interrupted before this image was analyzed")
            self._fail_quietly(job_id, "Batch interrupted before all images were analyzed")
            raise

        missing = self._store_missing_rows(job_id, image_urls, write_errors, "Image settled without a result")
        if token.cancelled:
            self._fail_quietly(job_id, f"Batch aborted: {token.reason}")
            return
        if missing:
            names = ", ".join(f"#{i + 1}" for i in missing)
            self._fail_quietly(job_id, f"Results missing for image(s) {names}")
            return
        self._finalize(job_id)

    def _store_missing_rows(
        self,
        job_id: str,
        image_urls: list[str],
        reasons: dict[int, str],
        default_reason: str,
    ) -> list[int]:
        """
        Writes a `failed` row for every image without one so a terminal job has
        one row per image. Returns the indexes that still have no row.
        """
        try:
            stored = {r.image_index for r in self.store.list_results(job_id)}
        except Exception as e:
            # Finalization reads the rows again and fails the job if the store is down
            logger.error("Could not read results of batch %s: %s", job_id, e)
            return []
        missing: list[int] = []
        for index, url in enumerate(image_urls):
            if index in stored:
                continue
            row = ImageAnalysisResult(
                batch_id=job_id,
                image_index=index,
                image_url=url,
                status=RESULT_FAILED,
                error_message=reasons.get(index, default_reason)[:2000],
            )
            try:
                self.store.save_result(row)
            except DuplicateResult:
                continue
            except Exception as e:
                logger.error("Could not store failed row for batch %s image #%s: %s", job_id, index + 1, e)
                missing.append(index)
        return missing

    def _finalize(self, job_id: str) -> None:
        try:
            try:
                results = self.store.list_results(job_id)
                summary = summarize(results)
                self.store.complete_job(job_id, summary.model_dump(mode="json"))
            except Exception as e:
                raise BatchFinalizationFailure(f"{type(e).__name__}: {e}") from e
            logger.info("Batch analysis %s completed successfully", job_id)
        except BatchFinalizationFailure as e:
            logger.exception("Error finalizing batch analysis %s: %s", job_id, e)
            self._fail_quietly(job_id, str(e))

    def _fail_quietly(self, job_id: str, message: str) -> None:
        """Terminal write of last resort; a job that is already terminal is left alone."""
        try:
            self.store.fail_job(job_id, message)
        except Exception as e:
            logger.error("Could not mark batch %s failed (%s): %s", job_id, message, e)
