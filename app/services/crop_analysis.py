"""
Per-Image Analyzer: five dimension calls for one image, merged into one
ImageAnalysisResult row with an overall score and a recommendation list.
"""
import asyncio
import logging

from pydantic import BaseModel

from app.core.config import settings
from app.core.errors import ImageAnalysisFailure, InvocationDenied, InvocationError, SchemaViolation
from app.models import ImageAnalysisResult
from app.models.image_result import RESULT_FAILED, RESULT_OK
from app.schemas.dimensions import CropHealth, DiseaseAnalysis, GrowthStage, PestAnalysis, SoilQuality
from app.services.job_scheduler import CancelToken
from app.services.job_store import JobStore
from app.services.vision import DIMENSIONS, DimensionSpec, ModelInvoker

logger = logging.getLogger(__name__)

LOW_HEALTH_THRESHOLD = 70
LOW_HEALTH_NOTE = "Immediate attention required for crop health improvement"
DISEASE_PENALTY = 0.5
PEST_PENALTY = 0.3
MAX_RECOMMENDATIONS = 10


def calculate_overall_score(
    health: CropHealth | None,
    disease: DiseaseAnalysis | None,
    pest: PestAnalysis | None,
    growth: GrowthStage | None,
) -> float:
    """
    health_score, minus disease and pest penalties, then scaled by growth
    development. Growth scaling comes last, after both penalties. Clamped to [0, 100].
    """
    score = health.health_score if health is not None else 0.0
    if disease is not None and disease.diseases_detected:
        score -= (disease.affected_area_percentage or 0) * DISEASE_PENALTY
    if pest is not None and pest.pests_detected:
        score -= (pest.damage_percentage or 0) * PEST_PENALTY
    development = 100.0
    if growth is not None and growth.development_percentage is not None:
        development = growth.development_percentage
    score = score * (development / 100)
    return max(0.0, min(100.0, score))


def build_recommendations(
    health: CropHealth | None,
    disease: DiseaseAnalysis | None,
    pest: PestAnalysis | None,
    growth: GrowthStage | None,
    soil: SoilQuality | None,
) -> list[str]:
    recommendations: list[str] = []
    if health is not None and health.health_score < LOW_HEALTH_THRESHOLD:
        recommendations.append(LOW_HEALTH_NOTE)
    if disease is not None and disease.diseases_detected:
        recommendations.extend(disease.recommended_treatments)
    if pest is not None and pest.pests_detected:
        recommendations.extend(pest.control_methods)
    if growth is not None:
        recommendations.extend(growth.stage_specific_needs)
    if soil is not None:
        recommendations.extend(soil.improvement_needs)
    return recommendations[:MAX_RECOMMENDATIONS]


class ImageAnalyzer:
    def __init__(
        self,
        invoker: ModelInvoker,
        store: JobStore,
        retry_attempts: int | None = None,
        retry_wait_s: float | None = None,
    ) -> None:
        self._invoker = invoker
        self._store = store
        self._retry_attempts = settings.vision_retry_attempts if retry_attempts is None else retry_attempts
        self._retry_wait_s = settings.vision_retry_wait_s if retry_wait_s is None else retry_wait_s

    async def _invoke_dimension(self, image_url: str, spec: DimensionSpec, token: CancelToken | None) -> BaseModel:
        attempt = 0
        while True:
            try:
                return await self._invoker.invoke(image_url, spec, token)
            except InvocationError as e:
                if not e.retryable or attempt >= self._retry_attempts:
                    raise
                attempt += 1
                logger.warning("Retrying %s for %s after %s (attempt %s)", spec.key, image_url, e, attempt)
                await asyncio.sleep(self._retry_wait_s)

    async def analyze(
        self,
        job_id: str,
        image_url: str,
        image_index: int,
        token: CancelToken | None = None,
    ) -> ImageAnalysisResult:
        """
        Writes exactly one result row. Schema violations drop only their dimension;
        any other dimension error fails the image. InvocationDenied also cancels
        the job's token so sibling images stop calling the API.
        """
        logger.info("Processing image #%s for batch %s", image_index + 1, job_id)
        try:
            try:
                result = await self._analyze(job_id, image_url, image_index, token)
            except Exception as e:
                raise ImageAnalysisFailure(f"{type(e).__name__}: {e}") from e
        except ImageAnalysisFailure as failure:
            logger.exception("Error processing image #%s for batch %s: %s", image_index + 1, job_id, failure)
            result = ImageAnalysisResult(
                batch_id=job_id,
                image_index=image_index,
                image_url=image_url,
                status=RESULT_FAILED,
                error_message=str(failure)[:2000],
            )
        return self._store.save_result(result)

    async def _analyze(
        self,
        job_id: str,
        image_url: str,
        image_index: int,
        token: CancelToken | None,
    ) -> ImageAnalysisResult:
        outcomes = await asyncio.gather(
            *(self._invoke_dimension(image_url, spec, token) for spec in DIMENSIONS),
            return_exceptions=True,
        )
        records: dict[str, BaseModel] = {}
        errors: list[str] = []
        for spec, outcome in zip(DIMENSIONS, outcomes):
            if isinstance(outcome, SchemaViolation):
                logger.warning("Batch %s image #%s: %s", job_id, image_index + 1, outcome)
            elif isinstance(outcome, asyncio.CancelledError):
                raise outcome
            elif isinstance(outcome, BaseException):
                errors.append(f"{spec.key}: {outcome}")
                if isinstance(outcome, InvocationDenied) and token is not None:
                    token.cancel(str(outcome))
            else:
                records[spec.key] = outcome

        row = ImageAnalysisResult(
            batch_id=job_id,
            image_index=image_index,
            image_url=image_url,
            **{spec.column: records[spec.key].model_dump(mode="json") for spec in DIMENSIONS if spec.key in records},
        )
        if errors:
            logger.warning("Batch %s image #%s failed: %s", job_id, image_index + 1, "; ".join(errors))
            row.status = RESULT_FAILED
            row.error_message = "; ".join(errors)[:2000]
            return row

        health = records.get("health")
        disease = records.get("disease")
        pest = records.get("pest")
        growth = records.get("growth_stage")
        soil = records.get("soil_quality")
        row.overall_score = calculate_overall_score(health, disease, pest, growth)
        row.recommendations = build_recommendations(health, disease, pest, growth, soil)
        row.status = RESULT_OK
        logger.info("Completed image #%s for batch %s (score=%.1f)", image_index + 1, job_id, row.overall_score)
        return row
