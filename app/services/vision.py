"""
Model Invoker: one call to the OpenAI vision model for one image and one
analysis dimension, parsed into that dimension's pydantic record.

Failures are classified into TransientFailure / SchemaViolation /
InvocationDenied (app/core/errors.py); retries are the caller's decision.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Protocol

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    AsyncOpenAI,
    AuthenticationError,
    InternalServerError,
    PermissionDeniedError,
    RateLimitError,
)
from pydantic import BaseModel, ValidationError

from app.core.config import get_openai_keys, settings
from app.core.errors import InvocationDenied, InvocationError, SchemaViolation, TransientFailure
from app.schemas.dimensions import CropHealth, DiseaseAnalysis, GrowthStage, PestAnalysis, SoilQuality
from app.services.job_scheduler import CancelToken

logger = logging.getLogger(__name__)

# On these errors the next API key is tried
OPENAI_FALLBACK_EXCEPTIONS = (AuthenticationError, RateLimitError)


@dataclass(frozen=True)
class DimensionSpec:
    key: str
    column: str  # ImageAnalysisResult column the record is stored in
    schema: type[BaseModel]
    role: str
    task: str

    def system_prompt(self) -> str:
        fields = []
        for name, info in self.schema.model_fields.items():
            fields.append(f"{name}{'' if info.is_required() else '?'}")
        return (
            f"You are a {self.role}. Analyze the agricultural image you are given.\n"
            "Respond ONLY with one JSON object (no markdown, no prose) with these keys "
            "(? = optional): " + ", ".join(fields) + ".\n"
            "Percentages and scores are numbers from 0 to 100; lists are arrays of short strings."
        )


HEALTH = DimensionSpec(
    key="health",
    column="crop_health",
    schema=CropHealth,
    role="crop health specialist",
    task="Analyze crop health in this agricultural image.",
)
DISEASE = DimensionSpec(
    key="disease",
    column="disease_analysis",
    schema=DiseaseAnalysis,
    role="plant pathologist",
    task="Detect and identify any plant diseases in this image.",
)
PEST = DimensionSpec(
    key="pest",
    column="pest_analysis",
    schema=PestAnalysis,
    role="entomologist specializing in agricultural pests",
    task="Identify any pests or pest damage in this agricultural image.",
)
GROWTH_STAGE = DimensionSpec(
    key="growth_stage",
    column="growth_stage",
    schema=GrowthStage,
    role="crop development specialist",
    task="Analyze the growth stage and development of crops in this image.",
)
SOIL_QUALITY = DimensionSpec(
    key="soil_quality",
    column="soil_quality",
    schema=SoilQuality,
    role="soil scientist",
    task="Analyze the soil quality and conditions visible in this image.",
)

# Fixed order: health, disease, pest, growth stage, soil
DIMENSIONS: tuple[DimensionSpec, ...] = (HEALTH, DISEASE, PEST, GROWTH_STAGE, SOIL_QUALITY)


class ModelInvoker(Protocol):
    async def invoke(self, image_url: str, spec: DimensionSpec, token: CancelToken | None = None) -> BaseModel: ...


def _strip_code_fences(text: str) -> str:
    t = text.strip()
    if t.startswith("```"):
        t = t.split("\n", 1)[1] if "\n" in t else ""
        if t.rstrip().endswith("```"):
            t = t.rstrip()[:-3]
    return t.strip()


def parse_dimension(spec: DimensionSpec, content: str | None) -> BaseModel:
    """Model output -> dimension record. Raises SchemaViolation; never coerces."""
    if not content or not content.strip():
        raise SchemaViolation(spec.key, "empty response")
    try:
        data = json.loads(_strip_code_fences(content))
    except json.JSONDecodeError as e:
        raise SchemaViolation(spec.key, f"invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise SchemaViolation(spec.key, f"expected an object, got {type(data).__name__}")
    try:
        return spec.schema.model_validate(data)
    except ValidationError as e:
        raise SchemaViolation(spec.key, f"{e.error_count()} validation error(s)") from e


def classify_openai_error(exc: Exception) -> InvocationError:
    """OpenAI SDK errors -> pipeline taxonomy."""
    if isinstance(exc, InvocationError):
        return exc
    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        return InvocationDenied(f"AI access denied: {exc}")
    if isinstance(exc, RateLimitError):
        if getattr(exc, "code", None) == "insufficient_quota":
            return InvocationDenied(f"AI quota exhausted: {exc}")
        return TransientFailure(f"AI rate limited: {exc}")
    # APITimeoutError is an APIConnectionError
    if isinstance(exc, (APIConnectionError, InternalServerError)):
        return TransientFailure(f"AI connection problem: {exc}")
    if isinstance(exc, APIStatusError):
        # 4xx for this request only (e.g. image URL not downloadable): fails the image, not the batch
        return InvocationError(f"AI request rejected ({exc.status_code}): {exc}")
    if isinstance(exc, APIError):
        return TransientFailure(f"AI service error: {exc}")
    return InvocationError(f"{type(exc).__name__}: {exc}")


class OpenAIVisionInvoker:
    """
    Stateless apart from cached clients. A shared semaphore bounds concurrent
    requests to the inference endpoint across every job in the process.
    """

    def __init__(
        self,
        keys: list[str] | None = None,
        model: str | None = None,
        timeout_s: float | None = None,
        max_tokens: int | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self._keys = keys
        self._model = model or settings.vision_model
        self._timeout_s = timeout_s or settings.vision_timeout_s
        self._max_tokens = max_tokens or settings.vision_max_tokens
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.vision_max_concurrency)
        # One client per key (multi-key fallback)
        self._clients: dict[str, AsyncOpenAI] = {}

    def _get_client_for_key(self, key: str) -> AsyncOpenAI:
        if key not in self._clients:
            # Retries are decided by the analyzer, not the SDK
            self._clients[key] = AsyncOpenAI(api_key=key, timeout=self._timeout_s, max_retries=0)
        return self._clients[key]

    async def invoke(self, image_url: str, spec: DimensionSpec, token: CancelToken | None = None) -> BaseModel:
        call = self._invoke(image_url, spec)
        content = await token.run(call) if token is not None else await call
        return parse_dimension(spec, content)

    async def _invoke(self, image_url: str, spec: DimensionSpec) -> str | None:
        async with self._semaphore:
            try:
                return await self._create_with_fallback(image_url, spec)
            except InvocationError:
                raise
            except Exception as e:
                raise classify_openai_error(e) from e

    async def _create_with_fallback(self, image_url: str, spec: DimensionSpec) -> str | None:
        """
        Tries each key in order; AuthenticationError or RateLimitError moves on to
        the next one. When every key fails the last error is raised.
        """
        keys = self._keys if self._keys is not None else get_openai_keys()
        if not keys:
            raise InvocationDenied("OPENAI_API_KEY is not set or invalid. Add OPENAI_API_KEY=sk-... or OPENAI_API_KEYS=sk-1,sk-2 to .env.")
        last_exc: Exception | None = None
        for key in keys:
            client = self._get_client_for_key(key)
            try:
                response = await client.chat.completions.create(
                    model=self._model,
                    messages=[
                        {"role": "system", "content": spec.system_prompt()},
                        {
                            "role": "user",
                            "content": [
                                {"type": "text", "text": spec.task},
                                {"type": "image_url", "image_url": {"url": image_url}},
                            ],
                        },
                    ],
                    response_format={"type": "json_object"},
                    max_tokens=self._max_tokens,
                )
            except OPENAI_FALLBACK_EXCEPTIONS as e:
                last_exc = e
                logger.warning("OpenAI key skipped (%s), trying next: %s", key[:12] + "...", e)
                continue
            if not response.choices:
                return None
            return response.choices[0].message.content
        assert last_exc is not None
        raise last_exc
