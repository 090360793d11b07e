from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

AnalysisType = Literal["comprehensive", "health_focused", "disease_detection", "pest_monitoring"]


class BatchAnalysisRequest(BaseModel):
    """Body of POST /analysis/batch (camelCase, as sent by the dashboard)."""
    model_config = ConfigDict(populate_by_name=True)

    image_urls: list[str] = Field(alias="imageUrls")
    field_id: str | None = Field(default=None, alias="fieldId")
    analysis_type: AnalysisType = Field(default="comprehensive", alias="analysisType")


class BatchAnalysisResponse(BaseModel):
    success: bool = True
    batchAnalysisId: str
    status: str = "processing"
    totalImages: int


class IssueCount(BaseModel):
    issue: str
    count: int


class BatchSummary(BaseModel):
    total_images: int
    successful_analyses: int
    failed_analyses: int
    average_health_score: float | None = None  # None when no image succeeded
    common_issues: list[IssueCount] = Field(default_factory=list)
    priority_recommendations: list[str] = Field(default_factory=list)


class JobStatus(BaseModel):
    id: str
    user_id: str
    field_id: str | None = None
    analysis_type: str
    total_images: int
    status: str
    results_summary: BatchSummary | None = None
    error_message: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class ImageResultItem(BaseModel):
    id: str
    batch_id: str
    image_index: int
    image_url: str
    crop_health: dict | None = None
    disease_analysis: dict | None = None
    pest_analysis: dict | None = None
    growth_stage: dict | None = None
    soil_quality: dict | None = None
    overall_score: float | None = None
    recommendations: list[str] = Field(default_factory=list)
    status: str
    error_message: str | None = None
    analysis_timestamp: datetime


class CancelResponse(BaseModel):
    cancelled: bool
    status: str
