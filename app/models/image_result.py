"""Per-image results of a batch job. Write-once: one row per (batch_id, image_index)."""
import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

RESULT_OK = "ok"
RESULT_FAILED = "failed"


class ImageAnalysisResult(SQLModel, table=True):
    __tablename__ = "advanced_image_results"
    __table_args__ = (UniqueConstraint("batch_id", "image_index", name="uq_advanced_image_results_batch_image"),)
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    batch_id: str = Field(foreign_key="batch_image_analysis.id", index=True)
    image_index: int = 0  # Position in the submitted imageUrls list
    image_url: str
    crop_health: dict | None = Field(default=None, sa_column=Column(JSON))
    disease_analysis: dict | None = Field(default=None, sa_column=Column(JSON))
    pest_analysis: dict | None = Field(default=None, sa_column=Column(JSON))
    growth_stage: dict | None = Field(default=None, sa_column=Column(JSON))
    soil_quality: dict | None = Field(default=None, sa_column=Column(JSON))
    overall_score: float | None = None  # None when status == failed
    recommendations: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    status: str = RESULT_OK  # ok | failed
    error_message: str | None = None
    analysis_timestamp: datetime = Field(default_factory=datetime.utcnow)
