"""Batch analysis jobs: pending -> processing -> completed | failed."""
import uuid
from datetime import datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

JOB_PENDING = "pending"
JOB_PROCESSING = "processing"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
TERMINAL_JOB_STATUSES = frozenset({JOB_COMPLETED, JOB_FAILED})

# Allowed forward transitions; nothing leaves a terminal status
JOB_TRANSITIONS: dict[str, frozenset[str]] = {
    JOB_PENDING: frozenset({JOB_PROCESSING}),
    JOB_PROCESSING: frozenset({JOB_COMPLETED, JOB_FAILED}),
    JOB_COMPLETED: frozenset(),
    JOB_FAILED: frozenset(),
}

ANALYSIS_TYPES = ("comprehensive", "health_focused", "disease_detection", "pest_monitoring")


class AnalysisJob(SQLModel, table=True):
    __tablename__ = "batch_image_analysis"
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    field_id: str | None = Field(default=None, index=True)
    analysis_type: str = "comprehensive"
    total_images: int = 0  # Fixed at creation
    status: str = Field(default=JOB_PENDING, index=True)
    results_summary: dict | None = Field(default=None, sa_column=Column(JSON))
    error_message: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES
