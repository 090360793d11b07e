from .analysis import (
    AnalysisType,
    BatchAnalysisRequest,
    BatchAnalysisResponse,
    BatchSummary,
    CancelResponse,
    ImageResultItem,
    IssueCount,
    JobStatus,
)
from .dimensions import CropHealth, DiseaseAnalysis, GrowthStage, PestAnalysis, SoilQuality

__all__ = [
    "AnalysisType",
    "BatchAnalysisRequest",
    "BatchAnalysisResponse",
    "BatchSummary",
    "CancelResponse",
    "CropHealth",
    "DiseaseAnalysis",
    "GrowthStage",
    "ImageResultItem",
    "IssueCount",
    "JobStatus",
    "PestAnalysis",
    "SoilQuality",
]
