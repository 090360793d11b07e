from .analysis_job import AnalysisJob
from .error_log import ErrorLog
from .image_result import ImageAnalysisResult
from .security_log import SecurityLog

__all__ = [
    "AnalysisJob",
    "ErrorLog",
    "ImageAnalysisResult",
    "SecurityLog",
]
