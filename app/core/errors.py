"""
Error taxonomy for the batch image-analysis pipeline.

Errors are contained at the smallest enclosing scope (dimension -> image -> batch)
and turned into a persisted status; only BatchValidationError reaches the
submission caller.
"""


class BatchValidationError(ValueError):
    """Submission rejected before a job is created (empty list, too many images, no field)."""


class InvocationError(Exception):
    """Base class for Model Invoker failures."""

    retryable = False


class TransientFailure(InvocationError):
    """Network, timeout or 5xx from the inference service. The caller may retry."""

    retryable = True


class SchemaViolation(InvocationError):
    """Model response is not JSON or does not match the dimension schema."""

    def __init__(self, dimension: str, detail: str) -> None:
        super().__init__(f"{dimension}: response does not match schema ({detail})")
        self.dimension = dimension
        self.detail = detail


class InvocationDenied(InvocationError):
    """Auth, permission or quota error. Fatal for the whole batch."""


class JobCancelled(InvocationError):
    """The job's cancellation token fired before or during the call."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ImageAnalysisFailure(Exception):
    """Unhandled error while analyzing one image; persisted as a failed result row."""


class BatchFinalizationFailure(Exception):
    """Summary read/compute/write failed; the job is marked failed."""


class InvalidJobTransition(ValueError):
    def __init__(self, job_id: str, current: str, target: str) -> None:
        super().__init__(f"Job {job_id}: invalid status transition {current} -> {target}")
        self.job_id = job_id
        self.current = current
        self.target = target


class JobNotFound(LookupError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class PollTimeout(TimeoutError):
    def __init__(self, job_id: str, timeout_s: float, last_status: str | None) -> None:
        super().__init__(f"Job {job_id} still {last_status or 'unknown'} after {timeout_s:.1f}s")
        self.job_id = job_id
        self.timeout_s = timeout_s
        self.last_status = last_status
