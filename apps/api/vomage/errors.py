"""Application exception types."""

from vomage.schemas.error import ErrorResponse


class ApiError(Exception):
    """Structured API error that maps directly to contract error payloads."""

    def __init__(self, status_code: int, code: str, message: str, details: dict | None = None) -> None:
        self.status_code = status_code
        self.payload = ErrorResponse(code=code, message=message, details=details)
        super().__init__(message)


class PipelineError(Exception):
    """Base failure raised inside the voice-processing pipeline.

    ``code`` is the stable kind code written into ``ProcessingStatus.error``;
    ``retryable`` tells the caller whether resubmitting the same job can help.
    """

    code = "PROCESSING_ERROR"
    retryable = True

    def __init__(self, message: str, *, engine: str | None = None, details: dict | None = None) -> None:
        self.message = message
        self.engine = engine
        self.details = details or {}
        super().__init__(message)


class ValidationError(PipelineError):
    """The job's own input is unusable (empty audio, unsupported format)."""

    code = "VALIDATION_ERROR"
    retryable = False


class UpstreamTimeout(PipelineError):
    """A bounded wait or poll against an external engine was exceeded."""

    code = "UPSTREAM_TIMEOUT"


class UpstreamFailure(PipelineError):
    """An external engine reported an explicit failure."""

    code = "UPSTREAM_FAILURE"


class PartialGenerationFailure(PipelineError):
    """Some, but not all, image requests failed. Logged, never surfaced as a job error."""

    code = "PARTIAL_GENERATION_FAILURE"

    def __init__(self, message: str, *, failures: list[BaseException]) -> None:
        super().__init__(message, engine="image")
        self.failures = failures


class TotalGenerationFailure(PipelineError):
    """Every image request of the generation fan-out failed."""

    code = "TOTAL_GENERATION_FAILURE"

    def __init__(self, message: str, *, failures: list[BaseException]) -> None:
        super().__init__(message, engine="image")
        self.failures = failures


class StageTransitionError(PipelineError):
    """The orchestrator attempted a transition the stage machine forbids."""

    code = "STAGE_TRANSITION_INVALID"
    retryable = False


__all__ = [
    "ApiError",
    "PartialGenerationFailure",
    "PipelineError",
    "StageTransitionError",
    "TotalGenerationFailure",
    "UpstreamFailure",
    "UpstreamTimeout",
    "ValidationError",
]
