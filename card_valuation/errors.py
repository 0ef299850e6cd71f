"""
Exception hierarchy for the identification pipeline.

Only fatal errors escape identify(); everything else is caught at the stage
boundary and turned into lower-confidence data.
"""

from typing import Optional


class CardValuationError(Exception):
    """Base class for all pipeline errors."""


class FatalPipelineError(CardValuationError):
    """Configuration or input problem that no retry can fix."""


class ImageNotFoundError(FatalPipelineError):
    """The referenced input image does not exist in the image store."""

    def __init__(self, ref: str):
        super().__init__(f"Image not found: {ref}")
        self.ref = ref


class UpstreamError(CardValuationError):
    """An external service (LLM, catalog, price source) returned an error."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class TransientUpstreamError(UpstreamError):
    """Timeout, throttling or 5xx from an external service. Safe to retry."""


class RateLimitExceededError(UpstreamError):
    """A per-source token bucket could not supply a token within its wait budget."""


class ResponseValidationError(CardValuationError):
    """LLM output could not be parsed or did not satisfy the metadata schema."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class RetryExhaustedError(CardValuationError):
    """Every attempt allowed by a RetryPolicy failed."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error
