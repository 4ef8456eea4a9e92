"""
Error handling for the generation pipeline.

Provides structured error handling with:
- Categorized error codes for all failure scenarios
- HTTP status mapping that keeps precondition, ownership and provider
  failures apart
- Retry logic determination for provider calls
- Detailed error context for debugging
"""

import asyncio
from enum import Enum
from typing import Optional, Dict, Any

import httpx
import structlog

logger = structlog.get_logger()


class ErrorCode(Enum):
    """
    Enumeration of all possible error codes in the pipeline.

    Organized by category:
    - Precondition Errors: stage/confirmation ordering violated (never retried)
    - Ownership Errors: resource missing or owned by someone else
    - Provider Errors: external AI vendor failures
    - Reconciliation Errors: async tasks that never finished
    """

    # Precondition Errors (4xx)
    INVALID_INPUT = "INVALID_INPUT"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"
    NO_UPSTREAM_ARTIFACT = "NO_UPSTREAM_ARTIFACT"
    GENERATION_IN_PROGRESS = "GENERATION_IN_PROGRESS"

    # Ownership Errors (404, existence is never leaked)
    NOT_FOUND = "NOT_FOUND"

    # Provider Errors (502)
    AI_GENERATION_FAILED = "AI_GENERATION_FAILED"
    ASSET_DOWNLOAD_FAILED = "ASSET_DOWNLOAD_FAILED"
    STORAGE_ERROR = "STORAGE_ERROR"

    # Reconciliation Errors
    RECONCILIATION_TIMEOUT = "RECONCILIATION_TIMEOUT"


HTTP_STATUS_CODES = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.PRECONDITION_FAILED: 400,
    ErrorCode.NO_UPSTREAM_ARTIFACT: 400,
    ErrorCode.GENERATION_IN_PROGRESS: 409,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.AI_GENERATION_FAILED: 502,
    ErrorCode.ASSET_DOWNLOAD_FAILED: 502,
    ErrorCode.STORAGE_ERROR: 502,
    ErrorCode.RECONCILIATION_TIMEOUT: 504,
}


class PipelineError(Exception):
    """
    Base exception for pipeline errors.

    Provides structured error information including:
    - Error code for categorization
    - Detailed message for logging
    - Context dictionary for debugging
    - User-friendly message for API responses

    Example:
        >>> raise PipelineError(
        ...     ErrorCode.PRECONDITION_FAILED,
        ...     "Scene description must be confirmed before generating image",
        ...     {"scene_id": "..."}
        ... )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self._user_message = user_message
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        """HTTP status for the transport layer"""
        return HTTP_STATUS_CODES.get(self.code, 500)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for API responses.

        Returns:
            Dictionary with error information
        """
        return {
            "error": self.code.value,
            "message": self.message,
            "details": self.details,
            "user_message": self.get_user_friendly_message()
        }

    def get_user_friendly_message(self) -> str:
        """
        Returns user-friendly error message.

        If a custom user message was provided, returns that.
        Otherwise, returns a predefined friendly message based on error code.
        """
        if self._user_message:
            return self._user_message

        friendly_messages = {
            ErrorCode.INVALID_INPUT: "Please check your input and try again.",
            ErrorCode.PRECONDITION_FAILED: "This step is not available yet. Finish the previous step first.",
            ErrorCode.NO_UPSTREAM_ARTIFACT: "Generate and confirm an image for this scene first.",
            ErrorCode.GENERATION_IN_PROGRESS: "A generation is already running for this scene.",
            ErrorCode.NOT_FOUND: "Not found.",
            ErrorCode.AI_GENERATION_FAILED: "The generation service failed. Please try again.",
            ErrorCode.ASSET_DOWNLOAD_FAILED: "Failed to fetch the generated media. Please try again.",
            ErrorCode.STORAGE_ERROR: "Storage error occurred. Please try again or contact support.",
            ErrorCode.RECONCILIATION_TIMEOUT: "Generation took too long and was abandoned. Please try again.",
        }

        return friendly_messages.get(
            self.code,
            "An error occurred. Please try again or contact support."
        )

    def log_error(self) -> None:
        """
        Log error with appropriate level and context.

        Client-side errors (4xx) are warnings; everything else is an error.
        """
        log_data = {
            "error_code": self.code.value,
            "message": self.message,
            "details": self.details
        }

        if self.status_code < 500:
            logger.warning("client_error", **log_data)
        else:
            logger.error("pipeline_error", **log_data)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(PipelineError):
    """Error for input validation failures."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict] = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(ErrorCode.INVALID_INPUT, message, error_details)


class PreconditionError(PipelineError):
    """
    Stage or confirmation ordering violated.

    Always raised before any ledger mutation.
    """

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(ErrorCode.PRECONDITION_FAILED, message, details)


class NoUpstreamArtifactError(PipelineError):
    """Video generation attempted with no image artifact to animate."""

    def __init__(self, scene_id: str):
        super().__init__(
            ErrorCode.NO_UPSTREAM_ARTIFACT,
            "No image found for this scene. Please generate image first.",
            {"scene_id": scene_id}
        )


class GenerationInProgressError(PipelineError):
    """A generation for the same scene and track is already in flight."""

    def __init__(self, scene_id: str, track: str):
        super().__init__(
            ErrorCode.GENERATION_IN_PROGRESS,
            f"{track.capitalize()} generation already in progress for this scene",
            {"scene_id": scene_id, "track": track}
        )


class OwnershipError(PipelineError):
    """
    Resource missing or not owned by the acting principal.

    Both cases share one message so existence is never leaked.
    """

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        super().__init__(
            ErrorCode.NOT_FOUND,
            f"{resource.capitalize()} not found or access denied",
            {"resource": resource, "id": resource_id}
        )


class AIGenerationError(PipelineError):
    """
    Terminal failure of an external AI provider.

    Raised after the adapter's retry budget is spent, or when the vendor
    explicitly reports failure.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        cause: Optional[BaseException] = None,
        details: Optional[Dict] = None
    ):
        self.provider = provider
        self.cause = cause
        error_details = details or {}
        error_details["provider"] = provider
        if cause is not None:
            error_details["cause"] = repr(cause)
        super().__init__(ErrorCode.AI_GENERATION_FAILED, message, error_details)


class AssetDownloadError(PipelineError):
    """Generated media could not be fetched from the vendor URL."""

    def __init__(self, url: str, message: str):
        super().__init__(ErrorCode.ASSET_DOWNLOAD_FAILED, message, {"url": url})


class ReconciliationTimeoutError(PipelineError):
    """An async task did not reach a terminal vendor state within the ceiling."""

    def __init__(self, task_id: str, elapsed_seconds: float, ceiling_seconds: float):
        super().__init__(
            ErrorCode.RECONCILIATION_TIMEOUT,
            f"Video generation timed out: waited more than {int(ceiling_seconds)} seconds",
            {"task_id": task_id, "elapsed": round(elapsed_seconds, 1)}
        )


class TransientProviderError(Exception):
    """
    Retryable provider failure (HTTP 429/5xx, or a vendor "try again" reply).

    Only ever seen inside adapters; the retry loop converts it into
    AIGenerationError once the budget is spent.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


def should_retry(error: BaseException) -> bool:
    """
    Determines if an error is transient and should be retried.

    Transient errors include:
    - Network failures and timeouts
    - HTTP 429 and 5xx responses
    - Explicitly transient provider failures

    Example:
        >>> should_retry(httpx.ConnectTimeout("timed out"))
        True
        >>> should_retry(PreconditionError("description not confirmed"))
        False
    """
    if isinstance(error, TransientProviderError):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500

    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True

    return False
