"""
Provider adapter contracts.

Every external AI vendor is wrapped by one adapter. Media adapters share a
submit/query capability set and report progress with the four-state
JobStatus; no vendor vocabulary leaves this package.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, List, Optional, TypeVar, Union

import structlog
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from config import settings
from pipeline.error_handler import AIGenerationError, should_retry

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class JobStatus(str, Enum):
    """Uniform status of an external generation job"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationRequest(BaseModel):
    """Input for one media generation attempt"""
    prompt: str
    style: Optional[str] = None
    image_url: Optional[str] = None  # Upstream image for image-to-video


class JobHandle(BaseModel):
    """Opaque vendor job identifier plus the adapter that issued it"""
    task_id: str
    provider: str


class ImmediateResult(BaseModel):
    """Result returned by a provider that finished within submit()"""
    url: str
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None


class JobResult(BaseModel):
    """Outcome of one query() against a submitted job"""
    task_id: str
    status: JobStatus
    url: Optional[str] = None
    duration: Optional[float] = None
    error: Optional[str] = None


class PlannedScene(BaseModel):
    order_index: int
    description: str
    visual_prompt: str


class ScenePlan(BaseModel):
    """Structured output of the text-to-scenes provider"""
    title: Optional[str] = None
    scenes: List[PlannedScene]


class MediaProvider(ABC):
    """
    Image or video generation adapter.

    submit() returns either an ImmediateResult (the vendor finished while we
    waited) or a JobHandle that query() resolves later.
    """

    name: str = ""

    @abstractmethod
    async def submit(self, request: GenerationRequest) -> Union[ImmediateResult, JobHandle]:
        pass

    @abstractmethod
    async def query(self, task_id: str) -> JobResult:
        pass


class TextProvider(ABC):
    """Chat-style language model adapter used for scene planning"""

    name: str = ""

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str, temperature: float = 0.8) -> str:
        """Return the model's text reply"""
        pass


def _log_retry(retry_state) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "provider_call_retrying",
        attempt=retry_state.attempt_number,
        error=str(error),
        error_type=type(error).__name__,
    )


async def call_with_retries(
    provider: str,
    operation: str,
    func: Callable[[], Awaitable[T]],
    timeout: Optional[float] = None,
) -> T:
    """
    Run one vendor call under the shared retry policy.

    Transient failures (see should_retry) are retried up to
    PROVIDER_MAX_RETRIES attempts, waiting n * PROVIDER_RETRY_DELAY seconds
    before attempt n + 1. Anything else, or an exhausted budget, surfaces as
    AIGenerationError.

    Args:
        provider: Adapter name recorded on the error
        operation: Short label for logs ("submit", "query", ...)
        func: Zero-argument coroutine factory performing one attempt
        timeout: Per-attempt timeout in seconds, if the call has none of its own
    """
    async def attempt():
        if timeout is None:
            return await func()
        return await asyncio.wait_for(func(), timeout=timeout)

    delay = settings.PROVIDER_RETRY_DELAY
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(settings.PROVIDER_MAX_RETRIES, 1)),
        wait=wait_incrementing(start=delay, increment=delay),
        retry=retry_if_exception(should_retry),
        before_sleep=_log_retry,
        reraise=True,
    )

    try:
        async for attempt_state in retrying:
            with attempt_state:
                return await attempt()
    except AIGenerationError:
        raise
    except Exception as e:
        logger.error(
            "provider_call_failed",
            provider=provider,
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
        )
        message = "request timed out" if should_retry(e) and not str(e) else str(e)
        raise AIGenerationError(provider, f"{operation} failed: {message}", cause=e)
