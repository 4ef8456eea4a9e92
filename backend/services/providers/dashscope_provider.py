"""
DashScope (Alibaba Cloud) provider adapters.

Both adapters submit asynchronous DashScope tasks. The image adapter waits
for its task inside submit() and hands back an ImmediateResult; the video
adapter returns the task id and leaves completion to reconciliation.
"""

import asyncio
import random
import time
from typing import Optional, Union

import httpx
import structlog

from config import settings
from pipeline.error_handler import AIGenerationError, TransientProviderError
from services.model_registry import ModelConfig, ModelRegistry, ModelTask
from services.providers.base import (
    GenerationRequest,
    ImmediateResult,
    JobHandle,
    JobResult,
    JobStatus,
    MediaProvider,
    call_with_retries,
)

logger = structlog.get_logger(__name__)

PROVIDER_NAME = "dashscope"

IMAGE_API_URL = "https://dashscope.aliyuncs.com/api/v1/services/aigc/text2image/image-synthesis"
VIDEO_API_URL = "https://dashscope.aliyuncs.com/api/v1/services/aigc/video-generation/video-synthesis"
TASK_API_URL = "https://dashscope.aliyuncs.com/api/v1/tasks"

NEGATIVE_PROMPT = "low quality, blurry, distorted, ugly, bad anatomy"

# Project style -> wanx style tag
STYLE_TAGS = {
    "realistic": "<photograph>",
    "anime": "<anime>",
    "3d-cartoon": "<3d cartoon>",
    "watercolor": "<watercolor>",
    "oil_painting": "<oil painting>",
    "sketch": "<sketch>",
    "cyberpunk": "<cyberpunk>",
    "fantasy": "<fantasy art>",
}

# DashScope task statuses -> JobStatus
STATUS_MAP = {
    "PENDING": JobStatus.PROCESSING,
    "RUNNING": JobStatus.PROCESSING,
    "SUCCEEDED": JobStatus.COMPLETED,
    "FAILED": JobStatus.FAILED,
    "CANCELED": JobStatus.FAILED,
}


def map_task_status(status: Optional[str]) -> JobStatus:
    """UNKNOWN and anything unrecognised map to pending."""
    return STATUS_MAP.get((status or "").upper(), JobStatus.PENDING)


def build_image_prompt(description: str, style: Optional[str] = None) -> str:
    if not style:
        return description
    tag = STYLE_TAGS.get(style)
    if tag:
        return f"{tag}, {description}, high quality, detailed, 4k"
    return f"{description}, {style} style, high quality, detailed"


class _DashScopeBase:
    name = PROVIDER_NAME

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._api_key = api_key
        self.transport = transport

    @property
    def api_key(self) -> str:
        key = self._api_key or settings.DASHSCOPE_API_KEY
        if not key:
            raise AIGenerationError(PROVIDER_NAME, "DASHSCOPE_API_KEY is not configured")
        return key

    def _headers(self, async_task: bool = False) -> dict:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if async_task:
            headers["Content-Type"] = "application/json"
            headers["X-DashScope-Async"] = "enable"
        return headers

    async def _request(self, method: str, url: str, timeout: float, **kwargs) -> dict:
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            response = await client.request(method, url, **kwargs)

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientProviderError(
                f"DashScope returned {response.status_code}", status_code=response.status_code
            )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.is_error:
            message = body.get("message") or f"API request failed: {response.status_code}"
            raise AIGenerationError(PROVIDER_NAME, message, details={"status": response.status_code})
        return body

    async def _submit_task(self, url: str, payload: dict, timeout: float) -> str:
        body = await call_with_retries(
            PROVIDER_NAME,
            "submit",
            lambda: self._request("POST", url, timeout, json=payload, headers=self._headers(async_task=True)),
        )
        task_id = (body.get("output") or {}).get("task_id")
        if not task_id:
            raise AIGenerationError(PROVIDER_NAME, "Task submission returned no task id")
        return task_id

    async def _query_task(self, task_id: str) -> dict:
        body = await call_with_retries(
            PROVIDER_NAME,
            "query",
            lambda: self._request(
                "GET", f"{TASK_API_URL}/{task_id}", settings.QUERY_TIMEOUT, headers=self._headers()
            ),
        )
        return body.get("output") or {}


class DashScopeImageProvider(_DashScopeBase, MediaProvider):
    """wanx text-to-image; waits for the task so callers see a synchronous result."""

    poll_interval = 3.0

    def __init__(
        self,
        model: Optional[ModelConfig] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, transport)
        self.model = model or ModelRegistry.get_model(ModelTask.IMAGE, PROVIDER_NAME)

    async def submit(self, request: GenerationRequest) -> Union[ImmediateResult, JobHandle]:
        parameters = {
            **self.model.default_params,
            "seed": random.randint(0, 999999),
        }
        payload = {
            "model": self.model.model_id,
            "input": {
                "prompt": build_image_prompt(request.prompt, request.style),
                "negative_prompt": NEGATIVE_PROMPT,
            },
            "parameters": parameters,
        }
        task_id = await self._submit_task(IMAGE_API_URL, payload, settings.IMAGE_SUBMIT_TIMEOUT)
        logger.info("dashscope_image_task_submitted", task_id=task_id)

        result = await self._wait_for(task_id, settings.IMAGE_SUBMIT_TIMEOUT)
        width, height = (int(part) for part in parameters.get("size", "1024*1024").split("*"))
        return ImmediateResult(url=result.url, width=width, height=height)

    async def _wait_for(self, task_id: str, max_wait: float) -> JobResult:
        started = time.monotonic()
        while time.monotonic() - started < max_wait:
            result = await self.query(task_id)
            if result.status == JobStatus.COMPLETED:
                return result
            if result.status == JobStatus.FAILED:
                raise AIGenerationError(
                    PROVIDER_NAME,
                    f"Image generation failed: {result.error or 'unknown error'}",
                    details={"task_id": task_id},
                )
            await asyncio.sleep(self.poll_interval)

        raise AIGenerationError(
            PROVIDER_NAME,
            f"Image generation timed out: waited more than {int(max_wait)} seconds",
            details={"task_id": task_id},
        )

    async def query(self, task_id: str) -> JobResult:
        output = await self._query_task(task_id)
        status = map_task_status(output.get("task_status"))
        result = JobResult(task_id=task_id, status=status, error=output.get("message"))

        if status == JobStatus.COMPLETED:
            results = output.get("results") or []
            result.url = results[0].get("url") if results else None
            if not result.url:
                result.status = JobStatus.FAILED
                result.error = "Image generation succeeded but returned no image URL"
        return result


class DashScopeVideoProvider(_DashScopeBase, MediaProvider):
    """wanx image-to-video; returns a task handle for reconciliation."""

    def __init__(
        self,
        model: Optional[ModelConfig] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, transport)
        self.model = model or ModelRegistry.get_model(ModelTask.VIDEO, PROVIDER_NAME)

    async def submit(self, request: GenerationRequest) -> Union[ImmediateResult, JobHandle]:
        if not request.image_url:
            raise AIGenerationError(PROVIDER_NAME, "Image-to-video requires an image URL")

        payload = {
            "model": self.model.model_id,
            "input": {"img_url": request.image_url, "prompt": request.prompt},
            "parameters": dict(self.model.default_params),
        }
        task_id = await self._submit_task(VIDEO_API_URL, payload, settings.VIDEO_SUBMIT_TIMEOUT)
        logger.info("dashscope_video_task_submitted", task_id=task_id)
        return JobHandle(task_id=task_id, provider=PROVIDER_NAME)

    async def query(self, task_id: str) -> JobResult:
        output = await self._query_task(task_id)
        status = map_task_status(output.get("task_status"))
        result = JobResult(
            task_id=task_id,
            status=status,
            url=output.get("video_url"),
            duration=output.get("duration"),
            error=output.get("message"),
        )
        if status == JobStatus.COMPLETED and not result.url:
            result.status = JobStatus.FAILED
            result.error = "Video generation succeeded but returned no video URL"
        return result
