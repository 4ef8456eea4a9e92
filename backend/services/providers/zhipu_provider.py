"""
Zhipu AI (GLM) chat completion adapter used for scene planning.
"""

from typing import Optional

import httpx
import structlog

from config import settings
from pipeline.error_handler import AIGenerationError, TransientProviderError
from services.model_registry import ModelConfig, ModelRegistry, ModelTask
from services.providers.base import TextProvider, call_with_retries

logger = structlog.get_logger(__name__)

PROVIDER_NAME = "zhipu"
CHAT_API_URL = "https://open.bigmodel.cn/api/paas/v4/chat/completions"


class ZhipuTextProvider(TextProvider):
    name = PROVIDER_NAME

    def __init__(
        self,
        model: Optional[ModelConfig] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model or ModelRegistry.get_model(ModelTask.SCENE_PLANNING, PROVIDER_NAME)
        self._api_key = api_key
        self.transport = transport

    @property
    def api_key(self) -> str:
        key = self._api_key or settings.ZHIPU_API_KEY
        if not key:
            raise AIGenerationError(PROVIDER_NAME, "ZHIPU_API_KEY is not configured")
        return key

    async def _chat(self, payload: dict) -> dict:
        async with httpx.AsyncClient(timeout=settings.TEXT_SUBMIT_TIMEOUT, transport=self.transport) as client:
            response = await client.post(
                CHAT_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientProviderError(
                f"Zhipu returned {response.status_code}", status_code=response.status_code
            )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.is_error:
            message = (body.get("error") or {}).get("message") or f"API request failed: {response.status_code}"
            raise AIGenerationError(PROVIDER_NAME, message, details={"status": response.status_code})
        return body

    async def complete(self, system_prompt: str, user_prompt: str, temperature: float = 0.8) -> str:
        params = self.model.default_params
        payload = {
            "model": self.model.model_id,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "top_p": params.get("top_p", 0.9),
            "max_tokens": params.get("max_tokens", 4096),
            "stream": False,
        }

        body = await call_with_retries(PROVIDER_NAME, "complete", lambda: self._chat(payload))

        choices = body.get("choices") or []
        content = (choices[0].get("message") or {}).get("content") if choices else None
        logger.info(
            "zhipu_completion_received",
            model_id=self.model.model_id,
            total_tokens=(body.get("usage") or {}).get("total_tokens"),
        )
        return content or ""
