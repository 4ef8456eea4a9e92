"""
Replicate API Wrapper

A small wrapper around the Replicate SDK used by the Replicate provider
adapters for scene planning, image generation and image-to-video jobs.

Key Features:
- Singleton pattern for client reuse
- Error handling using replicate.exceptions.ModelError
- Async model runs for synchronous-style providers
- Background predictions (create + get) for long-running video jobs
- Logging integration with structlog

Retries are not applied here; the provider adapters own the retry budget so
that every vendor shares one policy.
"""

from typing import Any, List, Optional, Union

import replicate
from replicate.exceptions import ModelError
from replicate.helpers import FileOutput
from replicate.prediction import Prediction
import structlog

from config import settings


logger = structlog.get_logger(__name__)


class ReplicateClient:
    """
    Modular wrapper for Replicate API interactions.

    Usage:
        client = ReplicateClient()
        output = await client.run_model_async(
            "black-forest-labs/flux-schnell",
            {"prompt": "astronaut riding a rocket"}
        )
        prediction = await client.create_prediction_async(
            "minimax/video-01",
            {"prompt": "...", "first_frame_image": "https://..."}
        )
    """

    _instance = None

    def __new__(cls, api_token: str = None):
        """Singleton pattern to reuse client instance."""
        if cls._instance is None:
            cls._instance = super(ReplicateClient, cls).__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, api_token: str = None):
        """
        Initialize Replicate client.

        Args:
            api_token: Replicate API token. If None, loads from settings
        """
        # Skip if already initialized (singleton pattern)
        if self._initialized:
            return

        self.api_token = api_token or settings.REPLICATE_API_TOKEN
        if not self.api_token:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN "
                "environment variable or pass api_token parameter."
            )

        self.logger = logger.bind(service="replicate_client")
        self.client = replicate.Client(api_token=self.api_token)

        self._initialized = True

        self.logger.info("replicate_client_initialized")

    async def run_model_async(
        self,
        model_id: str,
        input_params: dict,
    ) -> Union[str, List[Any], Any]:
        """
        Run a model to completion and return its output.

        FileOutput objects are converted to their URL strings; iterator
        outputs (language models) are joined into a single string.

        Args:
            model_id: Model identifier (e.g., "black-forest-labs/flux-schnell")
            input_params: Dictionary of input parameters for the model

        Raises:
            ModelError: If the model prediction fails
        """
        self.logger.info("running_model_async", model_id=model_id)

        try:
            output = await self.client.async_run(model_id, input=input_params)
        except ModelError as e:
            self.logger.error(
                "model_async_prediction_failed",
                model_id=model_id,
                prediction_id=getattr(e.prediction, "id", None),
                status=getattr(e.prediction, "status", None),
                error=str(e),
            )
            raise

        self.logger.info(
            "model_async_run_success",
            model_id=model_id,
            output_type=type(output).__name__,
        )
        return normalize_output(output)

    async def create_prediction_async(
        self,
        model_id: str,
        input_params: dict,
        version_id: Optional[str] = None,
    ) -> Prediction:
        """
        Create a background prediction and return immediately.

        Args:
            model_id: Model identifier (used when no version is given)
            input_params: Dictionary of input parameters
            version_id: Specific version ID (optional)

        Returns:
            Prediction object; its id is the job handle
        """
        self.logger.info("creating_prediction", model_id=model_id, version_id=version_id)

        if version_id:
            prediction = await self.client.predictions.async_create(
                version=version_id,
                input=input_params,
            )
        else:
            prediction = await self.client.predictions.async_create(
                model=model_id,
                input=input_params,
            )

        self.logger.info(
            "prediction_created",
            prediction_id=prediction.id,
            status=prediction.status,
        )
        return prediction

    async def get_prediction_async(self, prediction_id: str) -> Prediction:
        """Fetch the current state of a prediction."""
        prediction = await self.client.predictions.async_get(prediction_id)
        self.logger.debug(
            "prediction_fetched",
            prediction_id=prediction_id,
            status=prediction.status,
        )
        return prediction


def normalize_output(output: Any) -> Any:
    """Turn Replicate outputs into plain strings or lists of strings."""
    if isinstance(output, FileOutput):
        return str(output)
    if isinstance(output, (list, tuple)):
        items = [str(item) if isinstance(item, FileOutput) else item for item in output]
        # Language models stream tokens as a list of strings
        if items and all(isinstance(item, str) for item in items) and not _looks_like_urls(items):
            return "".join(items)
        return items
    if isinstance(output, str):
        return output
    if hasattr(output, "__iter__") and not isinstance(output, dict):
        return normalize_output(list(output))
    return output


def _looks_like_urls(items: List[str]) -> bool:
    return all(item.startswith(("http://", "https://", "data:")) for item in items)


# Convenience function for singleton access
def get_replicate_client() -> ReplicateClient:
    """
    Get the singleton ReplicateClient instance.

    Returns:
        ReplicateClient instance
    """
    return ReplicateClient()
