"""Replicate predictions adapter (poll-until-done through the replicate SDK).

The SDK is synchronous, so every call runs in a worker thread. Replicate
reports no ETA; the adapter polls on a fixed interval.
"""

import asyncio
from typing import Any, Optional

import httpx
import replicate
from replicate.exceptions import ReplicateError as ReplicateAPIError

from mist.models.generation_request import GenerationParameters
from mist.services.exceptions import (
    ProviderFatalError,
    ProviderTransientError,
    ServiceError,
)
from mist.services.generation.adapters.base import GeneratedImage, PollingAdapter, PollStatus

MODEL_VERSIONS = {
    "stable_diffusion_1_5": "27b93a2413e7f36cd83da926f3656280b2931564ff050bf9575f1fdf9bcd7478",
    "stable_diffusion_2_1": "f178fa7a1ae43a9a9af01b833b9d2ecf97b1bcb0acfd2dc5dd04895e042863f1",
    "openjourney": "9936c2001faa2194a261c01381f90e65261879985476014a0a37a334593a05eb",
}

SEED_LOG_PREFIX = "Using seed: "


def classify_error(exception: Exception) -> ServiceError:
    """Classify exception into retry category.

    Classification rules:
        - Timeout errors → ProviderTransientError
        - 429 (rate limit) → ProviderTransientError
        - 5xx (service unavailable) → ProviderTransientError
        - 401/403 (authentication) → ProviderFatalError
        - Content policy violations → ProviderFatalError
        - Connection errors → ProviderTransientError
        - Anything else → ProviderFatalError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if "timeout" in error_message_lower:
        return ProviderTransientError(f"Network timeout: {error_message}")

    if "429" in error_message or "rate limit" in error_message_lower:
        return ProviderTransientError(f"Rate limit exceeded: {error_message}")

    if any(code in error_message for code in ("500", "502", "503", "504")) or (
        "service unavailable" in error_message_lower
    ):
        return ProviderTransientError(f"Service unavailable: {error_message}")

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return ProviderFatalError(f"Authentication failed: {error_message}")

    if "nsfw" in error_message_lower or "content policy" in error_message_lower:
        return ProviderFatalError(f"Content policy violation: {error_message}")

    if isinstance(exception, (ConnectionError, OSError, httpx.TransportError)):
        return ProviderTransientError(f"Connection error: {error_message}")

    return ProviderFatalError(f"Permanent error: {error_message}")


def parse_seed(logs: Optional[str]) -> Optional[str]:
    """Extract the seed from the first prediction log line (``Using seed: 1234``)."""
    lines = logs.splitlines() if logs else []
    if not lines or not lines[0].startswith(SEED_LOG_PREFIX):
        return None
    seed = lines[0][len(SEED_LOG_PREFIX):].strip()
    return seed or None


class ReplicateAdapter(PollingAdapter):
    provider = "mist"

    def __init__(self, *args, api_token: str, client: Any = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.client = client or replicate.Client(api_token=api_token)

    def build_input(self, parameters: GenerationParameters) -> dict[str, Any]:
        spec: dict[str, Any] = {
            "prompt": parameters.prompt,
            "width": parameters.width,
            "height": parameters.height,
            "num_outputs": parameters.count,
            "num_inference_steps": 50,
            "guidance_scale": parameters.cfg_scale or 8,
            "scheduler": "K_EULER",
        }
        if parameters.negative_prompt:
            spec["negative_prompt"] = parameters.negative_prompt
        return spec

    async def _call(self, func, *args, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (ReplicateAPIError, httpx.HTTPError, ConnectionError, OSError) as e:
            raise classify_error(e) from e

    async def create(self, parameters: GenerationParameters) -> tuple[str, Optional[float]]:
        version = MODEL_VERSIONS.get(parameters.model or "")
        if version is None:
            raise ProviderFatalError(f"No Replicate version for model {parameters.model}")

        prediction = await self._call(
            self.client.predictions.create, version=version, input=self.build_input(parameters)
        )
        return prediction.id, None

    async def poll(self, job_id: str) -> PollStatus:
        prediction = await self._call(self.client.predictions.get, job_id)
        status = prediction.status

        if status in ("failed", "canceled"):
            return PollStatus(done=False, faulted=True, detail=f"{status}: {prediction.error}")

        if status != "succeeded":
            return PollStatus(done=False)

        output = prediction.output or []
        if isinstance(output, str):
            output = [output]
        seed = parse_seed(prediction.logs)
        return PollStatus(
            done=True,
            images=[GeneratedImage(url=str(url), seed=seed, mime_type="image/png") for url in output],
        )
