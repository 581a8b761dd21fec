"""OpenAI DALL-E adapter (synchronous, base64 payloads)."""

import base64
import binascii

import httpx

from mist.models.generation_request import GenerationParameters
from mist.services.exceptions import ProviderFatalError
from mist.services.generation.adapters.base import GeneratedImage, SynchronousAdapter
from mist.services.retry import RetryPolicy


class DalleAdapter(SynchronousAdapter):
    provider = "dalle"

    def __init__(
        self,
        http: httpx.AsyncClient,
        retry: RetryPolicy,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
    ):
        super().__init__(http, retry)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    async def generate_once(self, parameters: GenerationParameters) -> list[GeneratedImage]:
        response = await self.send(
            "POST",
            f"{self.base_url}/images/generations",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "prompt": parameters.prompt,
                "n": parameters.count,
                "size": f"{parameters.width}x{parameters.height}",
                "response_format": "b64_json",
            },
        )

        try:
            data = response.json()["data"]
        except (KeyError, ValueError) as e:
            raise ProviderFatalError(f"Unexpected DALL-E response: {response.text[:200]}") from e

        images = []
        for item in data:
            try:
                images.append(GeneratedImage(data=base64.b64decode(item["b64_json"]), mime_type="image/png"))
            except (KeyError, binascii.Error):
                # Undecodable entries are dropped
                continue
        return images
