"""Modal endpoint adapter (webhook-completed).

The job is posted with a correlation id (the request id) and a callback URL.
Modal later calls ``POST /webhooks/modal`` with ``{request_id, output: [{seed, url}]}``.
"""

from typing import Any
from uuid import UUID

import httpx

from mist.models.generation_request import GenerationParameters
from mist.services.generation.adapters.base import GeneratedImage, WebhookAdapter
from mist.services.retry import RetryPolicy


class ModalAdapter(WebhookAdapter):
    provider = "mist"
    webhook_name = "modal"

    def __init__(self, http: httpx.AsyncClient, retry: RetryPolicy, endpoint_url: str, secret: str):
        super().__init__(http, retry, secret)
        self.endpoint_url = endpoint_url

    async def dispatch_once(
        self, parameters: GenerationParameters, request_id: UUID, callback_url: str
    ) -> None:
        await self.send(
            "POST",
            self.endpoint_url,
            headers={"Authorization": f"Bearer {self.secret}"},
            json={
                "request_id": str(request_id),
                "prompt": parameters.prompt,
                "negative_prompt": parameters.negative_prompt,
                "width": parameters.width,
                "height": parameters.height,
                "number": parameters.count,
                "steps": 50,
                "cfg_scale": parameters.cfg_scale or 8,
                "callback_url": callback_url,
            },
        )

    def parse_completion(self, output: list[dict[str, Any]]) -> list[GeneratedImage]:
        images = []
        for item in output:
            url = item.get("url")
            if not url:
                continue
            seed = item.get("seed")
            images.append(
                GeneratedImage(url=url, seed=str(seed) if seed is not None else None, mime_type="image/png")
            )
        return images
