"""Stable Horde adapter (poll-until-done).

Flow: ``POST /generate/async`` returns a job id, ``GET /generate/check/{id}``
reports progress and an estimated ``wait_time``, and ``GET /generate/status/{id}``
returns the finished generations (base64 WebP or a URL).
"""

import base64
import binascii
from typing import Optional

from mist.models.generation_request import GenerationParameters
from mist.services.exceptions import ProviderFatalError
from mist.services.generation.adapters.base import GeneratedImage, PollingAdapter, PollStatus


class StableHordeAdapter(PollingAdapter):
    provider = "stable_horde"

    def __init__(self, *args, api_key: str, base_url: str = "https://stablehorde.net/api/v2", **kwargs):
        super().__init__(*args, **kwargs)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def headers(self) -> dict[str, str]:
        return {"apikey": self.api_key}

    def build_payload(self, parameters: GenerationParameters) -> dict:
        prompt = parameters.prompt
        if parameters.negative_prompt:
            prompt = f"{prompt} ### {parameters.negative_prompt}"

        params: dict = {
            "width": parameters.width,
            "height": parameters.height,
            "steps": 50,
            "n": parameters.count,
            "use_gfpgan": True,
            "use_upscaling": False,
        }
        if parameters.cfg_scale is not None:
            params["cfg_scale"] = parameters.cfg_scale

        return {
            "prompt": prompt,
            "params": params,
            "nsfw": False,
            "trusted_workers": False,
            "censor_nsfw": False,
        }

    async def create(self, parameters: GenerationParameters) -> tuple[str, Optional[float]]:
        response = await self.send(
            "POST",
            f"{self.base_url}/generate/async",
            headers=self.headers,
            json=self.build_payload(parameters),
        )
        body = response.json()
        if "id" not in body:
            raise ProviderFatalError(f"Stable Horde did not accept job: {body.get('message', body)}")
        return body["id"], None

    async def poll(self, job_id: str) -> PollStatus:
        response = await self.send("GET", f"{self.base_url}/generate/check/{job_id}", headers=self.headers)
        body = response.json()

        if body.get("is_possible") is False:
            return PollStatus(done=False, faulted=True, detail="request is not possible")

        return PollStatus(
            done=bool(body.get("done")),
            faulted=bool(body.get("faulted")),
            eta=body.get("wait_time"),
        )

    async def collect(self, job_id: str, status: PollStatus) -> list[GeneratedImage]:
        response = await self.send("GET", f"{self.base_url}/generate/status/{job_id}", headers=self.headers)
        generations = response.json().get("generations") or []

        images = []
        for generation in generations:
            img = generation.get("img")
            if not img:
                continue
            seed = generation.get("seed")
            seed = str(seed) if seed is not None else None
            if img.startswith(("http://", "https://")):
                images.append(GeneratedImage(url=img, seed=seed, mime_type="image/webp"))
                continue
            try:
                images.append(GeneratedImage(data=base64.b64decode(img), seed=seed, mime_type="image/webp"))
            except binascii.Error:
                continue
        return images
