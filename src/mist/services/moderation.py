"""Prompt moderation via the OpenAI moderation endpoint.

Moderation is best-effort: if the service is unreachable, misconfigured or
returns something unexpected, the prompt is treated as not flagged.
"""

import httpx
import structlog

logger = structlog.get_logger(__name__)


class ModerationClient:
    """Checks prompts against the OpenAI moderation API."""

    def __init__(self, http: httpx.AsyncClient, api_key: str, base_url: str = "https://api.openai.com/v1"):
        self._http = http
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    async def is_flagged(self, prompt: str) -> bool:
        """Return True only when the moderation service positively flags ``prompt``."""
        if not self._api_key:
            logger.warning("moderation.skipped", reason="OPENAI_API_KEY not configured")
            return False

        try:
            response = await self._http.post(
                f"{self._base_url}/moderations",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"input": prompt},
            )
            response.raise_for_status()
            flagged = bool(response.json()["results"][0]["flagged"])
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning("moderation.unavailable", error=str(e), error_type=type(e).__name__)
            return False

        if flagged:
            logger.info("moderation.flagged", prompt_length=len(prompt))
        return flagged
