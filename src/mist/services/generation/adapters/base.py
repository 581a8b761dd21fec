"""Provider adapter framework.

Each provider implements exactly one interaction style:

- ``SynchronousAdapter``: one call returns the final images.
- ``PollingAdapter``: one call creates a remote job, then the adapter polls it
  on an interval derived from the provider's ETA until the job finishes, faults,
  or the elapsed-time budget runs out.
- ``WebhookAdapter``: one call hands the job off together with a callback URL;
  results arrive later through ``POST /webhooks/{provider}``.
"""

import asyncio
import hmac
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, ClassVar, Optional
from uuid import UUID

import httpx
import structlog

from mist.models.generation_request import GenerationParameters
from mist.services.exceptions import (
    GenerationTimeoutError,
    ProviderFatalError,
    ProviderTransientError,
)
from mist.services.retry import RetryPolicy

logger = structlog.get_logger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class InteractionStyle(str, Enum):
    SYNCHRONOUS = "synchronous"
    POLLING = "polling"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class GeneratedImage:
    """One image returned by a provider, as bytes or as a URL to fetch."""

    data: Optional[bytes] = None
    url: Optional[str] = None
    seed: Optional[str] = None
    mime_type: str = "image/png"


@dataclass(frozen=True)
class PollStatus:
    """Snapshot of a remote job."""

    done: bool
    faulted: bool = False
    eta: Optional[float] = None
    images: list[GeneratedImage] = field(default_factory=list)
    detail: str = ""


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """Classify a provider HTTP response.

    Raises:
        ProviderTransientError: 408, 429 and 5xx responses
        ProviderFatalError: Any other 4xx response
    """
    status = response.status_code
    if status < 400:
        return
    if status in TRANSIENT_STATUS_CODES or status >= 500:
        raise ProviderTransientError(f"{provider} unavailable ({status}): {response.text}")
    raise ProviderFatalError(f"{provider} rejected request ({status}): {response.text}")


class ProviderAdapter(ABC):
    """Base class for every provider adapter."""

    provider: ClassVar[str]
    style: ClassVar[InteractionStyle]

    def __init__(self, http: httpx.AsyncClient, retry: RetryPolicy):
        self.http = http
        self.retry = retry

    async def send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one request, mapping network failures and error statuses to provider errors."""
        try:
            response = await self.http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTransientError(f"{self.provider} request timeout: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderTransientError(f"{self.provider} network error: {e}") from e
        raise_for_provider_status(response, self.provider)
        return response

    async def download(self, url: str) -> bytes:
        """Fetch generated image bytes from a provider-hosted URL (with retry)."""

        async def _get() -> bytes:
            response = await self.send("GET", url)
            return response.content

        return await self.retry.run(f"{self.provider}.download", _get)


class SynchronousAdapter(ProviderAdapter):
    style = InteractionStyle.SYNCHRONOUS

    @abstractmethod
    async def generate_once(self, parameters: GenerationParameters) -> list[GeneratedImage]:
        """Single provider call returning final image payloads."""

    async def generate(self, parameters: GenerationParameters) -> list[GeneratedImage]:
        return await self.retry.run(f"{self.provider}.generate", self.generate_once, parameters)


class PollingAdapter(ProviderAdapter):
    """Create-then-poll adapter.

    The wait before each poll is the provider's ETA clamped to
    ``[min_wait, max_wait]``. The job is abandoned with
    ``GenerationTimeoutError`` once ``budget`` seconds have elapsed.
    """

    style = InteractionStyle.POLLING

    def __init__(
        self,
        http: httpx.AsyncClient,
        retry: RetryPolicy,
        min_wait: float = 3.0,
        max_wait: float = 60.0,
        budget: float = 600.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(http, retry)
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.budget = budget
        self._sleep = sleep
        self._clock = clock

    @abstractmethod
    async def create(self, parameters: GenerationParameters) -> tuple[str, Optional[float]]:
        """Start a remote job. Returns the job id and an optional ETA in seconds."""

    @abstractmethod
    async def poll(self, job_id: str) -> PollStatus:
        """Fetch the current status of a remote job."""

    async def collect(self, job_id: str, status: PollStatus) -> list[GeneratedImage]:
        """Images of a finished job. Override when results need a separate call."""
        return status.images

    def wait_for(self, eta: Optional[float]) -> float:
        if eta is None:
            return self.min_wait
        return min(max(eta, self.min_wait), self.max_wait)

    async def generate(self, parameters: GenerationParameters) -> list[GeneratedImage]:
        job_id, eta = await self.retry.run(f"{self.provider}.create", self.create, parameters)
        started = self._clock()
        log = logger.bind(provider=self.provider, job_id=job_id)
        log.info("provider.job_created", eta=eta)

        while True:
            wait = self.wait_for(eta)
            await self._sleep(wait)

            status = await self.retry.run(f"{self.provider}.poll", self.poll, job_id)
            elapsed = self._clock() - started

            if status.faulted:
                log.warning("provider.job_faulted", detail=status.detail, elapsed=elapsed)
                raise ProviderFatalError(f"{self.provider} job {job_id} faulted: {status.detail}")

            if status.done:
                log.info("provider.job_done", elapsed=elapsed)
                return await self.retry.run(
                    f"{self.provider}.collect", self.collect, job_id, status
                )

            if elapsed >= self.budget:
                log.warning("provider.job_timeout", elapsed=elapsed, budget=self.budget)
                raise GenerationTimeoutError(
                    f"{self.provider} job {job_id} not finished after {elapsed:.0f}s"
                )

            eta = status.eta
            log.debug("provider.job_pending", eta=eta, elapsed=elapsed)


class WebhookAdapter(ProviderAdapter):
    """Fire-and-forget adapter completed by an inbound webhook."""

    style = InteractionStyle.WEBHOOK

    # Path segment under /webhooks/ that this adapter's callbacks arrive on
    webhook_name: ClassVar[str]

    def __init__(self, http: httpx.AsyncClient, retry: RetryPolicy, secret: str):
        super().__init__(http, retry)
        self.secret = secret

    def verify_secret(self, token: str) -> bool:
        """Constant-time check of the bearer token a callback carries."""
        if not self.secret or not token:
            return False
        return hmac.compare_digest(token.encode(), self.secret.encode())

    @abstractmethod
    async def dispatch_once(
        self, parameters: GenerationParameters, request_id: UUID, callback_url: str
    ) -> None:
        """Hand the job to the provider."""

    async def dispatch(
        self, parameters: GenerationParameters, request_id: UUID, callback_url: str
    ) -> None:
        await self.retry.run(
            f"{self.provider}.dispatch", self.dispatch_once, parameters, request_id, callback_url
        )

    @abstractmethod
    def parse_completion(self, output: list[dict[str, Any]]) -> list[GeneratedImage]:
        """Turn a webhook's ``output`` list into images."""
