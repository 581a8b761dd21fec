"""Static provider registry keyed by ``(provider, model)``.

Each entry pairs the adapter that serves a model with the sizes and image
counts it accepts. Submission validation and worker dispatch both resolve
through the registry.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

import httpx

from mist.core.config import Settings
from mist.models.generation_request import GenerationParameters
from mist.services.exceptions import InvalidParametersError
from mist.services.generation.adapters.base import ProviderAdapter, WebhookAdapter
from mist.services.generation.adapters.dalle import DalleAdapter
from mist.services.generation.adapters.modal import ModalAdapter
from mist.services.generation.adapters.replicate import ReplicateAdapter
from mist.services.generation.adapters.stable_horde import StableHordeAdapter
from mist.services.retry import RetryPolicy

DALLE_SIZES = frozenset({(256, 256), (512, 512), (1024, 1024)})
STABLE_HORDE_SIZES = frozenset({(512, 512), (512, 1024), (1024, 512), (640, 1024), (1024, 640)})
MIST_SIZES = frozenset(
    (w, h) for w in (512, 768, 1024) for h in (512, 768, 1024) if (w, h) != (1024, 1024)
)

# Stable Horde clamps its poll window wider than the default
STABLE_HORDE_MIN_WAIT = 10.0
STABLE_HORDE_MAX_WAIT = 120.0

REPLICATE_POLL_INTERVAL = 5.0


@dataclass(frozen=True)
class ModelRoute:
    """Adapter and validation rules for one ``(provider, model)`` pair."""

    provider: str
    model: str
    adapter: ProviderAdapter
    sizes: frozenset[tuple[int, int]]
    counts: frozenset[int]


def _format_sizes(sizes: Iterable[tuple[int, int]]) -> str:
    return ", ".join(f"{w}x{h}" for w, h in sorted(sizes))


class ProviderRegistry:
    """Lookup table from ``(provider, model)`` to adapter and rules."""

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], ModelRoute] = {}
        self._defaults: dict[str, str] = {}
        self._webhooks: dict[str, WebhookAdapter] = {}

    def register(
        self,
        provider: str,
        model: str,
        adapter: ProviderAdapter,
        sizes: Iterable[tuple[int, int]],
        counts: Iterable[int],
        default: bool = False,
    ) -> None:
        key = (provider, model)
        if key in self._routes:
            raise ValueError(f"{provider}/{model} is already registered")

        self._routes[key] = ModelRoute(provider, model, adapter, frozenset(sizes), frozenset(counts))
        if default or provider not in self._defaults:
            self._defaults[provider] = model
        if isinstance(adapter, WebhookAdapter):
            self._webhooks[adapter.webhook_name] = adapter

    @property
    def providers(self) -> list[str]:
        return sorted(self._defaults)

    def default_model(self, provider: str) -> str:
        try:
            return self._defaults[provider]
        except KeyError:
            raise InvalidParametersError(
                f"Unknown provider {provider!r}. Must be one of: {', '.join(self.providers)}"
            ) from None

    def resolve(self, provider: str, model: Optional[str]) -> ModelRoute:
        """Route for a provider/model pair (model defaults per provider).

        Raises:
            InvalidParametersError: If the provider or model is unknown
        """
        model = model or self.default_model(provider)
        route = self._routes.get((provider, model))
        if route is None:
            # Unknown provider raises here with the provider list
            self.default_model(provider)
            models = sorted(m for p, m in self._routes if p == provider)
            raise InvalidParametersError(
                f"Model {model!r} is not available for {provider}. Must be one of: {', '.join(models)}"
            )
        return route

    def validate(self, parameters: GenerationParameters) -> GenerationParameters:
        """Sanitize parameters and check them against the route's rules.

        Returns:
            Sanitized parameters with the model filled in

        Raises:
            InvalidParametersError: Unknown provider/model, unsupported size or count
        """
        sanitized = parameters.sanitized(self.default_model(parameters.provider))
        if not sanitized.prompt:
            raise InvalidParametersError("Prompt must not be blank.")

        route = self.resolve(sanitized.provider, sanitized.model)

        if (sanitized.width, sanitized.height) not in route.sizes:
            raise InvalidParametersError(f"Size must be one of: {_format_sizes(route.sizes)}")

        if sanitized.count not in route.counts:
            allowed = ", ".join(str(c) for c in sorted(route.counts))
            raise InvalidParametersError(f"Number of images must be one of: {allowed}")

        return sanitized

    def webhook_adapter(self, name: str) -> WebhookAdapter | None:
        return self._webhooks.get(name)


def build_registry(settings: Settings, http: httpx.AsyncClient, retry: RetryPolicy) -> ProviderRegistry:
    """Register every provider integration configured for this deployment."""
    polling = {"budget": settings.poll_budget_seconds}

    dalle = DalleAdapter(http, retry, api_key=settings.openai_api_key, base_url=settings.openai_api_url)
    stable_horde = StableHordeAdapter(
        http,
        retry,
        api_key=settings.stable_horde_api_key,
        base_url=settings.stable_horde_api_url,
        min_wait=max(settings.poll_min_wait_seconds, STABLE_HORDE_MIN_WAIT),
        max_wait=max(settings.poll_max_wait_seconds, STABLE_HORDE_MAX_WAIT),
        **polling,
    )
    replicate = ReplicateAdapter(
        http,
        retry,
        api_token=settings.replicate_api_token,
        min_wait=REPLICATE_POLL_INTERVAL,
        max_wait=REPLICATE_POLL_INTERVAL,
        **polling,
    )
    modal = ModalAdapter(
        http, retry, endpoint_url=settings.modal_openjourney_url, secret=settings.modal_webhook_secret
    )

    registry = ProviderRegistry()
    registry.register("dalle", "dalle", dalle, DALLE_SIZES, range(1, 9), default=True)
    registry.register(
        "stable_horde", "stable_diffusion_1_5", stable_horde, STABLE_HORDE_SIZES, range(1, 9), default=True
    )
    registry.register("mist", "stable_diffusion_1_5", replicate, MIST_SIZES, range(1, 5), default=True)
    registry.register("mist", "stable_diffusion_2_1", replicate, MIST_SIZES, range(1, 5))
    registry.register("mist", "openjourney", modal, MIST_SIZES, (1, 4))
    return registry
