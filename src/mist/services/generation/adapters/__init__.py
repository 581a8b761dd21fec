"""Provider adapters, one module per provider integration."""

from mist.services.generation.adapters.base import (
    GeneratedImage,
    InteractionStyle,
    PollingAdapter,
    PollStatus,
    ProviderAdapter,
    SynchronousAdapter,
    WebhookAdapter,
)
from mist.services.generation.adapters.dalle import DalleAdapter
from mist.services.generation.adapters.modal import ModalAdapter
from mist.services.generation.adapters.replicate import ReplicateAdapter
from mist.services.generation.adapters.stable_horde import StableHordeAdapter

__all__ = [
    "GeneratedImage",
    "InteractionStyle",
    "PollStatus",
    "ProviderAdapter",
    "SynchronousAdapter",
    "PollingAdapter",
    "WebhookAdapter",
    "DalleAdapter",
    "StableHordeAdapter",
    "ReplicateAdapter",
    "ModalAdapter",
]
