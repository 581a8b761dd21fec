"""Tests for provider adapters.

Focus areas:
- Synchronous DALL-E call and payload decoding
- Polling loop: ETA clamping, fault, elapsed-time budget
- Stable Horde create/check/status flow
- Replicate SDK adapter and error classification
- Modal webhook dispatch, secret check and completion parsing
"""

import base64
import json
from types import SimpleNamespace
from typing import Optional
from unittest.mock import MagicMock
from uuid import uuid4

import httpx
import pytest

from mist.services.exceptions import (
    GenerationTimeoutError,
    ProviderFatalError,
    ProviderTransientError,
)
from mist.services.generation.adapters import (
    DalleAdapter,
    ModalAdapter,
    ReplicateAdapter,
    StableHordeAdapter,
)
from mist.services.generation.adapters.base import GeneratedImage, PollingAdapter, PollStatus
from mist.services.generation.adapters.replicate import classify_error, parse_seed
from mist.services.retry import RetryPolicy
from tests.helpers import make_parameters

NO_WAIT = RetryPolicy(attempts=3, interval=0)


def mock_http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.waits: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.waits.append(seconds)
        self.now += seconds


class ScriptedPollingAdapter(PollingAdapter):
    provider = "scripted"

    def __init__(self, statuses: list[PollStatus], clock: FakeClock, create_eta: Optional[float] = None, **kwargs):
        super().__init__(None, NO_WAIT, sleep=clock.sleep, clock=clock, **kwargs)  # type: ignore[arg-type]
        self.statuses = list(statuses)
        self.create_eta = create_eta

    async def create(self, parameters):
        return "job-1", self.create_eta

    async def poll(self, job_id):
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]


# =============================================================================
# DALL-E
# =============================================================================


@pytest.mark.asyncio
async def test_dalle_decodes_base64_images():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(
            200,
            json={
                "data": [
                    {"b64_json": base64.b64encode(b"first").decode()},
                    {"b64_json": "@@not-base64@@"},
                    {"url": "https://ignored"},
                ]
            },
        )

    async with mock_http(handler) as http:
        adapter = DalleAdapter(http, NO_WAIT, api_key="sk-test")
        images = await adapter.generate(make_parameters(count=3, width=256, height=256))

    assert seen["body"] == {"prompt": "a cat", "n": 3, "size": "256x256", "response_format": "b64_json"}
    assert seen["auth"] == "Bearer sk-test"
    assert [image.data for image in images] == [b"first"]


@pytest.mark.asyncio
async def test_dalle_retries_server_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503, text="overloaded")
        return httpx.Response(200, json={"data": [{"b64_json": base64.b64encode(b"ok").decode()}]})

    async with mock_http(handler) as http:
        images = await DalleAdapter(http, NO_WAIT, api_key="sk").generate(make_parameters(count=1))

    assert len(calls) == 2
    assert images[0].data == b"ok"


@pytest.mark.asyncio
async def test_dalle_client_error_is_fatal_without_retry():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, json={"error": {"message": "safety system"}})

    async with mock_http(handler) as http:
        with pytest.raises(ProviderFatalError):
            await DalleAdapter(http, NO_WAIT, api_key="sk").generate(make_parameters())

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_dalle_network_error_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with mock_http(handler) as http:
        with pytest.raises(ProviderTransientError):
            await DalleAdapter(http, NO_WAIT, api_key="sk").generate(make_parameters())


# =============================================================================
# Polling loop
# =============================================================================


@pytest.mark.asyncio
async def test_polling_clamps_eta_to_window():
    clock = FakeClock()
    adapter = ScriptedPollingAdapter(
        [
            PollStatus(done=False, eta=1),
            PollStatus(done=False, eta=500),
            PollStatus(done=False, eta=None),
            PollStatus(done=True, images=[GeneratedImage(url="https://img/1")]),
        ],
        clock,
        create_eta=30,
        min_wait=10,
        max_wait=120,
    )

    images = await adapter.generate(make_parameters())

    assert clock.waits == [30, 10, 120, 10]
    assert [image.url for image in images] == ["https://img/1"]


@pytest.mark.asyncio
async def test_polling_fault_is_fatal():
    clock = FakeClock()
    adapter = ScriptedPollingAdapter([PollStatus(done=False, faulted=True, detail="worker died")], clock)

    with pytest.raises(ProviderFatalError, match="worker died"):
        await adapter.generate(make_parameters())


@pytest.mark.asyncio
async def test_polling_gives_up_after_budget():
    clock = FakeClock()
    adapter = ScriptedPollingAdapter(
        [PollStatus(done=False, eta=60)], clock, create_eta=60, max_wait=60, budget=600
    )

    with pytest.raises(GenerationTimeoutError):
        await adapter.generate(make_parameters())

    assert clock.now == 600
    assert len(clock.waits) == 10


def test_wait_for_defaults_to_min_wait():
    adapter = ScriptedPollingAdapter([PollStatus(done=True)], FakeClock(), min_wait=5, max_wait=50)

    assert adapter.wait_for(None) == 5
    assert adapter.wait_for(7.5) == 7.5


# =============================================================================
# Stable Horde
# =============================================================================


@pytest.mark.asyncio
async def test_stable_horde_create_poll_collect():
    clock = FakeClock()
    requests: list[httpx.Request] = []
    checks = iter(
        [
            {"done": False, "faulted": False, "is_possible": True, "wait_time": 25},
            {"done": True, "faulted": False, "is_possible": True, "wait_time": 0},
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        path = request.url.path
        if path.endswith("/generate/async"):
            return httpx.Response(202, json={"id": "horde-1"})
        if "/generate/check/" in path:
            return httpx.Response(200, json=next(checks))
        return httpx.Response(
            200,
            json={
                "generations": [
                    {"img": base64.b64encode(b"webp-bytes").decode(), "seed": 42},
                    {"img": "https://horde.cdn/2.webp", "seed": "7"},
                ]
            },
        )

    async with mock_http(handler) as http:
        adapter = StableHordeAdapter(
            http, NO_WAIT, api_key="horde-key", min_wait=10, max_wait=120, sleep=clock.sleep, clock=clock
        )
        images = await adapter.generate(
            make_parameters(provider="stable_horde", model="stable_diffusion_1_5", negative_prompt="blurry", cfg_scale=9)
        )

    payload = json.loads(requests[0].content)
    assert payload["prompt"] == "a cat ### blurry"
    assert payload["params"]["cfg_scale"] == 9
    assert payload["params"]["n"] == 2
    assert requests[0].headers["apikey"] == "horde-key"
    assert clock.waits == [10, 25]
    assert images[0].data == b"webp-bytes"
    assert images[0].seed == "42"
    assert images[1].url == "https://horde.cdn/2.webp"
    assert all(image.mime_type == "image/webp" for image in images)


@pytest.mark.asyncio
async def test_stable_horde_impossible_request_faults():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/generate/async"):
            return httpx.Response(202, json={"id": "horde-2"})
        return httpx.Response(200, json={"done": False, "faulted": False, "is_possible": False})

    clock = FakeClock()
    async with mock_http(handler) as http:
        adapter = StableHordeAdapter(http, NO_WAIT, api_key="k", sleep=clock.sleep, clock=clock)
        with pytest.raises(ProviderFatalError):
            await adapter.generate(make_parameters(provider="stable_horde", model="stable_diffusion_1_5"))


@pytest.mark.asyncio
async def test_stable_horde_rejected_job_without_id():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"message": "no workers"})

    async with mock_http(handler) as http:
        adapter = StableHordeAdapter(http, NO_WAIT, api_key="k")
        with pytest.raises(ProviderFatalError, match="no workers"):
            await adapter.create(make_parameters(provider="stable_horde"))


# =============================================================================
# Replicate
# =============================================================================


def _prediction(status: str, output=None, logs: str = "", error=None) -> SimpleNamespace:
    return SimpleNamespace(id="pred-1", status=status, output=output, logs=logs, error=error)


@pytest.mark.asyncio
async def test_replicate_polls_prediction_until_succeeded():
    clock = FakeClock()
    client = MagicMock()
    client.predictions.create.return_value = _prediction("starting")
    client.predictions.get.side_effect = [
        _prediction("processing"),
        _prediction("succeeded", output=["https://replicate.delivery/a.png"], logs="Using seed: 1234\nstep 1"),
    ]
    adapter = ReplicateAdapter(None, NO_WAIT, api_token="r8", client=client, min_wait=5, max_wait=5, sleep=clock.sleep, clock=clock)

    images = await adapter.generate(make_parameters(provider="mist", model="stable_diffusion_2_1", count=1))

    kwargs = client.predictions.create.call_args.kwargs
    assert kwargs["input"]["num_outputs"] == 1
    assert kwargs["input"]["guidance_scale"] == 8
    assert "negative_prompt" not in kwargs["input"]
    assert images == [GeneratedImage(url="https://replicate.delivery/a.png", seed="1234")]
    assert clock.waits == [5, 5]


@pytest.mark.asyncio
async def test_replicate_failed_prediction_faults():
    client = MagicMock()
    client.predictions.create.return_value = _prediction("starting")
    client.predictions.get.return_value = _prediction("failed", error="CUDA out of memory")
    clock = FakeClock()
    adapter = ReplicateAdapter(None, NO_WAIT, api_token="r8", client=client, sleep=clock.sleep, clock=clock)

    with pytest.raises(ProviderFatalError, match="CUDA out of memory"):
        await adapter.generate(make_parameters(provider="mist", model="stable_diffusion_1_5"))


@pytest.mark.asyncio
async def test_replicate_unknown_model_is_fatal():
    adapter = ReplicateAdapter(None, NO_WAIT, api_token="r8", client=MagicMock())

    with pytest.raises(ProviderFatalError):
        await adapter.create(make_parameters(provider="mist", model="mystery"))


@pytest.mark.asyncio
async def test_replicate_connection_error_is_transient():
    client = MagicMock()
    client.predictions.create.side_effect = ConnectionError("reset by peer")
    adapter = ReplicateAdapter(None, RetryPolicy(attempts=1, interval=0), api_token="r8", client=client)

    with pytest.raises(ProviderTransientError):
        await adapter.create(make_parameters(provider="mist", model="stable_diffusion_1_5"))


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Request timeout after 30s", ProviderTransientError),
        ("HTTP 429: rate limit", ProviderTransientError),
        ("503 Service Unavailable", ProviderTransientError),
        ("401 Unauthorized", ProviderFatalError),
        ("NSFW content detected", ProviderFatalError),
        ("something odd", ProviderFatalError),
    ],
)
def test_classify_error(message, expected):
    assert isinstance(classify_error(Exception(message)), expected)


def test_classify_connection_error_is_transient():
    assert isinstance(classify_error(ConnectionError("reset")), ProviderTransientError)


@pytest.mark.parametrize(
    "logs, expected",
    [
        ("Using seed: 98765\nrest", "98765"),
        ("warming up\nUsing seed: 1", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_seed_reads_first_line_only(logs, expected):
    assert parse_seed(logs) == expected


# =============================================================================
# Modal
# =============================================================================


@pytest.mark.asyncio
async def test_modal_dispatch_sends_callback():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"accepted": True})

    request_id = uuid4()
    async with mock_http(handler) as http:
        adapter = ModalAdapter(http, NO_WAIT, endpoint_url="https://modal.run/openjourney", secret="s3cret")
        await adapter.dispatch(
            make_parameters(provider="mist", model="openjourney", count=4),
            request_id,
            "https://api.mist.example/webhooks/modal",
        )

    assert seen["auth"] == "Bearer s3cret"
    assert seen["body"]["request_id"] == str(request_id)
    assert seen["body"]["number"] == 4
    assert seen["body"]["callback_url"] == "https://api.mist.example/webhooks/modal"


def test_modal_verify_secret():
    adapter = ModalAdapter(None, NO_WAIT, endpoint_url="https://modal.run", secret="s3cret")  # type: ignore[arg-type]

    assert adapter.verify_secret("s3cret")
    assert not adapter.verify_secret("wrong")
    assert not adapter.verify_secret("")
    assert not ModalAdapter(None, NO_WAIT, endpoint_url="x", secret="").verify_secret("")  # type: ignore[arg-type]


def test_modal_parse_completion_skips_entries_without_url():
    adapter = ModalAdapter(None, NO_WAIT, endpoint_url="https://modal.run", secret="s")  # type: ignore[arg-type]

    images = adapter.parse_completion([{"url": "https://modal/1.png", "seed": 5}, {"seed": 6}])

    assert images == [GeneratedImage(url="https://modal/1.png", seed="5")]
