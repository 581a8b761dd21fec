"""Tests for the Backblaze B2 storage client.

Focus areas:
- Authorization token cached and shared across calls
- 401 invalidates the token and is retryable
- Status classification for upload and delete
"""

import asyncio

import httpx
import pytest

from mist.services.exceptions import (
    PermanentError,
    StorageAuthError,
    StorageTransientError,
)
from mist.services.storage import BackblazeClient

AUTHORIZE_URL = "https://b2.test/b2api/v2/b2_authorize_account"


class B2Stub:
    """Minimal B2 API double recording the calls it receives."""

    def __init__(self):
        self.authorizations = 0
        self.upload_status = 200
        self.delete_response = httpx.Response(200, json={"fileId": "f-1"})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("b2_authorize_account"):
            self.authorizations += 1
            return httpx.Response(
                200,
                json={
                    "authorizationToken": f"token-{self.authorizations}",
                    "apiUrl": "https://api.b2.test",
                    "downloadUrl": "https://f000.b2.test",
                },
            )
        if path.endswith("b2_get_upload_url"):
            return httpx.Response(
                200, json={"uploadUrl": "https://pod.b2.test/upload", "authorizationToken": "upload-token"}
            )
        if path == "/upload":
            if self.upload_status != 200:
                return httpx.Response(self.upload_status, text="upload failed")
            return httpx.Response(200, json={"fileId": "f-1", "fileName": "media/u/1"})
        if path.endswith("b2_delete_file_version"):
            return self.delete_response
        return httpx.Response(500)


def make_client(stub: B2Stub, clock=None) -> BackblazeClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    kwargs = {"clock": clock} if clock else {}
    return BackblazeClient(http, "key-id", "app-key", "bucket-1", authorize_url=AUTHORIZE_URL, **kwargs)


@pytest.mark.asyncio
async def test_upload_returns_download_url():
    stub = B2Stub()
    client = make_client(stub)

    stored = await client.upload(b"png-bytes", "image/png", "media/u/1")

    assert stored.file_id == "f-1"
    assert stored.url == "https://f000.b2.test/b2api/v1/b2_download_file_by_id?fileId=f-1"
    upload = stub.requests[-1]
    assert upload.headers["Authorization"] == "upload-token"
    assert upload.headers["X-Bz-File-Name"] == "media/u/1"
    assert upload.headers["Content-Type"] == "image/png"


@pytest.mark.asyncio
async def test_token_fetched_once_for_concurrent_uploads():
    stub = B2Stub()
    client = make_client(stub)

    await asyncio.gather(*(client.upload(b"x", "image/png", f"media/u/{i}") for i in range(5)))

    assert stub.authorizations == 1


@pytest.mark.asyncio
async def test_expired_token_is_refreshed():
    stub = B2Stub()
    now = [0.0]
    client = make_client(stub, clock=lambda: now[0])

    await client.upload(b"x", "image/png", "media/u/1")
    now[0] = 24 * 60 * 60
    await client.upload(b"x", "image/png", "media/u/2")

    assert stub.authorizations == 2


@pytest.mark.asyncio
async def test_unauthorized_upload_invalidates_token():
    stub = B2Stub()
    stub.upload_status = 401
    client = make_client(stub)

    with pytest.raises(StorageTransientError):
        await client.upload(b"x", "image/png", "media/u/1")

    stub.upload_status = 200
    await client.upload(b"x", "image/png", "media/u/1")

    assert stub.authorizations == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error",
    [(503, StorageTransientError), (429, StorageTransientError), (403, StorageAuthError), (400, PermanentError)],
)
async def test_upload_status_classification(status, error):
    stub = B2Stub()
    stub.upload_status = status

    with pytest.raises(error):
        await make_client(stub).upload(b"x", "image/png", "media/u/1")


@pytest.mark.asyncio
async def test_bad_credentials_raise_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"code": "bad_auth_token"})

    client = BackblazeClient(
        httpx.AsyncClient(transport=httpx.MockTransport(handler)), "k", "a", "b", authorize_url=AUTHORIZE_URL
    )

    with pytest.raises(StorageAuthError):
        await client.upload(b"x", "image/png", "media/u/1")


@pytest.mark.asyncio
async def test_delete_missing_file_returns_false():
    stub = B2Stub()
    stub.delete_response = httpx.Response(400, json={"code": "file_not_present"})
    client = make_client(stub)

    assert await client.delete("media/u/1", "f-1") is False


@pytest.mark.asyncio
async def test_delete_existing_file():
    assert await make_client(B2Stub()).delete("media/u/1", "f-1") is True
