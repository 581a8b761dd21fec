"""Backblaze B2 client for storing generated images.

The account authorization token is cached on the client instance and refreshed
lazily: readers check expiry without locking, and only one coroutine at a time
re-authorizes under ``asyncio.Lock`` (double-checked after acquiring it).
"""

import asyncio
import hashlib
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx
import structlog

from mist.services.exceptions import (
    PermanentError,
    StorageAuthError,
    StorageNotFoundError,
    StorageTransientError,
)

logger = structlog.get_logger(__name__)

AUTHORIZE_URL = "https://api.backblazeb2.com/b2api/v2/b2_authorize_account"

# B2 account tokens are valid for 24 hours
TOKEN_TTL_SECONDS = 23 * 60 * 60


@dataclass(frozen=True)
class StoredObject:
    """Location of an uploaded file."""

    file_id: str
    file_name: str
    url: str
    mime_type: str


@dataclass(frozen=True)
class _Authorization:
    token: str
    api_url: str
    download_url: str
    expires_at: float


class BackblazeClient:
    """Upload and delete files in one B2 bucket."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        key_id: str,
        application_key: str,
        bucket_id: str,
        clock: Callable[[], float] = time.monotonic,
        authorize_url: str = AUTHORIZE_URL,
    ):
        """Initialize the client.

        Args:
            http: Shared HTTP client
            key_id: B2 application key id (BACKBLAZE_KEY_ID)
            application_key: B2 application key (BACKBLAZE_APPLICATION_KEY)
            bucket_id: Target bucket (BACKBLAZE_BUCKET_ID)
            clock: Monotonic clock used for token expiry
            authorize_url: Account authorization endpoint
        """
        self._http = http
        self._key_id = key_id
        self._application_key = application_key
        self._bucket_id = bucket_id
        self._clock = clock
        self._authorize_url = authorize_url
        self._auth: Optional[_Authorization] = None
        self._lock = asyncio.Lock()

    def _valid(self, auth: Optional[_Authorization]) -> bool:
        return auth is not None and auth.expires_at > self._clock()

    async def _authorization(self) -> _Authorization:
        auth = self._auth
        if self._valid(auth):
            return auth  # type: ignore[return-value]

        async with self._lock:
            auth = self._auth
            if self._valid(auth):
                return auth  # type: ignore[return-value]
            self._auth = await self._authorize()
            return self._auth

    def invalidate(self) -> None:
        """Drop the cached token so the next call re-authorizes."""
        self._auth = None

    async def _authorize(self) -> _Authorization:
        response = await self._send(
            "GET",
            self._authorize_url,
            auth=(self._key_id, self._application_key),
        )
        if response.status_code in (401, 403):
            raise StorageAuthError(
                "Unauthorized: Invalid B2 application key. "
                "Check BACKBLAZE_KEY_ID and BACKBLAZE_APPLICATION_KEY in .env file."
            )
        self._raise_for_status(response)

        body = response.json()
        logger.info("storage.authorized", api_url=body["apiUrl"])
        return _Authorization(
            token=body["authorizationToken"],
            api_url=body["apiUrl"],
            download_url=body["downloadUrl"],
            expires_at=self._clock() + TOKEN_TTL_SECONDS,
        )

    async def upload(self, data: bytes, mime_type: str, path_hint: str) -> StoredObject:
        """Upload bytes under ``path_hint`` and return where they landed.

        Args:
            data: File contents
            mime_type: Content type (e.g., "image/png")
            path_hint: Object name in the bucket (e.g., "media/<user_id>/<media_id>")

        Returns:
            StoredObject with the B2 file id and public download URL

        Raises:
            StorageTransientError: Network error, 5xx, or expired token (retry)
            StorageAuthError: Invalid credentials
            PermanentError: Rejected upload (400)
        """
        auth = await self._authorization()

        upload_target = await self._post_api(
            auth, "b2_get_upload_url", {"bucketId": self._bucket_id}
        )

        response = await self._send(
            "POST",
            upload_target["uploadUrl"],
            headers={
                "Authorization": upload_target["authorizationToken"],
                "X-Bz-File-Name": quote(path_hint),
                "Content-Type": mime_type,
                "X-Bz-Content-Sha1": hashlib.sha1(data).hexdigest(),
            },
            content=data,
        )
        self._raise_for_status(response)
        body = response.json()

        file_id = body["fileId"]
        logger.info("storage.uploaded", file_id=file_id, size=len(data), mime_type=mime_type)
        return StoredObject(
            file_id=file_id,
            file_name=body.get("fileName", path_hint),
            url=f"{auth.download_url}/b2api/v1/b2_download_file_by_id?fileId={file_id}",
            mime_type=mime_type,
        )

    async def delete(self, file_name: str, file_id: str) -> bool:
        """Delete one file version.

        Returns:
            True if deleted, False if the file was not found
        """
        auth = await self._authorization()
        try:
            await self._post_api(
                auth, "b2_delete_file_version", {"fileName": file_name, "fileId": file_id}
            )
        except StorageNotFoundError:
            logger.info("storage.delete_not_found", file_id=file_id)
            return False

        logger.info("storage.deleted", file_id=file_id)
        return True

    async def _post_api(self, auth: _Authorization, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._send(
            "POST",
            f"{auth.api_url}/b2api/v2/{operation}",
            headers={"Authorization": auth.token},
            json=payload,
        )
        self._raise_for_status(response)
        return response.json()

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise StorageTransientError(f"Request timeout: {e}") from e
        except httpx.HTTPError as e:
            raise StorageTransientError(f"Network error: {e}") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        if status == 401:
            # Expired or revoked token: force re-authorization on the next attempt
            self.invalidate()
            raise StorageTransientError(f"Authorization expired: {response.text}")
        elif status == 403:
            raise StorageAuthError(f"Forbidden: {response.text}")
        elif status == 404 or (status == 400 and "file_not_present" in response.text):
            raise StorageNotFoundError(f"File not found: {response.text}")
        elif status in (408, 429) or status >= 500:
            raise StorageTransientError(f"Service unavailable ({status}): {response.text}")

        raise PermanentError(f"Bad request ({status}): {response.text}")
