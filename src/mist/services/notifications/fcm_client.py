"""Firebase Cloud Messaging client for user push notifications."""

from uuid import UUID

import httpx
import structlog

from mist.services.exceptions import PermanentError, TransientError

logger = structlog.get_logger(__name__)

FCM_SEND_URL = "https://fcm.googleapis.com/fcm/send"


class FcmClient:
    """Sends pushes to the per-user topic ``/topics/user_<id>``.

    An empty server key disables delivery (every send is a logged no-op).
    """

    def __init__(self, http: httpx.AsyncClient, server_key: str, send_url: str = FCM_SEND_URL):
        self._http = http
        self._server_key = server_key
        self._send_url = send_url

    @property
    def enabled(self) -> bool:
        return bool(self._server_key)

    async def send_push(self, user_id: UUID, title: str, body: str, deep_link: str) -> bool:
        """Send one notification to every device subscribed for ``user_id``.

        Returns:
            True if FCM accepted the message, False if delivery is disabled

        Raises:
            TransientError: Network error or 5xx
            PermanentError: Rejected by FCM (bad key, bad payload)
        """
        if not self.enabled:
            logger.debug("push.disabled", user_id=str(user_id))
            return False

        payload = {
            "to": f"/topics/user_{user_id}",
            "notification": {"title": title, "body": body},
            "data": {"link": deep_link},
        }

        try:
            response = await self._http.post(
                self._send_url,
                headers={"Authorization": f"key={self._server_key}"},
                json=payload,
            )
        except httpx.HTTPError as e:
            raise TransientError(f"FCM network error: {e}") from e

        if response.status_code >= 500:
            raise TransientError(f"FCM unavailable ({response.status_code})")
        if response.status_code >= 400:
            raise PermanentError(f"FCM rejected push ({response.status_code}): {response.text}")

        logger.info("push.sent", user_id=str(user_id))
        return True
