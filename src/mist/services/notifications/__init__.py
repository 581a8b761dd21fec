"""Push notification delivery."""

from mist.services.notifications.fcm_client import FcmClient

__all__ = ["FcmClient"]
