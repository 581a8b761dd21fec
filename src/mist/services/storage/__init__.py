"""Blob storage for generated media."""

from mist.services.storage.backblaze_client import BackblazeClient, StoredObject

__all__ = ["BackblazeClient", "StoredObject"]
