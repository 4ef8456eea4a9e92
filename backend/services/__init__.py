"""
Services module for external integrations (AI vendors, media storage)
"""

from .replicate_client import ReplicateClient, get_replicate_client

__all__ = ["ReplicateClient", "get_replicate_client"]
