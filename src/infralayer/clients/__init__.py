"""HTTP clients for remote control planes."""

from infralayer.clients.base import BaseHTTPClient, ResourceNotFound, is_retryable_status

__all__ = ["BaseHTTPClient", "ResourceNotFound", "is_retryable_status"]
