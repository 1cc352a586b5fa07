"""
InfraLayer configuration.

Pydantic-based settings read from ``INFRALAYER_*`` environment variables and
an optional ``.env`` file.
"""

from infralayer.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
