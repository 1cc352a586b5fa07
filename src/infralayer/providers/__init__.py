"""Provider utilities and built-in registrations."""

from __future__ import annotations

# Import built-in providers for side effects (registration)
from infralayer.providers import http as _http  # noqa: F401
from infralayer.providers import local as _local  # noqa: F401
from infralayer.providers import memory as _memory  # noqa: F401
from infralayer.config.settings import Settings
from infralayer.providers.base import ObservedResource, ProviderHealth, ResourceProvider
from infralayer.providers.http import HttpProvider
from infralayer.providers.local import LocalStateProvider
from infralayer.providers.memory import InMemoryProvider
from infralayer.providers.registry import (
    ProviderSpec,
    create_provider,
    list_providers,
    register_provider,
)


def provider_from_settings(settings: Settings, name: str | None = None) -> ResourceProvider:
    """Instantiate the configured provider (``settings.provider`` unless ``name`` is given)."""
    return create_provider(name or settings.provider, settings)


__all__ = [
    "HttpProvider",
    "InMemoryProvider",
    "LocalStateProvider",
    "ObservedResource",
    "ProviderHealth",
    "ProviderSpec",
    "ResourceProvider",
    "create_provider",
    "list_providers",
    "provider_from_settings",
    "register_provider",
]
