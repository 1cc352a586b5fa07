from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List

from infralayer.config.settings import Settings
from infralayer.core.errors import ConfigurationError
from infralayer.providers.base import ResourceProvider

ProviderFactory = Callable[[Settings], ResourceProvider]


@dataclass(frozen=True)
class ProviderSpec:
    """A resource provider selectable by name (``INFRALAYER_PROVIDER``)."""

    name: str
    factory: ProviderFactory
    description: str = ""


class ProviderRegistry:
    """Maps provider names to factories building them from settings."""

    def __init__(self) -> None:
        self._providers: Dict[str, ProviderSpec] = {}

    def register(self, name: str, factory: ProviderFactory, *, description: str = "") -> None:
        if not name:
            raise ValueError("Provider name is required")
        self._providers[name] = ProviderSpec(name=name, factory=factory, description=description)

    def get(self, name: str) -> ProviderSpec:
        spec = self._providers.get(name)
        if spec is None:
            available = ", ".join(sorted(self._providers)) or "none"
            raise ConfigurationError(
                f"Unknown provider '{name}' (available: {available})",
                {"provider": name},
            )
        return spec

    def create(self, name: str, settings: Settings) -> ResourceProvider:
        return self.get(name).factory(settings)

    def list(self) -> List[ProviderSpec]:
        return sorted(self._providers.values(), key=lambda spec: spec.name)


provider_registry = ProviderRegistry()


def register_provider(name: str, factory: ProviderFactory, *, description: str = "") -> None:
    provider_registry.register(name, factory, description=description)


def create_provider(name: str, settings: Settings) -> ResourceProvider:
    return provider_registry.create(name, settings)


def list_providers() -> List[ProviderSpec]:
    return provider_registry.list()
