"""
In-memory resource provider.

Simulates a control plane: stores declared properties, stamps a resource id
and generates runtime attributes (hostnames, endpoints) the way a cloud
would. Failures can be scripted per resource for tests and demos.
"""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict, deque
from typing import Any, Iterable

import structlog

from infralayer.config.settings import Settings
from infralayer.providers.base import ObservedResource, ProviderHealth
from infralayer.providers.registry import register_provider

logger = structlog.get_logger()

Key = tuple[str, str]


def deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge ``overlay`` into a copy of ``base``; overlay wins on conflicts."""
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def runtime_attributes(resource_type: str, name: str, resource_group: str) -> dict[str, Any]:
    """Attributes the control plane generates when a resource is provisioned."""
    kind = resource_type.lower()
    if "container" in kind or kind.endswith(".app"):
        return {"ingress": {"fqdn": f"{name}.{resource_group}.apps.example.net"}}
    if "postgres" in kind or "database" in kind:
        return {"fqdn": f"{name}.postgres.example.net"}
    if "storage" in kind:
        return {"endpoint": f"https://{name}.blob.example.net/"}
    return {}


class InMemoryProvider:
    """Dict-backed provider for local development and tests."""

    name = "memory"

    def __init__(
        self,
        resource_group: str = "default",
        *,
        latency: float = 0.0,
        resources: dict[Key, dict[str, Any]] | None = None,
    ) -> None:
        self.resource_group = resource_group
        self.latency = latency
        self._resources: dict[Key, dict[str, Any]] = dict(resources or {})
        self._failures: dict[Key, deque[Exception]] = defaultdict(deque)
        self.calls: list[tuple[str, str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def resource_id(self, resource_type: str, name: str) -> str:
        return f"/resourceGroups/{self.resource_group}/providers/{resource_type}/{name}"

    def seed(self, resource_type: str, name: str, properties: dict[str, Any]) -> None:
        """Place a resource in remote state without going through apply."""
        observed = {"id": self.resource_id(resource_type, name)}
        self._resources[(resource_type, name)] = deep_merge(observed, properties)

    def inject_failure(
        self,
        resource_type: str,
        name: str,
        error: Exception | Iterable[Exception],
        times: int = 1,
    ) -> None:
        """Raise ``error`` on the next ``times`` create_or_update calls."""
        errors = [error] * times if isinstance(error, Exception) else list(error)
        self._failures[(resource_type, name)].extend(errors)

    def calls_for(self, operation: str) -> list[str]:
        return [f"{t}/{n}" for op, t, n in self.calls if op == operation]

    async def get(self, resource_type: str, name: str) -> ObservedResource:
        self.calls.append(("get", resource_type, name))
        stored = self._resources.get((resource_type, name))
        if stored is None:
            return ObservedResource.absent()
        return ObservedResource(exists=True, properties=copy.deepcopy(stored))

    async def create_or_update(
        self,
        resource_type: str,
        name: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        key = (resource_type, name)
        self.calls.append(("create_or_update", resource_type, name))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            if self._failures[key]:
                raise self._failures[key].popleft()

            current = self._resources.get(key, {})
            generated = runtime_attributes(resource_type, name, self.resource_group)
            observed = deep_merge(generated, deep_merge(current, properties))
            observed["id"] = self.resource_id(resource_type, name)
            observed["provisioningState"] = "Succeeded"
            self._resources[key] = observed
            self._persist()
            logger.debug("memory_resource_written", resource=f"{resource_type}/{name}")
            return copy.deepcopy(observed)
        finally:
            self.in_flight -= 1

    async def health_check(self) -> ProviderHealth:
        return ProviderHealth(status="healthy", details=f"{len(self._resources)} resources")

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {f"{t}/{n}": copy.deepcopy(v) for (t, n), v in self._resources.items()}

    def _persist(self) -> None:
        """Hook for durable subclasses."""


def _factory(settings: Settings) -> InMemoryProvider:
    return InMemoryProvider(settings.resource_group)


register_provider(
    InMemoryProvider.name,
    _factory,
    description="Ephemeral in-process control plane",
)
