from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol


@dataclass(frozen=True)
class ObservedResource:
    """Remote state of a resource as reported by the provider."""

    exists: bool
    properties: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def absent(cls) -> "ObservedResource":
        return cls(exists=False)


@dataclass(frozen=True)
class ProviderHealth:
    status: Literal["healthy", "degraded", "unreachable"]
    details: str | None = None


class ResourceProvider(Protocol):
    """Contract for the control plane that owns remote resources.

    Both calls may be long-running; implementations poll until the remote
    operation reaches a terminal state before returning. Failures are
    reported as ``ProviderTransientError`` (retryable) or
    ``ProviderFatalError``.
    """

    name: str

    async def get(self, resource_type: str, name: str) -> ObservedResource:
        ...

    async def create_or_update(
        self,
        resource_type: str,
        name: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        ...

    async def health_check(self) -> ProviderHealth:
        ...
