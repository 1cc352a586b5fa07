from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable
from urllib.parse import quote

import structlog

from infralayer.clients.base import BaseHTTPClient, ResourceNotFound
from infralayer.config.settings import Settings
from infralayer.core.errors import (
    ConfigurationError,
    ProviderError,
    ProviderFatalError,
    ProviderTransientError,
)
from infralayer.providers.base import ObservedResource, ProviderHealth
from infralayer.providers.registry import register_provider

logger = structlog.get_logger()

TERMINAL_STATES = {"Succeeded", "Failed", "Canceled"}


class HttpProvider:
    """Generic REST control plane.

    ``GET  {base}/resources/{type}/{name}`` reads a resource (404 = absent),
    ``PUT`` on the same path creates or updates it. A response whose
    ``provisioningState`` is not terminal is polled until it is.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        timeout: float = 30.0,
        poll_interval: float = 2.0,
        poll_timeout: float = 1800.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = BaseHTTPClient(base_url, timeout=timeout, token=token)
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout
        self._sleep = sleep

    @staticmethod
    def _path(resource_type: str, name: str) -> str:
        return f"/resources/{quote(resource_type, safe='')}/{quote(name, safe='')}"

    async def health_check(self) -> ProviderHealth:
        try:
            await self._client.get("/health")
            return ProviderHealth(status="healthy")
        except (ProviderError, ResourceNotFound) as exc:
            return ProviderHealth(status="unreachable", details=str(exc))

    async def get(self, resource_type: str, name: str) -> ObservedResource:
        try:
            body = await self._client.get(self._path(resource_type, name))
        except ResourceNotFound:
            return ObservedResource.absent()
        return ObservedResource(exists=True, properties=_observed(body))

    async def create_or_update(
        self,
        resource_type: str,
        name: str,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        path = self._path(resource_type, name)
        try:
            body = await self._client.put(path, json={"properties": properties})
        except ResourceNotFound as exc:
            raise ProviderFatalError(f"Unknown resource type '{resource_type}'") from exc

        deadline = time.monotonic() + self._poll_timeout
        while _state(body) not in TERMINAL_STATES:
            if time.monotonic() >= deadline:
                raise ProviderTransientError(
                    f"Timed out waiting for {resource_type}/{name}",
                    {"state": _state(body)},
                )
            logger.debug(
                "http_poll",
                resource=f"{resource_type}/{name}",
                state=_state(body),
            )
            await self._sleep(self._poll_interval)
            try:
                body = await self._client.get(path)
            except ResourceNotFound:
                continue

        state = _state(body)
        if state != "Succeeded":
            error = body.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderFatalError(
                f"Provisioning {resource_type}/{name} ended in state {state}: {message or 'no details'}",
                {"state": state},
            )
        return _observed(body)


def _state(body: dict[str, Any]) -> str:
    state = body.get("provisioningState")
    if state is None and isinstance(body.get("properties"), dict):
        state = body["properties"].get("provisioningState")
    # Responses without a state are synchronous
    return state or "Succeeded"


def _observed(body: dict[str, Any]) -> dict[str, Any]:
    properties = body.get("properties")
    observed = dict(properties) if isinstance(properties, dict) else {}
    if "id" in body:
        observed["id"] = body["id"]
    return observed


def _factory(settings: Settings) -> HttpProvider:
    if not settings.http_base_url:
        raise ConfigurationError(
            "The http provider requires INFRALAYER_HTTP_BASE_URL",
            {"provider": HttpProvider.name},
        )
    return HttpProvider(
        settings.http_base_url,
        settings.http_token,
        timeout=settings.http_timeout,
        poll_interval=settings.poll_interval,
        poll_timeout=settings.poll_timeout,
    )


register_provider(
    HttpProvider.name,
    _factory,
    description="Generic REST control plane with long-running operation polling",
)

__all__ = ["HttpProvider"]
