from __future__ import annotations

from typing import Any

import httpx
import structlog

from infralayer.core.errors import ProviderFatalError, ProviderTransientError

logger = structlog.get_logger()


class ResourceNotFound(Exception):
    """The control plane reported 404 for the requested path."""


def is_retryable_status(status_code: int) -> bool:
    """Determine if HTTP status code is retryable."""
    return status_code in (408, 429, 500, 502, 503, 504)


class BaseHTTPClient:
    """Base HTTP client mapping failures onto the provider error taxonomy.

    Retries are owned by the apply executor's retry policy, so this client
    only classifies: retryable statuses and network errors become
    ``ProviderTransientError``, everything else ``ProviderFatalError``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        token: str | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._token = token

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute an HTTP request and classify failures."""
        url = f"{self._base_url}{path}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers(),
                )
        except httpx.TransportError as exc:
            logger.warning("http_network_error", method=method, url=url, error=str(exc))
            raise ProviderTransientError(
                f"{method} {url} failed: {exc}", {"url": url}
            ) from exc

        if response.status_code == 404:
            raise ResourceNotFound(url)

        if is_retryable_status(response.status_code):
            logger.warning(
                "http_retryable_error",
                status=response.status_code,
                method=method,
                url=url,
            )
            raise ProviderTransientError(
                f"HTTP {response.status_code}: {response.text}",
                {"status": response.status_code, "url": url},
            )

        if response.is_error:
            logger.error(
                "http_permanent_error",
                status=response.status_code,
                method=method,
                url=url,
            )
            raise ProviderFatalError(
                f"HTTP {response.status_code}: {response.text}",
                {"status": response.status_code, "url": url},
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            logger.error("http_invalid_body", method=method, url=url, status=response.status_code)
            raise ProviderFatalError(
                f"{method} {url} returned a non-JSON body", {"url": url}
            ) from exc

    async def get(self, path: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute GET request."""
        return await self._request("GET", path, params=params)

    async def put(self, path: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
        """Execute PUT request."""
        return await self._request("PUT", path, json=json)
