"""Root test configuration."""

import logging
from typing import Any

import pytest
import structlog

from infralayer.config.settings import get_settings
from infralayer.graph.builder import DependencyGraph, build_graph
from infralayer.logging import clear_secrets
from infralayer.orchestration.retry import RetryPolicy
from infralayer.providers.memory import InMemoryProvider
from infralayer.template.loader import parse_template
from infralayer.template.models import DeploymentContext, Template


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture(autouse=True)
def _isolate_global_state():
    """Secure values and cached settings are process-wide."""
    clear_secrets()
    get_settings.cache_clear()
    yield
    clear_secrets()
    get_settings.cache_clear()


CONTEXT = DeploymentContext(resource_group="rg", location="westeurope", environment="test")


def make_template(
    resources: list[dict[str, Any]],
    *,
    parameters: dict[str, Any] | None = None,
    outputs: dict[str, Any] | None = None,
    values: dict[str, Any] | None = None,
    context: DeploymentContext = CONTEXT,
) -> Template:
    data: dict[str, Any] = {"resources": resources}
    if parameters:
        data["parameters"] = parameters
    if outputs:
        data["outputs"] = outputs
    return parse_template(data, values, context)


def make_graph(resources: list[dict[str, Any]], **kwargs: Any) -> DependencyGraph:
    return build_graph(make_template(resources, **kwargs).resources)


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def retry_policy(sleeper) -> RetryPolicy:
    """Three attempts, 1s/2s backoff, no jitter, no real sleeping."""
    return RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0, jitter=0.0, sleep=sleeper)


@pytest.fixture
def provider() -> InMemoryProvider:
    return InMemoryProvider(resource_group="rg")


VAULTWARDEN_RESOURCES: list[dict[str, Any]] = [
    {
        "type": "network.virtualNetwork",
        "name": "vnet",
        "properties": {"location": "${resourceGroup().location}", "addressSpace": ["10.0.0.0/16"]},
    },
    {
        "type": "database.postgresServer",
        "name": "db",
        "dependsOn": ["network.virtualNetwork/vnet"],
        "properties": {
            "administratorLogin": "${params.dbUser}",
            "administratorPassword": "${params.dbPassword}",
        },
    },
    {
        "type": "storage.account",
        "name": "files",
        "properties": {"sku": "Standard_LRS"},
    },
    {
        "type": "container.app",
        "name": "web",
        "properties": {
            "image": "vaultwarden/server:1.32.0",
            "ingress": {"external": True, "targetPort": 80},
            "env": {
                "DATABASE_HOST": "${ref(database.postgresServer/db).fqdn}",
                "ATTACHMENTS": "${ref(storage.account/files).endpoint}attachments",
                "DOMAIN": "https://${ref(container.app/web).ingress.fqdn}",
            },
        },
    },
]

VAULTWARDEN_PARAMETERS: dict[str, Any] = {
    "dbUser": {"type": "string", "default": "vaultwarden"},
    "dbPassword": {"type": "string", "secure": True},
}

VAULTWARDEN_OUTPUTS: dict[str, Any] = {
    "appUrl": "https://${ref(container.app/web).ingress.fqdn}",
    "dbHost": "${ref(database.postgresServer/db).fqdn}",
}


@pytest.fixture
def vaultwarden() -> Template:
    return make_template(
        VAULTWARDEN_RESOURCES,
        parameters=VAULTWARDEN_PARAMETERS,
        outputs=VAULTWARDEN_OUTPUTS,
        values={"dbPassword": "s3cr3t-pw"},
    )
