from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from infralayer.config.settings import Settings
from infralayer.providers.memory import InMemoryProvider
from infralayer.providers.registry import register_provider

DEFAULT_STATE_PATH = Path(".infralayer/state.json")


class LocalStateProvider(InMemoryProvider):
    """In-memory provider persisted to a JSON state file between runs."""

    name = "local"

    def __init__(
        self,
        path: str | Path | None = None,
        resource_group: str = "default",
        *,
        latency: float = 0.0,
    ) -> None:
        self.path = Path(path) if path else DEFAULT_STATE_PATH
        super().__init__(resource_group, latency=latency, resources=load_state(self.path))

    def _persist(self) -> None:
        save_state(self._resources, self.path)


def load_state(path: Path) -> dict[tuple[str, str], dict[str, Any]]:
    if not path.exists():
        return {}
    data = json.loads(path.read_text())
    resources = data.get("resources", {})
    loaded = {}
    for key, value in resources.items():
        rtype, _, name = key.partition("/")
        loaded[(rtype, name)] = value
    return loaded


def save_state(resources: dict[tuple[str, str], dict[str, Any]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"resources": {f"{t}/{n}": v for (t, n), v in sorted(resources.items())}}
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n")


def _factory(settings: Settings) -> LocalStateProvider:
    return LocalStateProvider(settings.state_file, settings.resource_group)


register_provider(
    LocalStateProvider.name,
    _factory,
    description="In-process control plane persisted to a JSON state file",
)
