"""Shared helpers for CLI commands."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from infralayer.config.settings import Settings, get_settings
from infralayer.logging import configure_logging
from infralayer.orchestrator import DeploymentOrchestrator
from infralayer.template.loader import load_parameters_file, parse_param_flags
from infralayer.template.models import DeploymentContext


def resolve_settings(
    *,
    provider: Optional[str] = None,
    state_file: Optional[str] = None,
    resource_group: Optional[str] = None,
    location: Optional[str] = None,
    env: Optional[str] = None,
    max_parallelism: Optional[int] = None,
) -> Settings:
    """Apply CLI flag overrides on top of environment settings."""
    overrides: Dict[str, Any] = {
        "provider": provider,
        "state_file": state_file,
        "resource_group": resource_group,
        "location": location,
        "environment": env,
        "max_parallelism": max_parallelism,
    }
    updates = {k: v for k, v in overrides.items() if v is not None}
    return get_settings().model_copy(update=updates)


def collect_parameters(
    params: Optional[List[str]] = None,
    parameters_file: Optional[str] = None,
) -> Dict[str, Any]:
    """Merge a parameters file with KEY=VALUE flags; flags win."""
    values: Dict[str, Any] = {}
    if parameters_file:
        values.update(load_parameters_file(parameters_file))
    values.update(parse_param_flags(params))
    return values


def build_orchestrator(
    template: str,
    *,
    params: Optional[List[str]] = None,
    parameters_file: Optional[str] = None,
    provider: Optional[str] = None,
    state_file: Optional[str] = None,
    resource_group: Optional[str] = None,
    location: Optional[str] = None,
    env: Optional[str] = None,
    max_parallelism: Optional[int] = None,
    verbose: bool = False,
) -> DeploymentOrchestrator:
    settings = resolve_settings(
        provider=provider,
        state_file=state_file,
        resource_group=resource_group,
        location=location,
        env=env,
        max_parallelism=max_parallelism,
    )
    configure_logging(logging.INFO if verbose else settings.log_level)
    context = DeploymentContext(
        resource_group=settings.resource_group,
        location=settings.location,
        environment=settings.environment,
    )
    return DeploymentOrchestrator(
        template,
        collect_parameters(params, parameters_file),
        context=context,
        settings=settings,
    )
