"""
Deployment orchestrator for the unified validate / plan / apply workflow.

Runs the pipeline for one template invocation:
load + validate -> dependency graph -> plan -> apply -> outputs.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import structlog

from infralayer.config.settings import Settings, get_settings
from infralayer.graph.builder import DependencyGraph, build_graph
from infralayer.logging import bind_context
from infralayer.orchestration.engine import ApplyExecutor
from infralayer.orchestration.outputs import OutputResolver
from infralayer.orchestration.plan_builder import PlanBuilder
from infralayer.orchestration.results import Action, DeploymentResult, Plan
from infralayer.orchestration.retry import RetryPolicy
from infralayer.providers import provider_from_settings
from infralayer.providers.base import ResourceProvider
from infralayer.template.loader import load_template
from infralayer.template.models import DeploymentContext, Template

logger = structlog.get_logger()


class DeploymentOrchestrator:
    """Orchestrates one deployment of a template against a provider."""

    def __init__(
        self,
        template_path: str | Path,
        parameters: Optional[Mapping[str, Any]] = None,
        *,
        context: Optional[DeploymentContext] = None,
        provider: Optional[ResourceProvider] = None,
        settings: Optional[Settings] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.template_path = Path(template_path)
        self.parameters = dict(parameters or {})
        self.settings = settings or get_settings()
        self.context = context or DeploymentContext(
            resource_group=self.settings.resource_group,
            location=self.settings.location,
            environment=self.settings.environment,
        )
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self._provider = provider
        self.template: Optional[Template] = None
        self.graph: Optional[DependencyGraph] = None

    @property
    def provider(self) -> ResourceProvider:
        if self._provider is None:
            self._provider = provider_from_settings(self.settings)
        return self._provider

    def load(self) -> Template:
        """Parse, validate and build the dependency graph. No provider calls."""
        if self.template is not None:
            return self.template

        template = load_template(self.template_path, self.parameters, self.context)
        self.graph = build_graph(template.resources)
        self.template = template
        logger.info(
            "template_validated",
            template=str(self.template_path),
            resources=len(template.resources),
            resource_group=self.context.resource_group,
        )
        return template

    async def plan(self) -> Plan:
        """Preview the create/update/no-op decision for every resource."""
        self.load()
        assert self.graph is not None
        return await PlanBuilder(self.provider, self.retry_policy).build(self.graph)

    async def apply(
        self,
        plan: Optional[Plan] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DeploymentResult:
        """Apply the template and resolve its outputs."""
        template = self.load()
        assert self.graph is not None
        if plan is None:
            plan = await self.plan()

        log = bind_context(
            template=str(self.template_path),
            resource_group=self.context.resource_group,
            environment=self.context.environment,
        )
        log.info(
            "apply_started",
            create=plan.count(Action.CREATE),
            update=plan.count(Action.UPDATE),
            noop=plan.count(Action.NOOP),
        )

        executor = ApplyExecutor(
            self.provider,
            retry_policy=self.retry_policy,
            max_parallelism=self.settings.max_parallelism,
            cancel_event=cancel_event,
        )
        result = await executor.execute(plan, self.graph)

        resolver = OutputResolver(result.attributes)
        outputs, failures = resolver.resolve_all(template.outputs)
        result.outputs = outputs
        result.unresolved_outputs = {name: exc.message for name, exc in failures.items()}
        log.info(
            "apply_completed",
            success=result.success,
            duration_seconds=round(result.duration_seconds, 3),
            outputs=len(outputs),
            unresolved_outputs=len(failures),
        )
        return result

    async def outputs(self) -> Dict[str, Any]:
        """Resolve outputs from the current remote state without applying."""
        template = self.load()
        assert self.graph is not None
        observed = await PlanBuilder(self.provider, self.retry_policy).observe(self.graph)
        attributes = {rid: o.properties for rid, o in observed.items() if o.exists}
        return OutputResolver(attributes).resolve(template.outputs)
