"""
Apply executor: a dependency-driven scheduler over the resource DAG.

Each node moves ``PENDING -> IN_PROGRESS -> PROVISIONED | FAILED``. A node
starts only once every dependency is provisioned; independent nodes run
concurrently up to ``max_parallelism``. When a node fails, everything that
depends on it becomes ``BLOCKED`` while unrelated branches carry on.
Setting the cancel event stops new nodes from starting; in-flight provider
calls finish and never-started nodes end ``CANCELLED``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Mapping

import structlog

from infralayer.core.errors import InfraLayerError
from infralayer.graph.builder import DependencyGraph
from infralayer.orchestration.plan_builder import diff_properties
from infralayer.orchestration.results import (
    TRANSITIONS,
    Action,
    DeploymentResult,
    ExecutionNode,
    NodeState,
    Plan,
)
from infralayer.orchestration.retry import RetryPolicy
from infralayer.providers.base import ResourceProvider
from infralayer.template.expressions import (
    MissingAttributeError,
    PendingReference,
    resolve_value,
    strip_references,
)
from infralayer.template.models import ResourceId

logger = structlog.get_logger()


class IllegalTransition(RuntimeError):
    """Raised when a node is moved to a state its current state forbids."""


class ApplyExecutor:
    """Executes a plan against a provider respecting dependency order."""

    def __init__(
        self,
        provider: ResourceProvider,
        *,
        retry_policy: RetryPolicy | None = None,
        max_parallelism: int = 4,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        if max_parallelism < 1:
            raise ValueError("max_parallelism must be at least 1")
        self._provider = provider
        self._retry = retry_policy or RetryPolicy()
        self._max_parallelism = max_parallelism
        self._cancel = cancel_event or asyncio.Event()

    def cancel(self) -> None:
        """Stop scheduling new nodes."""
        self._cancel.set()

    def _transition(
        self,
        node: ExecutionNode,
        new_state: NodeState,
        **fields: Any,
    ) -> None:
        """Single entry point for node state changes.

        Never awaits, so a transition is atomic on the event loop.
        """
        if new_state not in TRANSITIONS.get(node.state, set()):
            raise IllegalTransition(f"{node.id}: {node.state.value} -> {new_state.value}")
        node.state = new_state
        for name, value in fields.items():
            setattr(node, name, value)
        logger.info(
            "node_started" if new_state is NodeState.IN_PROGRESS else f"node_{new_state.value}",
            resource=str(node.id),
            action=node.action.value,
            **{k: str(v) for k, v in fields.items() if k in ("error", "blocked_by")},
        )

    async def execute(self, plan: Plan, graph: DependencyGraph) -> DeploymentResult:
        """Run every planned change and return per-node terminal status."""
        start = time.monotonic()
        nodes: Dict[ResourceId, ExecutionNode] = {}
        for change in plan.changes:
            nodes[change.resource_id] = ExecutionNode(
                declaration=graph.declarations[change.resource_id],
                action=change.action,
                dependencies=graph.dependencies_of(change.resource_id),
                observed=change.observed,
            )

        running: Dict[asyncio.Task[Dict[str, Any]], ResourceId] = {}

        while True:
            if not self._cancel.is_set():
                for rid in plan.order:
                    if len(running) >= self._max_parallelism:
                        break
                    node = nodes[rid]
                    if node.state is not NodeState.PENDING or not self._ready(node, nodes):
                        continue
                    self._transition(node, NodeState.IN_PROGRESS)
                    task = asyncio.create_task(self._run_node(node, nodes))
                    running[task] = rid

            if not running:
                break

            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                rid = running.pop(task)
                self._settle(nodes[rid], task, nodes, graph)

        cancelled = self._cancel.is_set()
        for node in nodes.values():
            if node.state is not NodeState.PENDING:
                continue
            if cancelled:
                self._transition(node, NodeState.CANCELLED)
            else:
                # Unreachable unless a dependency never provisioned
                culprit = next(
                    d for d in sorted(node.dependencies) if nodes[d].state is not NodeState.PROVISIONED
                )
                self._transition(node, NodeState.BLOCKED, blocked_by=culprit)

        result = DeploymentResult(
            nodes=nodes,
            duration_seconds=time.monotonic() - start,
            cancelled=cancelled,
        )
        logger.info(
            "apply_finished",
            provisioned=len(result.provisioned),
            failed=len(result.failed),
            blocked=len(result.blocked),
            cancelled=len(result.cancelled_nodes),
        )
        return result

    @staticmethod
    def _ready(node: ExecutionNode, nodes: Mapping[ResourceId, ExecutionNode]) -> bool:
        return all(nodes[d].state is NodeState.PROVISIONED for d in node.dependencies)

    def _settle(
        self,
        node: ExecutionNode,
        task: "asyncio.Task[Dict[str, Any]]",
        nodes: Mapping[ResourceId, ExecutionNode],
        graph: DependencyGraph,
    ) -> None:
        exc = task.exception()
        if exc is None:
            self._transition(node, NodeState.PROVISIONED, attributes=task.result())
            return

        if not isinstance(exc, (InfraLayerError, MissingAttributeError)):
            logger.error(
                "node_unexpected_error",
                resource=str(node.id),
                error_type=type(exc).__name__,
                exc_info=exc,
            )
        message = exc.message if isinstance(exc, InfraLayerError) else str(exc)
        self._transition(node, NodeState.FAILED, error=message)

        for dependent in sorted(graph.dependents_of(node.id)):
            if nodes[dependent].state is NodeState.PENDING:
                self._transition(nodes[dependent], NodeState.BLOCKED, blocked_by=node.id)

    async def _run_node(
        self,
        node: ExecutionNode,
        nodes: Mapping[ResourceId, ExecutionNode],
    ) -> Dict[str, Any]:
        def lookup(ref: PendingReference) -> Any:
            return ref.lookup(nodes[ref.resource_id].attributes or {})

        def is_self(ref: PendingReference) -> bool:
            return ref.resource_id == node.id

        properties = node.declaration.properties
        if node.action is Action.NOOP:
            return await self._reconcile_noop(node, lookup)

        deferred = any(is_self(ref) for ref in node.declaration.references())

        if deferred and node.observed is not None:
            # Existing resource: its own attributes are already known
            try:
                resolved = resolve_value(properties, self._lookup_with(node.observed, node, lookup))
            except MissingAttributeError:
                resolved = None
            if resolved is not None:
                return await self._provision(node, resolved)

        first = resolve_value(strip_references(properties, is_self) if deferred else properties, lookup)
        attributes = await self._provision(node, first)
        if not deferred:
            return attributes

        # Second pass: self-references resolve against freshly provisioned attributes
        full = resolve_value(properties, self._lookup_with(attributes, node, lookup))
        if not diff_properties(full, attributes):
            return attributes
        logger.debug("deferred_properties_applied", resource=str(node.id))
        return await self._provision(node, full)

    async def _reconcile_noop(self, node: ExecutionNode, lookup: Any) -> Dict[str, Any]:
        """Skip the provider unless a dependency changed a referenced value."""
        observed = dict(node.observed or {})
        if not node.declaration.references():
            return observed

        resolved = resolve_value(node.declaration.properties, self._lookup_with(observed, node, lookup))
        if not diff_properties(resolved, observed):
            return observed

        logger.info("noop_references_changed", resource=str(node.id))
        node.action = Action.UPDATE
        return await self._provision(node, resolved)

    @staticmethod
    def _lookup_with(own: Mapping[str, Any], node: ExecutionNode, fallback: Any) -> Any:
        def lookup(ref: PendingReference) -> Any:
            if ref.resource_id == node.id:
                return ref.lookup(own)
            return fallback(ref)

        return lookup

    async def _provision(self, node: ExecutionNode, properties: Dict[str, Any]) -> Dict[str, Any]:
        def count(attempt: int) -> None:
            node.attempts = max(node.attempts, attempt)

        return await self._retry.call(
            self._provider.create_or_update,
            node.id.type,
            node.id.name,
            properties,
            description=f"{node.action.value} {node.id}",
            on_attempt=count,
        )
