"""Plan engine: diff declared properties against observed remote state."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Tuple

import structlog

from infralayer.graph.builder import DependencyGraph
from infralayer.orchestration.results import (
    KNOWN_AFTER_APPLY,
    Action,
    Plan,
    PlannedChange,
    PropertyChange,
)
from infralayer.orchestration.retry import RetryPolicy
from infralayer.providers.base import ObservedResource, ResourceProvider
from infralayer.template.expressions import (
    InterpolatedString,
    MissingAttributeError,
    PendingReference,
    resolve_value,
)
from infralayer.template.models import ResourceId

logger = structlog.get_logger()


class _Unknown(Exception):
    pass


def diff_properties(
    declared: Mapping[str, Any],
    observed: Mapping[str, Any],
    path: str = "",
) -> List[PropertyChange]:
    """Compare declared properties with observed ones.

    Only declared keys are compared; keys the server added are ignored.
    Nested mappings recurse; lists and scalars compare exactly.
    """
    changes: List[PropertyChange] = []
    for key, want in declared.items():
        key_path = f"{path}.{key}" if path else str(key)
        if want is KNOWN_AFTER_APPLY:
            changes.append(PropertyChange(key_path, observed.get(key), want))
            continue
        if key not in observed:
            changes.append(PropertyChange(key_path, None, want))
            continue
        have = observed[key]
        if isinstance(want, Mapping) and isinstance(have, Mapping):
            changes.extend(diff_properties(want, have, key_path))
        elif _contains_unknown(want) or want != have:
            changes.append(PropertyChange(key_path, have, want))
    return changes


def _contains_unknown(value: Any) -> bool:
    if value is KNOWN_AFTER_APPLY:
        return True
    if isinstance(value, Mapping):
        return any(_contains_unknown(v) for v in value.values())
    if isinstance(value, list):
        return any(_contains_unknown(v) for v in value)
    return False


class PlanBuilder:
    """Builds a plan by querying the provider for each declared resource."""

    def __init__(
        self,
        provider: ResourceProvider,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._provider = provider
        self._retry = retry_policy or RetryPolicy()

    async def observe(self, graph: DependencyGraph) -> Dict[ResourceId, ObservedResource]:
        """Read the remote state of every declared resource."""
        order = graph.topological_order()
        results = await asyncio.gather(
            *(
                self._retry.call(
                    self._provider.get,
                    rid.type,
                    rid.name,
                    description=f"get {rid}",
                )
                for rid in order
            )
        )
        return dict(zip(order, results))

    async def build(self, graph: DependencyGraph) -> Plan:
        """Build a plan in topological order. Never mutates remote state."""
        observed = await self.observe(graph)
        plan = Plan()
        planned: Dict[ResourceId, Tuple[Action, Dict[str, Any]]] = {}

        for rid in graph.topological_order():
            declaration = graph.declarations[rid]
            remote = observed[rid]
            desired = self._desired(declaration.properties, observed, planned)
            depends_on = sorted(graph.dependencies_of(rid))

            if not remote.exists:
                changes = [PropertyChange(k, None, v) for k, v in desired.items()]
                plan.changes.append(
                    PlannedChange(rid, Action.CREATE, changes, None, depends_on)
                )
                planned[rid] = (Action.CREATE, desired)
                continue

            changes = diff_properties(desired, remote.properties)
            action = Action.UPDATE if changes else Action.NOOP
            plan.changes.append(
                PlannedChange(rid, action, changes, dict(remote.properties), depends_on)
            )
            planned[rid] = (action, desired)

        logger.info("plan_built", **plan.summary())
        return plan

    def _desired(
        self,
        properties: Mapping[str, Any],
        observed: Mapping[ResourceId, ObservedResource],
        planned: Mapping[ResourceId, Tuple[Action, Dict[str, Any]]],
    ) -> Dict[str, Any]:
        """Resolve references against what each dependency will hold after apply.

        A dependency planned for create or update contributes its declared
        values; anything it does not declare comes from observed state, or is
        known after apply if the dependency does not exist yet.
        """

        def lookup(ref: PendingReference) -> Any:
            action, target = planned.get(ref.resource_id, (Action.NOOP, {}))
            if action is not Action.NOOP and ref.attribute:
                try:
                    value = ref.lookup(target)
                except MissingAttributeError:
                    pass
                else:
                    if _contains_unknown(value):
                        raise _Unknown()
                    return value

            remote = observed.get(ref.resource_id)
            if remote is None or not remote.exists:
                raise _Unknown()
            try:
                return ref.lookup(remote.properties)
            except MissingAttributeError:
                raise _Unknown() from None

        def resolve(value: Any) -> Any:
            if isinstance(value, (PendingReference, InterpolatedString)):
                try:
                    return resolve_value(value, lookup)
                except _Unknown:
                    return KNOWN_AFTER_APPLY
            if isinstance(value, Mapping):
                return {k: resolve(v) for k, v in value.items()}
            if isinstance(value, (list, tuple)):
                return [resolve(v) for v in value]
            return value

        return {k: resolve(v) for k, v in properties.items()}
