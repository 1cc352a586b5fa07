"""Result types for planning and applying a deployment."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from infralayer.logging import mask
from infralayer.template.models import ResourceDeclaration, ResourceId


class Action(Enum):
    """Reconciliation decision for one resource."""

    CREATE = "create"  # no remote match
    UPDATE = "update"  # remote exists, declared properties differ
    NOOP = "no-op"  # remote matches declaration


class NodeState(Enum):
    """Apply state of an execution node."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PROVISIONED = "provisioned"
    FAILED = "failed"
    BLOCKED = "blocked"  # a dependency failed; never started
    CANCELLED = "cancelled"  # deployment cancelled before the node started

    @property
    def is_terminal(self) -> bool:
        return self not in (NodeState.PENDING, NodeState.IN_PROGRESS)


TRANSITIONS: Dict[NodeState, set[NodeState]] = {
    NodeState.PENDING: {NodeState.IN_PROGRESS, NodeState.BLOCKED, NodeState.CANCELLED},
    NodeState.IN_PROGRESS: {NodeState.PROVISIONED, NodeState.FAILED},
}


class _KnownAfterApply:
    def __repr__(self) -> str:
        return "(known after apply)"


KNOWN_AFTER_APPLY: Any = _KnownAfterApply()


@dataclass(frozen=True)
class PropertyChange:
    """One differing property path."""

    path: str
    before: Any
    after: Any

    @property
    def known_after_apply(self) -> bool:
        return self.after is KNOWN_AFTER_APPLY

    def to_dict(self) -> Dict[str, Any]:
        after = repr(KNOWN_AFTER_APPLY) if self.known_after_apply else mask(self.after)
        return {"path": self.path, "before": mask(self.before), "after": after}


@dataclass
class PlannedChange:
    """Planned action for a single resource."""

    resource_id: ResourceId
    action: Action
    changes: List[PropertyChange] = field(default_factory=list)
    observed: Optional[Dict[str, Any]] = None
    depends_on: List[ResourceId] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource": str(self.resource_id),
            "action": self.action.value,
            "changes": [c.to_dict() for c in self.changes],
            "depends_on": [str(d) for d in self.depends_on],
        }


@dataclass
class Plan:
    """Ordered plan; every dependency precedes its dependents."""

    changes: List[PlannedChange] = field(default_factory=list)

    @property
    def order(self) -> List[ResourceId]:
        return [c.resource_id for c in self.changes]

    @property
    def has_changes(self) -> bool:
        return any(c.action is not Action.NOOP for c in self.changes)

    def get(self, resource_id: ResourceId) -> PlannedChange:
        for change in self.changes:
            if change.resource_id == resource_id:
                return change
        raise KeyError(str(resource_id))

    def count(self, action: Action) -> int:
        return sum(1 for c in self.changes if c.action is action)

    def summary(self) -> Dict[str, int]:
        return {action.value: self.count(action) for action in Action}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changes": [c.to_dict() for c in self.changes],
            "summary": self.summary(),
        }


@dataclass
class ExecutionNode:
    """A declaration plus its mutable apply state for one invocation."""

    declaration: ResourceDeclaration
    action: Action
    dependencies: set[ResourceId] = field(default_factory=set)
    observed: Optional[Dict[str, Any]] = None
    state: NodeState = NodeState.PENDING
    attempts: int = 0
    attributes: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    blocked_by: Optional[ResourceId] = None

    @property
    def id(self) -> ResourceId:
        return self.declaration.id

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "resource": str(self.id),
            "action": self.action.value,
            "state": self.state.value,
            "attempts": self.attempts,
        }
        if self.error:
            result["error"] = mask(self.error)
        if self.blocked_by:
            result["blocked_by"] = str(self.blocked_by)
        return result


@dataclass
class DeploymentResult:
    """Terminal status of every node plus resolved outputs."""

    nodes: Dict[ResourceId, ExecutionNode] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    unresolved_outputs: Dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0
    cancelled: bool = False

    def _in_state(self, state: NodeState) -> List[ResourceId]:
        return [rid for rid, node in self.nodes.items() if node.state is state]

    @property
    def provisioned(self) -> List[ResourceId]:
        return self._in_state(NodeState.PROVISIONED)

    @property
    def failed(self) -> List[ResourceId]:
        return self._in_state(NodeState.FAILED)

    @property
    def blocked(self) -> List[ResourceId]:
        return self._in_state(NodeState.BLOCKED)

    @property
    def cancelled_nodes(self) -> List[ResourceId]:
        return self._in_state(NodeState.CANCELLED)

    @property
    def attributes(self) -> Dict[ResourceId, Dict[str, Any]]:
        """Observed attributes of every provisioned resource."""
        return {
            rid: node.attributes or {}
            for rid, node in self.nodes.items()
            if node.state is NodeState.PROVISIONED
        }

    def state_of(self, resource_id: ResourceId) -> NodeState:
        return self.nodes[resource_id].state

    @property
    def success(self) -> bool:
        """Whether every resource was provisioned and every output resolved."""
        return (
            all(node.state is NodeState.PROVISIONED for node in self.nodes.values())
            and not self.unresolved_outputs
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "duration_seconds": round(self.duration_seconds, 3),
            "cancelled": self.cancelled,
            "resources": [node.to_dict() for node in self.nodes.values()],
            "provisioned": [str(r) for r in self.provisioned],
            "failed": [str(r) for r in self.failed],
            "blocked": [str(r) for r in self.blocked],
            "outputs": mask(self.outputs),
            "unresolved_outputs": self.unresolved_outputs,
        }
