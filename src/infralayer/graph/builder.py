"""
Dependency graph over resource declarations.

An edge A -> B exists when A references B or lists B in ``dependsOn``;
B must be provisioned before A starts. A reference from a resource to its
own runtime attribute is recorded as a deferred edge instead: it adds no
ordering constraint and the property is resolved after provisioning.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

import structlog

from infralayer.core.errors import CycleError
from infralayer.template.expressions import PendingReference
from infralayer.template.models import ResourceDeclaration, ResourceId

logger = structlog.get_logger()


class EdgeKind(Enum):
    """Why one resource depends on another."""

    EXPLICIT = "explicit"  # dependsOn
    REFERENCE = "reference"  # property reference


@dataclass(frozen=True)
class Edge:
    source: ResourceId  # dependent
    target: ResourceId  # dependency
    kind: EdgeKind


@dataclass
class DependencyGraph:
    """Directed acyclic graph of resource declarations."""

    declarations: dict[ResourceId, ResourceDeclaration] = field(default_factory=dict)
    edges: list[Edge] = field(default_factory=list)
    deferred: dict[ResourceId, list[PendingReference]] = field(default_factory=dict)
    _dependencies: dict[ResourceId, set[ResourceId]] = field(
        default_factory=dict, init=False, repr=False
    )
    _dependents: dict[ResourceId, set[ResourceId]] = field(
        default_factory=dict, init=False, repr=False
    )

    def add_declaration(self, declaration: ResourceDeclaration) -> None:
        self.declarations[declaration.id] = declaration
        self._dependencies.setdefault(declaration.id, set())
        self._dependents.setdefault(declaration.id, set())

    def add_edge(self, source: ResourceId, target: ResourceId, kind: EdgeKind) -> None:
        if target in self._dependencies[source]:
            return
        self._dependencies[source].add(target)
        self._dependents[target].add(source)
        self.edges.append(Edge(source, target, kind))

    @property
    def nodes(self) -> list[ResourceId]:
        """Resource ids in declaration order."""
        return list(self.declarations)

    def dependencies_of(self, resource_id: ResourceId) -> set[ResourceId]:
        """Direct dependencies of a resource."""
        return set(self._dependencies[resource_id])

    def dependents_of(self, resource_id: ResourceId, transitive: bool = True) -> set[ResourceId]:
        """Resources that depend on ``resource_id``, directly or transitively."""
        if not transitive:
            return set(self._dependents[resource_id])

        found: set[ResourceId] = set()
        stack = list(self._dependents[resource_id])
        while stack:
            current = stack.pop()
            if current in found:
                continue
            found.add(current)
            stack.extend(self._dependents[current])
        return found

    def find_cycle(self) -> list[ResourceId] | None:
        """Return the members of one dependency cycle, or None."""
        visited: set[ResourceId] = set()

        def dfs(node: ResourceId, path: list[ResourceId]) -> list[ResourceId] | None:
            if node in path:
                return path[path.index(node) :]
            if node in visited:
                return None
            visited.add(node)
            path.append(node)
            for dep in sorted(self._dependencies[node]):
                cycle = dfs(dep, path)
                if cycle:
                    return cycle
            path.pop()
            return None

        for node in self.nodes:
            cycle = dfs(node, [])
            if cycle:
                return cycle
        return None

    def topological_order(self) -> list[ResourceId]:
        """Dependencies first; declaration order breaks ties."""
        cycle = self.find_cycle()
        if cycle:
            raise CycleError([str(member) for member in cycle])

        ordered: list[ResourceId] = []
        emitted: set[ResourceId] = set()
        remaining = self.nodes
        while remaining:
            for node in remaining:
                if self._dependencies[node] <= emitted:
                    ordered.append(node)
                    emitted.add(node)
                    remaining.remove(node)
                    break
        return ordered

    def levels(self) -> list[list[ResourceId]]:
        """Group resources into waves; members of a wave are independent."""
        depth: dict[ResourceId, int] = {}
        for node in self.topological_order():
            deps = self._dependencies[node]
            depth[node] = 1 + max((depth[d] for d in deps), default=-1)

        waves: list[list[ResourceId]] = []
        for node, level in depth.items():
            while len(waves) <= level:
                waves.append([])
            waves[level].append(node)
        return waves

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "nodes": [str(n) for n in self.nodes],
            "edges": [
                {"from": str(e.source), "to": str(e.target), "kind": e.kind.value}
                for e in self.edges
            ],
            "deferred": {
                str(node): [ref.path for ref in refs] for node, refs in self.deferred.items()
            },
        }


def build_graph(declarations: Iterable[ResourceDeclaration]) -> DependencyGraph:
    """Build the dependency graph, failing with CycleError on cycles."""
    graph = DependencyGraph()
    declarations = list(declarations)
    for declaration in declarations:
        graph.add_declaration(declaration)

    for declaration in declarations:
        for dep in sorted(declaration.depends_on):
            graph.add_edge(declaration.id, dep, EdgeKind.EXPLICIT)
        for ref in declaration.references():
            if ref.resource_id == declaration.id:
                graph.deferred.setdefault(declaration.id, []).append(ref)
                continue
            graph.add_edge(declaration.id, ref.resource_id, EdgeKind.REFERENCE)

    cycle = graph.find_cycle()
    if cycle:
        members = [str(member) for member in cycle]
        logger.error("dependency_cycle", members=members)
        raise CycleError(members)

    logger.debug(
        "graph_built",
        nodes=len(graph.declarations),
        edges=len(graph.edges),
        deferred=sum(len(v) for v in graph.deferred.values()),
    )
    return graph
