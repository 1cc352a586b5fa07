"""Output resolution after every node reached a terminal state."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Tuple

import structlog

from infralayer.core.errors import UnresolvedOutputError
from infralayer.template.expressions import (
    MissingAttributeError,
    PendingReference,
    iter_references,
    resolve_value,
)
from infralayer.template.models import OutputDeclaration, ResourceId

logger = structlog.get_logger()


class OutputResolver:
    """Substitutes output references with observed runtime attributes.

    ``attributes`` holds the observed attributes of provisioned resources
    only; any reference to a resource missing from it cannot be resolved.
    """

    def __init__(self, attributes: Mapping[ResourceId, Mapping[str, Any]]) -> None:
        self._attributes = attributes

    def resolve_one(self, output: OutputDeclaration) -> Any:
        """Resolve a single output or raise UnresolvedOutputError."""
        for ref in iter_references(output.value):
            if ref.resource_id not in self._attributes:
                raise UnresolvedOutputError(output.name, str(ref.resource_id))

        def lookup(ref: PendingReference) -> Any:
            return ref.lookup(self._attributes[ref.resource_id])

        try:
            return resolve_value(output.value, lookup)
        except MissingAttributeError as exc:
            raise UnresolvedOutputError(
                output.name,
                str(exc.reference.resource_id),
                f"has no attribute '{exc.reference.path}'",
            ) from exc

    def resolve(self, outputs: Iterable[OutputDeclaration]) -> Dict[str, Any]:
        """Resolve every output, failing on the first unresolved one."""
        return {output.name: self.resolve_one(output) for output in outputs}

    def resolve_all(
        self, outputs: Iterable[OutputDeclaration]
    ) -> Tuple[Dict[str, Any], Dict[str, UnresolvedOutputError]]:
        """Resolve what can be resolved and collect the failures."""
        resolved: Dict[str, Any] = {}
        failures: Dict[str, UnresolvedOutputError] = {}
        for output in outputs:
            try:
                resolved[output.name] = self.resolve_one(output)
            except UnresolvedOutputError as exc:
                logger.warning("output_unresolved", output=output.name, resource=exc.resource_id)
                failures[output.name] = exc
        return resolved, failures
