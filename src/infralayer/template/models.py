"""Typed representation of a parsed deployment template."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from infralayer.core.errors import ValidationError

PARAMETER_TYPES = ("string", "int", "bool", "object", "array")


@dataclass(frozen=True, order=True)
class ResourceId:
    """Identity of a declared resource: type plus symbolic name."""

    type: str
    name: str

    def __str__(self) -> str:
        return f"{self.type}/{self.name}"

    @classmethod
    def parse(cls, text: str) -> "ResourceId":
        """Parse the canonical ``type/name`` form."""
        rtype, sep, name = text.strip().partition("/")
        if not sep or not rtype or not name:
            raise ValidationError(
                f"Invalid resource reference '{text}'; expected TYPE/NAME",
                {"reference": text},
            )
        return cls(rtype, name)


@dataclass(frozen=True)
class DeploymentContext:
    """Scope shared by every declaration in one deployment.

    Exposed to templates through the ``resourceGroup()`` and
    ``environment()`` built-ins.
    """

    resource_group: str = "default"
    location: str = "eastus"
    environment: str = "development"

    @property
    def resource_group_id(self) -> str:
        return f"/resourceGroups/{self.resource_group}"

    def builtin(self, func: str, attr: str) -> Any:
        values: dict[str, dict[str, Any]] = {
            "resourceGroup": {
                "name": self.resource_group,
                "location": self.location,
                "id": self.resource_group_id,
            },
            "environment": {"name": self.environment},
        }
        return values[func][attr]


@dataclass(frozen=True)
class Parameter:
    """A template parameter declaration."""

    name: str
    type: str = "string"
    default: Any = None
    has_default: bool = False
    secure: bool = False
    allowed: tuple[Any, ...] = ()
    description: str | None = None

    @property
    def required(self) -> bool:
        return not self.has_default


@dataclass(frozen=True)
class ResourceDeclaration:
    """A named, typed description of desired resource state."""

    id: ResourceId
    properties: Mapping[str, Any] = field(default_factory=dict)
    depends_on: frozenset[ResourceId] = frozenset()

    def __post_init__(self) -> None:
        if not isinstance(self.properties, MappingProxyType):
            object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    @property
    def type(self) -> str:
        return self.id.type

    @property
    def name(self) -> str:
        return self.id.name

    def references(self) -> list[Any]:
        from infralayer.template.expressions import iter_references

        return list(iter_references(self.properties))


@dataclass(frozen=True)
class OutputDeclaration:
    """A named value derived from provisioned resources."""

    name: str
    value: Any


@dataclass(frozen=True)
class Template:
    """A validated template with its parameters bound."""

    resources: tuple[ResourceDeclaration, ...]
    parameters: tuple[Parameter, ...] = ()
    outputs: tuple[OutputDeclaration, ...] = ()
    parameter_values: Mapping[str, Any] = field(default_factory=dict)
    context: DeploymentContext = field(default_factory=DeploymentContext)
    source: str = "<template>"

    def get(self, resource_id: ResourceId) -> ResourceDeclaration:
        for declaration in self.resources:
            if declaration.id == resource_id:
                return declaration
        raise KeyError(str(resource_id))

    def masked_parameters(self) -> dict[str, Any]:
        secure = {p.name for p in self.parameters if p.secure}
        return {k: ("***" if k in secure else v) for k, v in self.parameter_values.items()}
