"""Template expressions and reference handling.

Strings in a template may embed ``${...}`` expressions:

- ``${params.NAME}`` - bound parameter value
- ``${resourceGroup().location}`` / ``${environment().name}`` - built-ins
  read from the :class:`DeploymentContext`
- ``${ref(TYPE/NAME)}`` - identity of another resource
- ``${ref(TYPE/NAME).attr.path}`` - runtime attribute of another resource

Parameters and built-ins are substituted when the template is compiled.
Resource references stay lazy as :class:`PendingReference` leaves and are
resolved at apply time, once the referenced resource is provisioned.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping

from infralayer.core.errors import ValidationError
from infralayer.template.models import DeploymentContext, ResourceId

EXPRESSION_PATTERN = re.compile(r"\$\{\s*([^}]*?)\s*\}")
REF_PATTERN = re.compile(r"^ref\(\s*([^)\s]+)\s*\)((?:\.[A-Za-z0-9_\-]+)*)$")
PARAM_PATTERN = re.compile(r"^params\.([A-Za-z_][A-Za-z0-9_]*)$")
BUILTIN_PATTERN = re.compile(r"^([A-Za-z]+)\(\)\.([A-Za-z_]+)$")


class MissingAttributeError(LookupError):
    """Raised when a reference points at an attribute the resource does not expose."""

    def __init__(self, reference: "PendingReference"):
        self.reference = reference
        super().__init__(f"{reference.resource_id} has no attribute '{reference.path}'")


@dataclass(frozen=True)
class PendingReference:
    """Lazy pointer to another resource's identity or runtime attribute."""

    resource_id: ResourceId
    attribute: tuple[str, ...] = ()

    @property
    def path(self) -> str:
        return ".".join(self.attribute) if self.attribute else "id"

    def __str__(self) -> str:
        suffix = "".join(f".{part}" for part in self.attribute)
        return f"${{ref({self.resource_id}){suffix}}}"

    def lookup(self, attributes: Mapping[str, Any]) -> Any:
        """Read the referenced value from a resource's observed attributes."""
        if not self.attribute:
            return attributes.get("id", str(self.resource_id))

        current: Any = attributes
        for part in self.attribute:
            if not isinstance(current, Mapping) or part not in current:
                raise MissingAttributeError(self)
            current = current[part]
        return current


@dataclass(frozen=True)
class InterpolatedString:
    """A string mixing literal text with pending references."""

    parts: tuple[str | PendingReference, ...]

    def references(self) -> list[PendingReference]:
        return [p for p in self.parts if isinstance(p, PendingReference)]

    def __str__(self) -> str:
        return "".join(str(p) for p in self.parts)


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ExpressionCompiler:
    """Compiles raw template values, substituting parameters and built-ins."""

    def __init__(
        self,
        parameters: Mapping[str, Any],
        context: DeploymentContext,
        *,
        allow_references: bool = True,
        on_parameter: Callable[[str], None] | None = None,
    ):
        self.parameters = parameters
        self.context = context
        self.allow_references = allow_references
        self._on_parameter = on_parameter

    def compile(self, value: Any, where: str = "") -> Any:
        """Recursively compile strings inside dicts and lists."""
        if isinstance(value, str):
            return self._compile_string(value, where)
        if isinstance(value, dict):
            return {k: self.compile(v, f"{where}.{k}" if where else str(k)) for k, v in value.items()}
        if isinstance(value, list):
            return [self.compile(item, f"{where}[{i}]") for i, item in enumerate(value)]
        return value

    def _compile_string(self, text: str, where: str) -> Any:
        matches = list(EXPRESSION_PATTERN.finditer(text))
        if not matches:
            return text

        # Whole-string expression keeps the raw value type
        if len(matches) == 1 and matches[0].span() == (0, len(text)):
            return self._evaluate(matches[0].group(1), where)

        parts: list[str | PendingReference] = []
        cursor = 0
        for match in matches:
            if match.start() > cursor:
                parts.append(text[cursor : match.start()])
            evaluated = self._evaluate(match.group(1), where)
            if isinstance(evaluated, PendingReference):
                parts.append(evaluated)
            else:
                parts.append(_stringify(evaluated))
            cursor = match.end()
        if cursor < len(text):
            parts.append(text[cursor:])

        if any(isinstance(p, PendingReference) for p in parts):
            return InterpolatedString(tuple(_merge_literals(parts)))
        return "".join(p for p in parts if isinstance(p, str))

    def _evaluate(self, expression: str, where: str) -> Any:
        param_match = PARAM_PATTERN.match(expression)
        if param_match:
            name = param_match.group(1)
            if name not in self.parameters:
                raise ValidationError(
                    f"Unknown parameter '{name}' referenced",
                    {"location": where},
                )
            if self._on_parameter is not None:
                self._on_parameter(name)
            return self.parameters[name]

        ref_match = REF_PATTERN.match(expression)
        if ref_match:
            if not self.allow_references:
                raise ValidationError(
                    "Resource references are not allowed here",
                    {"location": where, "expression": expression},
                )
            resource_id = ResourceId.parse(ref_match.group(1))
            attribute = tuple(p for p in ref_match.group(2).split(".") if p)
            return PendingReference(resource_id, attribute)

        builtin_match = BUILTIN_PATTERN.match(expression)
        if builtin_match:
            func, attr = builtin_match.groups()
            try:
                return self.context.builtin(func, attr)
            except KeyError:
                raise ValidationError(
                    f"Unknown built-in '{func}().{attr}'",
                    {"location": where},
                ) from None

        raise ValidationError(
            f"Unrecognized expression '${{{expression}}}'",
            {"location": where},
        )


def _merge_literals(parts: list[str | PendingReference]) -> Iterator[str | PendingReference]:
    buffer = ""
    for part in parts:
        if isinstance(part, str):
            buffer += part
            continue
        if buffer:
            yield buffer
            buffer = ""
        yield part
    if buffer:
        yield buffer


def iter_references(value: Any) -> Iterator[PendingReference]:
    """Yield every pending reference embedded in a compiled value."""
    if isinstance(value, PendingReference):
        yield value
    elif isinstance(value, InterpolatedString):
        yield from value.references()
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_references(item)


def resolve_value(value: Any, lookup: Callable[[PendingReference], Any]) -> Any:
    """Return a fresh copy of ``value`` with every reference substituted."""
    if isinstance(value, PendingReference):
        return lookup(value)
    if isinstance(value, InterpolatedString):
        return "".join(
            _stringify(lookup(p)) if isinstance(p, PendingReference) else p for p in value.parts
        )
    if isinstance(value, Mapping):
        return {k: resolve_value(v, lookup) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_value(item, lookup) for item in value]
    return value


def strip_references(value: Any, predicate: Callable[[PendingReference], bool]) -> Any:
    """Drop mapping entries and list items that contain a matching reference."""

    def _matches(item: Any) -> bool:
        return any(predicate(ref) for ref in iter_references(item))

    if isinstance(value, Mapping):
        return {
            k: strip_references(v, predicate) for k, v in value.items() if not _direct_match(v, predicate)
        }
    if isinstance(value, (list, tuple)):
        return [strip_references(item, predicate) for item in value if not _matches(item)]
    return value


def _direct_match(value: Any, predicate: Callable[[PendingReference], bool]) -> bool:
    if isinstance(value, PendingReference):
        return predicate(value)
    if isinstance(value, InterpolatedString):
        return any(predicate(ref) for ref in value.references())
    return False
