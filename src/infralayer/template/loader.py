"""
Template loading, parameter binding and validation.

All checks here run before any provider call, so a bad template or a missing
parameter never touches remote state.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping

import structlog
import yaml

from infralayer.core.errors import ValidationError
from infralayer.logging import register_secret
from infralayer.template.expressions import ExpressionCompiler, iter_references
from infralayer.template.models import (
    PARAMETER_TYPES,
    DeploymentContext,
    OutputDeclaration,
    Parameter,
    ResourceDeclaration,
    ResourceId,
    Template,
)

logger = structlog.get_logger()


def load_template(
    path: str | Path,
    parameters: Mapping[str, Any] | None = None,
    context: DeploymentContext | None = None,
) -> Template:
    """Load a YAML or JSON template file and bind parameters."""
    template_path = Path(path)
    if not template_path.exists():
        raise ValidationError(f"Template not found: {template_path}", {"path": str(template_path)})

    try:
        with open(template_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid template YAML: {e}", {"path": str(template_path)}) from e

    return parse_template(data, parameters, context, source=str(template_path))


def parse_template(
    data: Any,
    parameters: Mapping[str, Any] | None = None,
    context: DeploymentContext | None = None,
    *,
    source: str = "<template>",
) -> Template:
    """Validate raw template data and compile it into a :class:`Template`."""
    if not isinstance(data, dict):
        raise ValidationError("Template must be a mapping", {"source": source})

    context = context or DeploymentContext()
    declared = _parse_parameters(data.get("parameters") or {})
    values = _bind_parameters(declared, dict(parameters or {}), context)

    for param in declared:
        if param.secure:
            register_secret(values.get(param.name))

    compiler = ExpressionCompiler(values, context)
    resources = _parse_resources(data.get("resources") or [], compiler)
    _check_references(resources)

    outputs = _parse_outputs(data.get("outputs") or {}, declared, values, context)
    known = {r.id for r in resources}
    for output in outputs:
        for ref in iter_references(output.value):
            if ref.resource_id not in known:
                raise ValidationError(
                    f"Output '{output.name}' references undeclared resource {ref.resource_id}",
                    {"output": output.name},
                )

    template = Template(
        resources=tuple(resources),
        parameters=tuple(declared),
        outputs=tuple(outputs),
        parameter_values=values,
        context=context,
        source=source,
    )
    logger.debug(
        "template_loaded",
        source=source,
        resources=len(resources),
        outputs=len(outputs),
        parameters=template.masked_parameters(),
    )
    return template


def _parse_parameters(raw: Any) -> list[Parameter]:
    if not isinstance(raw, dict):
        raise ValidationError("'parameters' must be a mapping")

    params = []
    for name, spec in raw.items():
        spec = spec or {}
        if not isinstance(spec, dict):
            raise ValidationError(f"Parameter '{name}' must be a mapping", {"parameter": name})
        ptype = spec.get("type", "string")
        if ptype not in PARAMETER_TYPES:
            raise ValidationError(
                f"Parameter '{name}' has unknown type '{ptype}'",
                {"parameter": name},
            )
        params.append(
            Parameter(
                name=str(name),
                type=ptype,
                default=spec.get("default"),
                has_default="default" in spec,
                secure=bool(spec.get("secure", False)),
                allowed=tuple(spec.get("allowed") or ()),
                description=spec.get("description"),
            )
        )
    return params


def _bind_parameters(
    declared: list[Parameter],
    supplied: dict[str, Any],
    context: DeploymentContext,
) -> dict[str, Any]:
    names = {p.name for p in declared}
    unknown = sorted(set(supplied) - names)
    if unknown:
        raise ValidationError(
            f"Unknown parameter(s) supplied: {', '.join(unknown)}",
            {"parameters": unknown},
        )

    missing = [p.name for p in declared if p.required and supplied.get(p.name) is None]
    if missing:
        raise ValidationError(
            f"Missing required parameter(s): {', '.join(missing)}",
            {"parameters": missing},
        )

    # Defaults may only use built-ins, never other parameters or resources
    default_compiler = ExpressionCompiler({}, context, allow_references=False)
    values: dict[str, Any] = {}
    for param in declared:
        if supplied.get(param.name) is not None:
            value = supplied[param.name]
        else:
            value = default_compiler.compile(param.default, f"parameters.{param.name}")
        value = _coerce(param, value)
        if param.allowed and value not in param.allowed:
            shown = "***" if param.secure else value
            raise ValidationError(
                f"Parameter '{param.name}' value {shown!r} is not one of {list(param.allowed)}",
                {"parameter": param.name},
            )
        values[param.name] = value
    return values


def _coerce(param: Parameter, value: Any) -> Any:
    if value is None:
        return None
    try:
        if param.type == "string":
            if isinstance(value, (dict, list)):
                raise TypeError
            return str(value)
        if param.type == "int":
            if isinstance(value, bool):
                raise TypeError
            return int(value)
        if param.type == "bool":
            if isinstance(value, bool):
                return value
            lowered = str(value).strip().lower()
            if lowered in ("true", "yes", "1"):
                return True
            if lowered in ("false", "no", "0"):
                return False
            raise ValueError
        # object / array
        if isinstance(value, str):
            value = yaml.safe_load(value)
        expected = dict if param.type == "object" else list
        if not isinstance(value, expected):
            raise TypeError
        return value
    except (TypeError, ValueError, yaml.YAMLError):
        raise ValidationError(
            f"Parameter '{param.name}' expects type {param.type}",
            {"parameter": param.name},
        ) from None


def _parse_resources(raw: Any, compiler: ExpressionCompiler) -> list[ResourceDeclaration]:
    if not isinstance(raw, list):
        raise ValidationError("'resources' must be a list")

    resources: list[ResourceDeclaration] = []
    seen: set[ResourceId] = set()
    for index, item in enumerate(raw):
        if not isinstance(item, dict) or not item.get("type") or not item.get("name"):
            raise ValidationError(
                f"Resource #{index} must declare 'type' and 'name'",
                {"index": index},
            )
        rtype, name = str(item["type"]), str(item["name"])
        if "/" in rtype:
            raise ValidationError(f"Resource type '{rtype}' may not contain '/'", {"index": index})

        resource_id = ResourceId(rtype, name)
        if resource_id in seen:
            raise ValidationError(
                f"Duplicate resource name '{name}' for type '{rtype}'",
                {"resource": str(resource_id)},
            )
        seen.add(resource_id)

        properties = item.get("properties") or {}
        if not isinstance(properties, dict):
            raise ValidationError(
                f"Properties of {resource_id} must be a mapping",
                {"resource": str(resource_id)},
            )
        depends_on = frozenset(_parse_depends_on(item.get("dependsOn") or [], resource_id))

        resources.append(
            ResourceDeclaration(
                id=resource_id,
                properties=compiler.compile(properties, str(resource_id)),
                depends_on=depends_on,
            )
        )
    return resources


def _parse_depends_on(raw: Any, owner: ResourceId) -> Iterable[ResourceId]:
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        raise ValidationError(f"'dependsOn' of {owner} must be a list", {"resource": str(owner)})
    for entry in raw:
        if isinstance(entry, dict):
            yield ResourceId(str(entry.get("type", "")), str(entry.get("name", "")))
        else:
            yield ResourceId.parse(str(entry))


def _check_references(resources: list[ResourceDeclaration]) -> None:
    known = {r.id for r in resources}
    for resource in resources:
        for dep in resource.depends_on:
            if dep not in known:
                raise ValidationError(
                    f"{resource.id} depends on undeclared resource {dep}",
                    {"resource": str(resource.id), "dependency": str(dep)},
                )
            if dep == resource.id:
                raise ValidationError(
                    f"{resource.id} cannot depend on itself",
                    {"resource": str(resource.id)},
                )
        for ref in resource.references():
            if ref.resource_id not in known:
                raise ValidationError(
                    f"{resource.id} references undeclared resource {ref.resource_id}",
                    {"resource": str(resource.id), "reference": str(ref.resource_id)},
                )


def _parse_outputs(
    raw: Any,
    declared: list[Parameter],
    values: dict[str, Any],
    context: DeploymentContext,
) -> list[OutputDeclaration]:
    if not isinstance(raw, dict):
        raise ValidationError("'outputs' must be a mapping")

    secure = {p.name for p in declared if p.secure}
    outputs = []
    for name, value in raw.items():
        used: set[str] = set()
        compiler = ExpressionCompiler(values, context, on_parameter=used.add)
        compiled = compiler.compile(value, f"outputs.{name}")
        leaked = sorted(used & secure)
        if leaked:
            raise ValidationError(
                f"Output '{name}' may not expose secure parameter(s): {', '.join(leaked)}",
                {"output": name},
            )
        outputs.append(OutputDeclaration(name=str(name), value=compiled))
    return outputs


def load_parameters_file(path: str | Path) -> dict[str, Any]:
    """Load invocation parameters from a YAML or JSON file.

    Accepts either a flat mapping or ``{"parameters": {...}}``. Entries may
    also use the ``{"value": ...}`` wrapper.
    """
    params_path = Path(path)
    if not params_path.exists():
        raise ValidationError(f"Parameters file not found: {params_path}")

    text = params_path.read_text()
    try:
        data = json.loads(text) if params_path.suffix == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValidationError(f"Invalid parameters file: {e}", {"path": str(params_path)}) from e

    data = data or {}
    if not isinstance(data, dict):
        raise ValidationError("Parameters file must contain a mapping", {"path": str(params_path)})
    if isinstance(data.get("parameters"), dict):
        data = data["parameters"]

    return {
        str(k): (v["value"] if isinstance(v, dict) and set(v) == {"value"} else v)
        for k, v in data.items()
    }


def parse_param_flags(flags: Iterable[str] | None) -> dict[str, str]:
    """Parse ``KEY=VALUE`` command-line flags."""
    params: dict[str, str] = {}
    for flag in flags or []:
        key, sep, value = flag.partition("=")
        if not sep or not key.strip():
            raise ValidationError(f"Invalid parameter '{flag}'; expected KEY=VALUE")
        params[key.strip()] = value
    return params
