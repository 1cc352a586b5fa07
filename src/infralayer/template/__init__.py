"""Template parsing: declarations, parameters, references and outputs."""

from infralayer.template.expressions import (
    ExpressionCompiler,
    InterpolatedString,
    MissingAttributeError,
    PendingReference,
    iter_references,
    resolve_value,
    strip_references,
)
from infralayer.template.loader import (
    load_parameters_file,
    load_template,
    parse_param_flags,
    parse_template,
)
from infralayer.template.models import (
    DeploymentContext,
    OutputDeclaration,
    Parameter,
    ResourceDeclaration,
    ResourceId,
    Template,
)

__all__ = [
    "DeploymentContext",
    "ExpressionCompiler",
    "InterpolatedString",
    "MissingAttributeError",
    "OutputDeclaration",
    "Parameter",
    "PendingReference",
    "ResourceDeclaration",
    "ResourceId",
    "Template",
    "iter_references",
    "load_parameters_file",
    "load_template",
    "parse_param_flags",
    "parse_template",
    "resolve_value",
    "strip_references",
]
