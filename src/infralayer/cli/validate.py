"""
CLI command for validating a template without touching the provider.
"""

from __future__ import annotations

import json
from typing import List, Optional

from infralayer.cli.common import build_orchestrator
from infralayer.cli.ux import console, header, print_key_value, success
from infralayer.core.errors import main_with_error_handling
from infralayer.graph.builder import DependencyGraph
from infralayer.template.models import Template


def print_validation_summary(template: Template, graph: DependencyGraph) -> None:
    header(f"Template: {template.source}")
    print_key_value(
        {
            "resource group": template.context.resource_group,
            "location": template.context.location,
            "environment": template.context.environment,
        },
        title="Context",
    )
    if template.parameter_values:
        print_key_value(template.masked_parameters(), title="Parameters")

    console.print("\n[bold]Provisioning order[/bold]")
    for index, level in enumerate(graph.levels(), start=1):
        console.print(f"  [muted]{index}.[/muted] " + ", ".join(str(rid) for rid in level))

    for rid, refs in graph.deferred.items():
        paths = ", ".join(ref.path for ref in refs)
        console.print(f"  [muted]{rid} resolves {paths} after provisioning[/muted]")

    if template.outputs:
        console.print("\n[bold]Outputs[/bold]")
        for output in template.outputs:
            console.print(f"  [cyan]{output.name}[/cyan]")

    console.print()
    success(f"{len(template.resources)} resource(s) valid")
    console.print()


@main_with_error_handling()
def validate_command(
    template: str,
    params: Optional[List[str]] = None,
    parameters_file: Optional[str] = None,
    resource_group: Optional[str] = None,
    location: Optional[str] = None,
    env: Optional[str] = None,
    output_format: str = "text",
    verbose: bool = False,
) -> int:
    """
    Validate a template: schema, parameters, references and cycles.

    Returns:
        Exit code (0 = valid, 12 = validation error)
    """
    orchestrator = build_orchestrator(
        template,
        params=params,
        parameters_file=parameters_file,
        resource_group=resource_group,
        location=location,
        env=env,
        verbose=verbose,
    )
    loaded = orchestrator.load()
    assert orchestrator.graph is not None

    if output_format == "json":
        payload = {
            "valid": True,
            "template": loaded.source,
            "parameters": loaded.masked_parameters(),
            "order": [str(rid) for rid in orchestrator.graph.topological_order()],
            "graph": orchestrator.graph.to_dict(),
            "outputs": [o.name for o in loaded.outputs],
        }
        print(json.dumps(payload, indent=2, default=str))
    else:
        print_validation_summary(loaded, orchestrator.graph)

    return 0
