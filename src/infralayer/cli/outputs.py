"""
CLI command for reading template outputs from current remote state.
"""

from __future__ import annotations

import asyncio
import json
from typing import List, Optional

from rich.markup import escape

from infralayer.cli.common import build_orchestrator
from infralayer.cli.ux import console, warning
from infralayer.core.errors import main_with_error_handling
from infralayer.logging import mask


@main_with_error_handling()
def outputs_command(
    template: str,
    params: Optional[List[str]] = None,
    parameters_file: Optional[str] = None,
    provider: Optional[str] = None,
    state_file: Optional[str] = None,
    resource_group: Optional[str] = None,
    location: Optional[str] = None,
    env: Optional[str] = None,
    output_format: str = "text",
    verbose: bool = False,
) -> int:
    """
    Resolve outputs against resources that already exist.

    Returns:
        Exit code (0 = resolved, 13 = an output's resource does not exist)
    """
    orchestrator = build_orchestrator(
        template,
        params=params,
        parameters_file=parameters_file,
        provider=provider,
        state_file=state_file,
        resource_group=resource_group,
        location=location,
        env=env,
        verbose=verbose,
    )
    values = mask(asyncio.run(orchestrator.outputs()))

    if output_format == "json":
        print(json.dumps(values, indent=2, default=str))
        return 0

    if not values:
        warning("Template declares no outputs")
        return 0
    for name, value in values.items():
        console.print(f"[cyan]{name}[/cyan] = {escape(str(value))}")
    return 0
