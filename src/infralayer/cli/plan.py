"""
CLI command for planning (dry-run) a deployment.
"""

import asyncio
import json
from typing import List, Optional

from rich.markup import escape

from infralayer.cli.common import build_orchestrator
from infralayer.cli.ux import console, header
from infralayer.core.errors import main_with_error_handling
from infralayer.logging import mask
from infralayer.orchestration.results import Action, Plan

ACTION_STYLE = {
    Action.CREATE: ("create", "+"),
    Action.UPDATE: ("update", "~"),
    Action.NOOP: ("noop", "="),
}


def print_plan_summary(
    plan: Plan, template: str, verbose: bool = False, show_hint: bool = True
) -> None:
    """Print plan summary with rich formatting."""
    header(f"Plan: {template}")
    console.print()

    for change in plan.changes:
        style, symbol = ACTION_STYLE[change.action]
        console.print(
            f"  [{style}]{symbol} {change.action.value:<7}[/{style}] {change.resource_id}"
        )
        if change.action is Action.NOOP and not verbose:
            continue
        for prop in change.changes:
            if change.action is Action.CREATE:
                after = prop.to_dict()["after"]
                console.print(f"     [muted]└[/muted] {prop.path} = {escape(str(after))}")
            else:
                detail = prop.to_dict()
                console.print(
                    f"     [muted]└[/muted] {prop.path}: "
                    f"{escape(str(detail['before']))} → {escape(str(detail['after']))}"
                )

    summary = plan.summary()
    console.print()
    console.print(
        f"[bold]Plan:[/bold] {summary['create']} to create, "
        f"{summary['update']} to update, {summary['no-op']} unchanged"
    )
    if plan.has_changes and show_hint:
        console.print()
        console.print("[muted]To apply these changes, run:[/muted]")
        console.print(f"  [info]infralayer apply {template}[/info]")
    console.print()


def print_plan_json(plan: Plan) -> None:
    """Print plan in JSON format."""
    print(json.dumps(mask(plan.to_dict()), indent=2, default=str))


@main_with_error_handling()
def plan_command(
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
    Preview the changes an apply would make.

    Args:
        template: Path to template YAML file
        params: KEY=VALUE parameter flags
        parameters_file: YAML/JSON parameters file
        provider: Provider name (memory, local, http)
        state_file: State file for the local provider
        resource_group: Deployment resource group
        location: Default location
        env: Environment name
        output_format: Output format (text, json)
        verbose: Show unchanged resources' details

    Returns:
        Exit code (0 for success)
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
    plan = asyncio.run(orchestrator.plan())

    if output_format == "json":
        print_plan_json(plan)
    else:
        print_plan_summary(plan, template, verbose=verbose)

    return 0
