"""
CLI command for applying a template.
"""

from __future__ import annotations

import asyncio
import json
import signal
from typing import List, Optional

from rich.markup import escape

from infralayer.cli.common import build_orchestrator
from infralayer.cli.plan import print_plan_summary
from infralayer.cli.ux import (
    confirm,
    console,
    error,
    header,
    info,
    is_interactive,
    success,
    warning,
)
from infralayer.core.errors import ExitCode, main_with_error_handling
from infralayer.logging import mask
from infralayer.orchestration.results import DeploymentResult, NodeState, Plan
from infralayer.orchestrator import DeploymentOrchestrator

STATE_STYLE = {
    NodeState.PROVISIONED: ("success", "✓"),
    NodeState.FAILED: ("error", "✗"),
    NodeState.BLOCKED: ("warning", "⊘"),
    NodeState.CANCELLED: ("muted", "-"),
}


def print_apply_summary(result: DeploymentResult) -> None:
    """Print apply summary with rich formatting."""
    console.print()
    for node in result.nodes.values():
        style, symbol = STATE_STYLE.get(node.state, ("muted", "?"))
        line = f"  [{style}]{symbol}[/{style}] {node.id} [muted]({node.action.value})[/muted]"
        if node.attempts > 1:
            line += f" [muted]after {node.attempts} attempts[/muted]"
        console.print(line)
        if node.state is NodeState.FAILED and node.error:
            console.print(f"     [error]└ {escape(mask(node.error))}[/error]")
        elif node.state is NodeState.BLOCKED and node.blocked_by:
            console.print(f"     [warning]└ blocked by {node.blocked_by}[/warning]")

    if result.outputs:
        console.print()
        console.print("[bold]Outputs:[/bold]")
        for name, value in mask(result.outputs).items():
            console.print(f"  [cyan]{name}[/cyan] = {escape(str(value))}")

    for reason in result.unresolved_outputs.values():
        warning(reason)

    console.print()
    total = len(result.nodes)
    if result.success:
        success(
            f"Applied {total} resource(s) in {result.duration_seconds:.1f}s"
        )
    else:
        if result.cancelled:
            warning("Deployment cancelled")
        error(
            f"{len(result.provisioned)}/{total} provisioned, "
            f"{len(result.failed)} failed, {len(result.blocked)} blocked, "
            f"{len(result.cancelled_nodes)} cancelled"
        )
    console.print()


def print_apply_json(result: DeploymentResult) -> None:
    """Print apply result in JSON format."""
    print(json.dumps(mask(result.to_dict()), indent=2, default=str))


async def _run_apply(orchestrator: DeploymentOrchestrator, plan: Plan) -> DeploymentResult:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False
    try:
        return await orchestrator.apply(plan, cancel_event=cancel_event)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


@main_with_error_handling()
def apply_command(
    template: str,
    params: Optional[List[str]] = None,
    parameters_file: Optional[str] = None,
    provider: Optional[str] = None,
    state_file: Optional[str] = None,
    resource_group: Optional[str] = None,
    location: Optional[str] = None,
    env: Optional[str] = None,
    max_parallelism: Optional[int] = None,
    output_format: str = "text",
    verbose: bool = False,
    auto_approve: bool = False,
) -> int:
    """
    Apply a template: provision every declared resource in dependency order.

    Args:
        template: Path to template YAML file
        params: KEY=VALUE parameter flags
        parameters_file: YAML/JSON parameters file
        provider: Provider name (memory, local, http)
        state_file: State file for the local provider
        resource_group: Deployment resource group
        location: Default location
        env: Environment name
        max_parallelism: Maximum concurrent provider operations
        output_format: Output format (text, json)
        verbose: Show detailed progress
        auto_approve: Skip confirmation prompt

    Returns:
        Exit code (0 = all provisioned, 2 = failed/blocked/cancelled resources
        or unresolved outputs)
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
        max_parallelism=max_parallelism,
        verbose=verbose,
    )
    plan = asyncio.run(orchestrator.plan())

    if output_format != "json":
        print_plan_summary(plan, template, verbose=verbose, show_hint=False)

    if plan.has_changes and not auto_approve and is_interactive():
        if not confirm("Apply these changes?", default=False):
            info("Apply cancelled")
            return 0

    if output_format != "json":
        header(f"Applying: {template}")

    result = asyncio.run(_run_apply(orchestrator, plan))

    if output_format == "json":
        print_apply_json(result)
    else:
        print_apply_summary(result)

    return int(ExitCode.SUCCESS if result.success else ExitCode.BLOCKED)
