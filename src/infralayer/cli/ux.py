"""
Hybrid CLI UX utilities using Charm tools (gum) with Python fallbacks.

Progressive enhancement: Best UX when gum is installed, always works via pip.
Uses rich/questionary as fallbacks when gum is not available.

Environment handling:
- Automatically detects TTY vs pipe/CI
- Respects NO_COLOR and FORCE_COLOR environment variables
- Falls back to plain text in non-interactive environments
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from typing import Any

import questionary
from questionary import Style as QStyle
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.theme import Theme

INFRALAYER_THEME = Theme(
    {
        "info": "#88C0D0",
        "success": "#A3BE8C",
        "warning": "#EBCB8B",
        "error": "#BF616A bold",
        "highlight": "#B48EAD",
        "muted": "#D8DEE9",
        "create": "#A3BE8C",
        "update": "#EBCB8B",
        "noop": "#4C566A",
    }
)


def is_interactive() -> bool:
    """Check if we're in an interactive terminal environment."""
    ci_vars = ["CI", "GITHUB_ACTIONS", "JENKINS_URL", "GITLAB_CI", "CIRCLECI", "TRAVIS"]
    if any(os.environ.get(var) for var in ci_vars):
        return False
    return sys.stdout.isatty() and sys.stdin.isatty()


console = Console(
    theme=INFRALAYER_THEME,
    force_terminal=os.environ.get("FORCE_COLOR") is not None,
    no_color=os.environ.get("NO_COLOR") is not None,
)

PROMPT_STYLE = QStyle(
    [
        ("qmark", "fg:#88C0D0 bold"),
        ("question", "bold"),
        ("answer", "fg:#A3BE8C"),
    ]
)


def has_gum() -> bool:
    """Check if gum is available in PATH."""
    return shutil.which("gum") is not None


def _run_gum(args: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
    return subprocess.run(["gum", *args], **kwargs)


def success(message: str) -> None:
    console.print(f"[success]✓ {message}[/success]")


def error(message: str) -> None:
    console.print(f"[error]✗ {message}[/error]")


def warning(message: str) -> None:
    console.print(f"[warning]⚠ {message}[/warning]")


def info(message: str) -> None:
    console.print(f"[info]ℹ {message}[/info]")


def header(title: str) -> None:
    """Print a section header."""
    console.print()
    console.print(Panel(f"[bold]{title}[/bold]", border_style="cyan"))


def print_key_value(items: dict[str, Any], title: str | None = None) -> None:
    """Print key-value pairs in a nice format."""
    if title:
        console.print(f"\n[bold]{title}[/bold]")

    for key, value in items.items():
        console.print(f"  [cyan]{key}:[/cyan] {escape(str(value))}")


def confirm(message: str, default: bool = False) -> bool:
    """Ask for confirmation."""
    if has_gum():
        default_flag = "--default" if default else "--default=false"
        result = _run_gum(["confirm", default_flag, message])
        return result.returncode == 0
    return questionary.confirm(message, default=default, style=PROMPT_STYLE).ask() or False
