"""
CLI commands for InfraLayer.
"""

from infralayer.cli.apply import apply_command
from infralayer.cli.outputs import outputs_command
from infralayer.cli.plan import plan_command
from infralayer.cli.validate import validate_command

__all__ = [
    "validate_command",
    "plan_command",
    "apply_command",
    "outputs_command",
]
