"""
Unified error handling for InfraLayer.

Every failure the engine can surface is an ``InfraLayerError`` carrying an
exit code, so CLI commands map outcomes to process status consistently.

Exit Codes:
- 0: Success
- 2: Blocked (deployment finished with failed, blocked or cancelled resources)
- 10: Configuration error
- 11: Provider error (control plane failure)
- 12: Validation error (bad template, cycle, missing parameter)
- 13: Unresolved output
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, Sequence, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    BLOCKED = 2
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    UNRESOLVED_OUTPUT = 13
    UNKNOWN_ERROR = 127


class InfraLayerError(Exception):
    """Base exception for InfraLayer errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(InfraLayerError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class ValidationError(InfraLayerError):
    """Raised when a template or its parameters are invalid."""

    exit_code = ExitCode.VALIDATION_ERROR


class CycleError(ValidationError):
    """Raised when resource dependencies form a cycle."""

    def __init__(self, members: Sequence[str]):
        self.members = list(members)
        path = " -> ".join([*self.members, self.members[0]]) if self.members else ""
        super().__init__(f"Dependency cycle detected: {path}", {"members": self.members})


class ProviderError(InfraLayerError):
    """Raised when the resource provider (control plane) fails."""

    exit_code = ExitCode.PROVIDER_ERROR


class ProviderTransientError(ProviderError):
    """Retryable provider failure (rate limiting, timeouts, 5xx)."""


class ProviderFatalError(ProviderError):
    """Non-retryable provider failure (validation, quota) or exhausted retries."""


class UnresolvedOutputError(InfraLayerError):
    """Raised when an output's source resource was never provisioned."""

    exit_code = ExitCode.UNRESOLVED_OUTPUT

    def __init__(self, output: str, resource_id: str, reason: str = "not provisioned"):
        self.output = output
        self.resource_id = resource_id
        super().__init__(
            f"Output '{output}' cannot be resolved: {resource_id} {reason}",
            {"output": output, "resource": resource_id},
        )


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - InfraLayerError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except InfraLayerError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                        **e.details,
                    )
                _print_error(format_error_message(e))
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return int(e.exit_code)
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return int(ExitCode.UNKNOWN_ERROR)

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: InfraLayerError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    extra = {k: v for k, v in error.details.items() if k not in ("members",)}
    if extra:
        detail_str = ", ".join(f"{k}={v}" for k, v in extra.items())
        msg = f"{msg} ({detail_str})"
    return msg


def _print_error(message: str) -> None:
    from rich.markup import escape

    from infralayer.cli.ux import error as print_error
    from infralayer.logging import mask

    print_error(escape(mask(message)))
