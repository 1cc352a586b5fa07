"""Core modules for InfraLayer - centralized definitions and utilities."""

from infralayer.core.errors import (
    ConfigurationError,
    CycleError,
    ExitCode,
    InfraLayerError,
    ProviderError,
    ProviderFatalError,
    ProviderTransientError,
    UnresolvedOutputError,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "InfraLayerError",
    "ConfigurationError",
    "ValidationError",
    "CycleError",
    "ProviderError",
    "ProviderTransientError",
    "ProviderFatalError",
    "UnresolvedOutputError",
    "main_with_error_handling",
    "format_error_message",
]
