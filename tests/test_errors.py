"""Tests for the error taxonomy and CLI error handling."""

import pytest

from infralayer.core.errors import (
    ConfigurationError,
    CycleError,
    ExitCode,
    InfraLayerError,
    ProviderFatalError,
    ProviderTransientError,
    UnresolvedOutputError,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)


class TestExitCodes:
    """Each error class maps to a stable exit code."""

    @pytest.mark.parametrize(
        "error,code",
        [
            (ConfigurationError("x"), ExitCode.CONFIG_ERROR),
            (ValidationError("x"), ExitCode.VALIDATION_ERROR),
            (CycleError(["t/a", "t/b"]), ExitCode.VALIDATION_ERROR),
            (ProviderTransientError("x"), ExitCode.PROVIDER_ERROR),
            (ProviderFatalError("x"), ExitCode.PROVIDER_ERROR),
            (UnresolvedOutputError("appUrl", "container.app/web"), ExitCode.UNRESOLVED_OUTPUT),
            (InfraLayerError("x"), ExitCode.UNKNOWN_ERROR),
        ],
    )
    def test_exit_code(self, error, code):
        assert error.exit_code == code

    def test_cycle_message_names_members(self):
        error = CycleError(["t/a", "t/b", "t/c"])

        assert error.message == "Dependency cycle detected: t/a -> t/b -> t/c -> t/a"
        assert error.details == {"members": ["t/a", "t/b", "t/c"]}

    def test_unresolved_output_message(self):
        error = UnresolvedOutputError("appUrl", "container.app/web")

        assert error.message == "Output 'appUrl' cannot be resolved: container.app/web not provisioned"


class TestFormatErrorMessage:
    def test_details_appended(self):
        error = ValidationError("Bad template", {"path": "app.yaml"})

        assert format_error_message(error) == "Bad template (path=app.yaml)"

    def test_cycle_members_not_repeated(self):
        error = CycleError(["t/a", "t/b"])

        assert format_error_message(error) == error.message


class TestMainWithErrorHandling:
    """Tests for the CLI entry point decorator."""

    def test_success_passthrough(self):
        @main_with_error_handling()
        def command():
            return 0

        assert command() == 0

    def test_infralayer_error_mapped(self, capsys):
        @main_with_error_handling()
        def command():
            raise ValidationError("Missing required parameter(s): pw")

        assert command() == ExitCode.VALIDATION_ERROR
        assert "Missing required parameter(s): pw" in capsys.readouterr().out

    def test_keyboard_interrupt(self):
        @main_with_error_handling()
        def command():
            raise KeyboardInterrupt

        assert command() == 130

    def test_unexpected_error(self):
        @main_with_error_handling(log_errors=False)
        def command():
            raise RuntimeError("boom")

        assert command() == ExitCode.UNKNOWN_ERROR

    def test_preserves_metadata(self):
        @main_with_error_handling()
        def my_command():
            """Docstring."""
            return 0

        assert my_command.__name__ == "my_command"
        assert my_command.__doc__ == "Docstring."
