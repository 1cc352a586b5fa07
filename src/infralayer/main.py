from __future__ import annotations

import argparse
import sys
from typing import Sequence

from infralayer import __version__


def _add_template_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("template", help="Path to template YAML file")
    parser.add_argument(
        "--param",
        dest="params",
        action="append",
        metavar="KEY=VALUE",
        help="Parameter value (repeatable; overrides --parameters-file)",
    )
    parser.add_argument("--parameters-file", help="YAML or JSON parameters file")
    parser.add_argument("--resource-group", help="Deployment resource group")
    parser.add_argument("--location", help="Default location")
    parser.add_argument("--env", help="Environment (dev, staging, prod)")
    parser.add_argument(
        "--output", choices=["text", "json"], default="text", help="Output format"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show detailed information"
    )


def _add_provider_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--provider",
        help="Resource provider (memory, local, http); default from INFRALAYER_PROVIDER",
    )
    parser.add_argument("--state-file", help="State file for the local provider")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="infralayer", description="Declarative infrastructure apply engine"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    validate_parser = subparsers.add_parser(
        "validate", help="Validate a template without contacting the provider"
    )
    _add_template_arguments(validate_parser)

    plan_parser = subparsers.add_parser(
        "plan", help="Preview what an apply would create or update (dry-run)"
    )
    _add_template_arguments(plan_parser)
    _add_provider_arguments(plan_parser)

    apply_parser = subparsers.add_parser(
        "apply", help="Provision every resource in dependency order"
    )
    _add_template_arguments(apply_parser)
    _add_provider_arguments(apply_parser)
    apply_parser.add_argument(
        "--max-parallelism", type=int, help="Maximum concurrent provider operations"
    )
    apply_parser.add_argument(
        "-y", "--yes", action="store_true", help="Skip confirmation prompt"
    )

    outputs_parser = subparsers.add_parser(
        "outputs", help="Resolve template outputs from existing resources"
    )
    _add_template_arguments(outputs_parser)
    _add_provider_arguments(outputs_parser)

    return parser


def _common_kwargs(args: argparse.Namespace) -> dict:
    return {
        "template": args.template,
        "params": args.params,
        "parameters_file": args.parameters_file,
        "resource_group": args.resource_group,
        "location": args.location,
        "env": args.env,
        "output_format": args.output,
        "verbose": args.verbose,
    }


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "validate":
        from infralayer.cli.validate import validate_command

        sys.exit(validate_command(**_common_kwargs(args)))

    if args.command == "plan":
        from infralayer.cli.plan import plan_command

        sys.exit(
            plan_command(
                **_common_kwargs(args),
                provider=args.provider,
                state_file=args.state_file,
            )
        )

    if args.command == "apply":
        from infralayer.cli.apply import apply_command

        sys.exit(
            apply_command(
                **_common_kwargs(args),
                provider=args.provider,
                state_file=args.state_file,
                max_parallelism=args.max_parallelism,
                auto_approve=args.yes,
            )
        )

    if args.command == "outputs":
        from infralayer.cli.outputs import outputs_command

        sys.exit(
            outputs_command(
                **_common_kwargs(args),
                provider=args.provider,
                state_file=args.state_file,
            )
        )

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
