"""
Command-line interface for the suite runner.

Provides commands for running suites, validating suite files, inspecting
target addresses, and managing the variable registry.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

import structlog

from suiterunner import __version__
from suiterunner.config import load_runner_config
from suiterunner.dsl.parser import SuiteLoader, SuiteLoadError
from suiterunner.orchestrator.controller import ParallelRunResult, RunController
from suiterunner.orchestrator.target import parse_execution_target
from suiterunner.variables.registry import Variable, VariableRegistry, VariableType

logger = structlog.get_logger(__name__)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args, extras = parser.parse_known_args(argv)

    configure_logging(args.verbose if hasattr(args, "verbose") else False)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    if args.command == "run":
        try:
            args.filters = parse_filter_args(extras)
        except ValueError as e:
            parser.error(str(e))
    elif extras:
        parser.error(f"unrecognized arguments: {' '.join(extras)}")

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as e:
        logger.error("Command failed", error=str(e))
        if args.verbose:
            raise
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="suiterunner",
        description="Run declarative JSON API and UI test suites",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"suiterunner {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--config",
        help="Path to a YAML runner config file",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser(
        "run",
        help="Run a target, a suite file, or every suite",
        epilog="Any other --KEY=VALUE argument is a suite filter "
        "(applicationName, testType, or a tag key).",
    )
    run_parser.add_argument(
        "--target",
        help='Target address, e.g. "s1:Checkout > tc1:Login > 0:Valid user"',
    )
    run_parser.add_argument(
        "--file",
        help="Suite file to run",
    )
    run_parser.add_argument(
        "--max-parallel",
        type=int,
        help="Maximum suites run in parallel",
    )
    run_parser.add_argument(
        "--suites-dir",
        help="Directory containing suite files",
    )
    run_parser.add_argument(
        "--reports-dir",
        help="Directory for result files",
    )
    headless = run_parser.add_mutually_exclusive_group()
    headless.add_argument(
        "--headless",
        dest="headless",
        action="store_const",
        const=True,
        default=None,
        help="Run browsers headless",
    )
    headless.add_argument(
        "--headed",
        dest="headless",
        action="store_const",
        const=False,
        help="Run browsers with a visible window",
    )
    # Also accepted after "run"; SUPPRESS keeps the top-level values otherwise.
    run_parser.add_argument("--config", default=argparse.SUPPRESS, help=argparse.SUPPRESS)
    run_parser.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS, help=argparse.SUPPRESS
    )
    run_parser.set_defaults(func=cmd_run)

    validate_parser = subparsers.add_parser("validate", help="Validate suite files")
    validate_parser.add_argument(
        "paths",
        nargs="+",
        help="Suite files or directories",
    )
    validate_parser.set_defaults(func=cmd_validate)

    target_parser = subparsers.add_parser("parse-target", help="Parse a target address")
    target_parser.add_argument("address", help="Target address")
    target_parser.set_defaults(func=cmd_parse_target)

    variables_parser = subparsers.add_parser("variables", help="Manage the variable registry")
    variables_sub = variables_parser.add_subparsers(dest="variables_command")

    list_parser = variables_sub.add_parser("list", help="List variables")
    list_parser.add_argument("--suite-id", help="Suite id for local variables")
    list_parser.add_argument("--test-case-id", help="Test case id for local variables")
    list_parser.set_defaults(func=cmd_variables_list)

    add_parser = variables_sub.add_parser("add", help="Add a variable")
    add_parser.add_argument("name", help="Variable name")
    add_parser.add_argument("value", help="Variable value")
    add_parser.add_argument("--local", action="store_true", help="Create a local variable")
    add_parser.add_argument("--suite-id", help="Owning suite id (local variables)")
    add_parser.add_argument("--test-case-id", help="Owning test case id (local variables)")
    add_parser.add_argument("--description", help="Free-text description")
    add_parser.add_argument(
        "--force",
        action="store_true",
        help="Replace a conflicting variable",
    )
    add_parser.set_defaults(func=cmd_variables_add)

    delete_parser = variables_sub.add_parser("delete", help="Delete a variable")
    delete_parser.add_argument("name", help="Variable name")
    delete_parser.add_argument("--suite-id", help="Owning suite id (local variables)")
    delete_parser.add_argument("--test-case-id", help="Owning test case id (local variables)")
    delete_parser.set_defaults(func=cmd_variables_delete)

    cleanup_parser = variables_sub.add_parser("cleanup", help="Delete all local variables")
    cleanup_parser.set_defaults(func=cmd_variables_cleanup)

    return parser


def parse_filter_args(extras: Sequence[str]) -> dict[str, str]:
    """Turn leftover ``--key=value`` / ``--key value`` arguments into filters."""
    filters: dict[str, str] = {}
    tokens = list(extras)
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if not token.startswith("--") or len(token) == 2:
            raise ValueError(f"unrecognized argument: {token}")
        key, sep, value = token[2:].partition("=")
        if not sep:
            if i + 1 < len(tokens) and not tokens[i + 1].startswith("--"):
                value = tokens[i + 1]
                i += 1
            else:
                value = "true"
        filters[key] = value
        i += 1
    return filters


def configure_logging(verbose: bool) -> None:
    """Configure structured logging."""
    level = "DEBUG" if verbose else "INFO"
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if verbose else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Logs go to stderr so the summary block owns stdout.
    logging.basicConfig(level=getattr(logging, level), stream=sys.stderr)


def cmd_run(args: argparse.Namespace) -> int:
    """Run a target, a file, or every suite."""
    config = load_runner_config(
        args.config,
        max_parallel_suites=args.max_parallel,
        suites_dir=args.suites_dir,
        reports_dir=args.reports_dir,
        headless=args.headless,
    )
    controller = RunController(config)
    result = controller.run(target=args.target, file=args.file, filters=args.filters)

    if result is None:
        print("No suite matched the target and filters")
        return 0
    if isinstance(result, ParallelRunResult):
        print(
            f"\n{result.run_id} completed with max parallelism = {result.max_parallel}: "
            f"{len(result.summaries)} run, {len(result.skipped_suites)} skipped, "
            f"{len(result.failed_suites)} errored"
        )
    return 0 if result.success else 1


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate suite files."""
    loader = SuiteLoader()
    errors = 0

    for path_str in args.paths:
        path = Path(path_str)

        if not path.exists():
            print(f"Error: Path not found: {path}", file=sys.stderr)
            errors += 1
            continue

        files = sorted(path.glob("*.json")) if path.is_dir() else [path]
        for file_path in files:
            try:
                suite = loader.load_file(file_path)
                print(f"Valid: {file_path} ({suite.suite_name}, {len(suite.test_cases)} test cases)")
            except SuiteLoadError as e:
                print(f"Invalid: {file_path}", file=sys.stderr)
                print(f"  {e}", file=sys.stderr)
                errors += 1

    if errors:
        print(f"\n{errors} file(s) with errors", file=sys.stderr)
        return 1

    print("\nAll files valid")
    return 0


def cmd_parse_target(args: argparse.Namespace) -> int:
    """Print a parsed target as JSON."""
    target = parse_execution_target(args.address)
    print(json.dumps(target.to_dict(), indent=2))
    return 0


def _registry(args: argparse.Namespace) -> VariableRegistry:
    return VariableRegistry(load_runner_config(args.config).variables_file)


def cmd_variables_list(args: argparse.Namespace) -> int:
    """List registry variables."""
    variables = _registry(args).get_variables(args.suite_id, args.test_case_id)
    print(
        json.dumps(
            {
                scope: [v.model_dump(by_alias=True, exclude_none=True) for v in records]
                for scope, records in variables.items()
            },
            indent=2,
        )
    )
    return 0


def cmd_variables_add(args: argparse.Namespace) -> int:
    """Add a registry variable."""
    if args.local and not (args.suite_id and args.test_case_id):
        print("Error: local variables need --suite-id and --test-case-id", file=sys.stderr)
        return 1

    variable = Variable(
        name=args.name,
        value=args.value,
        type=VariableType.LOCAL if args.local else VariableType.GLOBAL,
        suite_id=args.suite_id if args.local else None,
        test_case_id=args.test_case_id if args.local else None,
        description=args.description,
    )
    result = _registry(args).add_variable(variable, force_override=args.force)

    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        if result.conflict and result.conflict.suggested_name:
            print(f"Suggested name: {result.conflict.suggested_name}", file=sys.stderr)
        return 1

    print(f"Added {variable.type} variable '{variable.name}'")
    return 0


def cmd_variables_delete(args: argparse.Namespace) -> int:
    """Delete a registry variable."""
    if not _registry(args).delete_variable(args.name, args.suite_id, args.test_case_id):
        print(f"Error: Variable '{args.name}' not found", file=sys.stderr)
        return 1
    print(f"Deleted variable '{args.name}'")
    return 0


def cmd_variables_cleanup(args: argparse.Namespace) -> int:
    """Delete every local registry variable."""
    removed = _registry(args).cleanup_all_local_variables()
    print(f"Removed {removed} local variable(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
