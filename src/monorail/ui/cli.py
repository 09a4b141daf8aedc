"""
monorail — argparse command router.

File: src/monorail/ui/cli.py

Purpose
- Map ``monorail <command>`` onto ``RepositoryOperations`` and render the result.

Functional requirements
- Every handler returns a process exit code; no handler holds repository logic.
- ``--set section.key=value`` overrides take precedence over env and file config.
"""

from __future__ import annotations

import argparse
import sys
import tomllib
from typing import TYPE_CHECKING

from monorail import __version__
from monorail.errors import ConfigError, ExternalToolError
from monorail.install import InstallMode, marker_is_current
from monorail.observability import setup_logging
from monorail.operations import OperationResult, RepositoryOperations
from monorail.ui.render import CLIRenderer

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    Handler = Callable[[argparse.Namespace, RepositoryOperations, CLIRenderer], OperationResult]


class CLIError(Exception):
    """User-facing CLI usage error with an explicit exit code."""

    def __init__(self, message: str, *, exit_code: int = 2) -> None:
        super().__init__(message)
        self.exit_code = exit_code


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported commands."""

    parser = argparse.ArgumentParser(
        prog="monorail",
        description=(
            "monorail — monorepo dependency manager.\n\n"
            "Common workflows:\n"
            "  monorail generate        Clean install and regenerate the lock file\n"
            "  monorail install         Bring the shared install up to date and link\n"
            "  monorail build           Build changed projects in dependency order\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"monorail {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to monorail.toml (default: search upward from the current folder).",
    )
    common.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override a config value, e.g. --set build.parallelism=4 (repeatable).",
    )
    common.add_argument("--json", action="store_true", help="Emit the result as JSON.")
    common.add_argument(
        "--verbose", "-v", action="store_true", default=False, help="Show detailed output."
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    def add(name: str, handler: Handler, help_text: str) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, parents=[common], help=help_text, description=help_text)
        sub.set_defaults(handler=handler)
        return sub

    add("graph", _cmd_graph, "Show the project dependency graph and build order.")
    add("check", _cmd_check, "Report external packages declared with different ranges.")

    approve = add("approve", _cmd_approve, "Update the approved packages list.")
    approve.add_argument(
        "--check-only",
        action="store_true",
        help="Fail instead of writing when the approved packages list is out of date.",
    )

    add("synthesize", _cmd_synthesize, "Write the synthesized manifest for the shared install.")

    install = add("install", _cmd_install, "Bring the shared install up to date, then link.")
    install.add_argument(
        "--mode",
        choices=[str(mode) for mode in (InstallMode.AUTO, InstallMode.INCREMENTAL, InstallMode.FULL)],
        default=str(InstallMode.AUTO),
        help="auto skips a current install; full regenerates the lock file.",
    )
    install.add_argument("--no-link", action="store_true", help="Do not link after installing.")

    generate = add(
        "generate",
        _cmd_generate,
        "Clean install of the shared cache, regenerate the lock file, and relink.",
    )
    generate.add_argument(
        "--lazy",
        "-l",
        action="store_true",
        help="Incremental install without lock generation; run a normal generate before committing.",
    )
    generate.add_argument("--no-link", action="store_true", help="Do not link after generating.")

    link = add("link", _cmd_link, "Create links from projects to siblings and the shared cache.")
    link.add_argument(
        "--force", "-f", action="store_true", help="Relink even when projects look up to date."
    )

    add("unlink", _cmd_unlink, "Remove every link created by monorail link.")
    add("status", _cmd_status, "Show install currency and which projects are linked.")

    for name, handler, help_text in (
        ("build", _cmd_build, "Build changed projects in dependency order."),
        ("rebuild", _cmd_rebuild, "Build every project, ignoring previous results."),
    ):
        build = add(name, handler, help_text)
        build.add_argument(
            "--parallelism", "-p", type=int, default=None, help="Maximum concurrent builds."
        )
        build.add_argument(
            "--fail-fast", action="store_true", default=None, help="Stop launching after a failure."
        )
        build.add_argument(
            "--to",
            dest="only",
            action="append",
            default=[],
            metavar="PROJECT",
            help="Build only this project and its dependencies (repeatable).",
        )

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        overrides = _parse_overrides(namespace.overrides)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code

    operations = RepositoryOperations.from_path(namespace.config_path, cli_overrides=overrides)
    setup_logging(operations.config["observability"])
    renderer = CLIRenderer(verbose=namespace.verbose)

    result = handler(namespace, operations, renderer)
    if namespace.json:
        renderer.json(result.to_dict())
    else:
        renderer.result(result)
    return exit_code_for(result)


def exit_code_for(result: OperationResult) -> int:
    """0 success, 1 operation failed, 2 configuration error, 3 external tool error."""

    if result.success:
        return 0
    if isinstance(result.error, ConfigError):
        return 2
    if isinstance(result.error, ExternalToolError):
        return 3
    return 1


def _parse_overrides(raw_overrides: Sequence[str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for raw in raw_overrides:
        key, separator, value = raw.partition("=")
        if not separator or not key.strip():
            raise CLIError(f"--set expects KEY=VALUE, got {raw!r}")
        try:
            overrides[key.strip()] = tomllib.loads(f"value = {value}")["value"]
        except tomllib.TOMLDecodeError:
            overrides[key.strip()] = value
    return overrides


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_graph(
    args: argparse.Namespace, ops: RepositoryOperations, renderer: CLIRenderer
) -> OperationResult:
    result = ops.build_graph()
    if result.success and renderer.verbose and not args.json:
        graph = result.payload.get("graph", {})
        edges = graph.get("edges", []) if isinstance(graph, dict) else []
        renderer.table(("consumer", "depends on"), [tuple(edge) for edge in edges])
    return result


def _cmd_check(
    args: argparse.Namespace, ops: RepositoryOperations, renderer: CLIRenderer
) -> OperationResult:
    return ops.check_versions()


def _cmd_approve(
    args: argparse.Namespace, ops: RepositoryOperations, renderer: CLIRenderer
) -> OperationResult:
    return ops.check_approved_packages(check_only=args.check_only)


def _cmd_synthesize(
    args: argparse.Namespace, ops: RepositoryOperations, renderer: CLIRenderer
) -> OperationResult:
    return ops.synthesize_manifest()


def _cmd_install(
    args: argparse.Namespace, ops: RepositoryOperations, renderer: CLIRenderer
) -> OperationResult:
    if args.mode == InstallMode.AUTO:
        return ops.install(no_link=args.no_link)
    result = ops.reconcile_install(args.mode)
    if not result.success or args.no_link:
        return result
    linked = ops.link(force=True)
    return OperationResult(
        operation="install",
        success=linked.success,
        diagnostics=result.diagnostics + linked.diagnostics,
        error=linked.error,
        payload={**result.payload, **linked.payload},
    )


def _cmd_generate(
    args: argparse.Namespace, ops: RepositoryOperations, renderer: CLIRenderer
) -> OperationResult:
    return ops.generate(lazy=args.lazy, no_link=args.no_link)


def _cmd_link(
    args: argparse.Namespace, ops: RepositoryOperations, renderer: CLIRenderer
) -> OperationResult:
    return ops.link(force=args.force)


def _cmd_unlink(
    args: argparse.Namespace, ops: RepositoryOperations, renderer: CLIRenderer
) -> OperationResult:
    return ops.unlink()


def _cmd_status(
    args: argparse.Namespace, ops: RepositoryOperations, renderer: CLIRenderer
) -> OperationResult:
    result = ops.link_status()
    current = marker_is_current(ops.layout)
    return OperationResult(
        operation="status",
        success=result.success,
        diagnostics=(f"install is {'current' if current else 'out of date'}", *result.diagnostics),
        error=result.error,
        payload={**result.payload, "install_current": current},
    )


def _cmd_build(
    args: argparse.Namespace, ops: RepositoryOperations, renderer: CLIRenderer
) -> OperationResult:
    return ops.schedule_build(
        parallelism=args.parallelism, fail_fast=args.fail_fast, only=args.only
    )


def _cmd_rebuild(
    args: argparse.Namespace, ops: RepositoryOperations, renderer: CLIRenderer
) -> OperationResult:
    return ops.schedule_build(
        parallelism=args.parallelism, fail_fast=args.fail_fast, rebuild=True, only=args.only
    )


__all__ = ["CLIError", "build_parser", "exit_code_for", "run_cli"]
