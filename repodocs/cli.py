"""CLI entrypoints for repodocs commands."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import NoReturn

from .config import ConfigError
from .errors import RepoDocsError
from .logging import configure_logging
from .orchestrator import Orchestrator
from .sources.local import repository_for_path


def _common_options(*, subcommand: bool) -> argparse.ArgumentParser:
    # Subcommand copies must not reset values given before the command name.
    suppress = argparse.SUPPRESS if subcommand else None
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=suppress or False,
        help="Increase log verbosity for troubleshooting.",
    )
    common.add_argument(
        "--log-file",
        type=Path,
        default=suppress,
        help="Also write logs (with timestamps) to this file.",
    )
    return common


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repodocs",
        description="Generate interlinked documentation for a repository's components.",
        parents=[_common_options(subcommand=False)],
    )
    shared = [_common_options(subcommand=True)]
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser(
        "generate", parents=shared, help="Extract components, plan documents and generate them."
    )
    generate.add_argument("path", nargs="?", default=".", help="Repository root (default: current directory).")
    generate.add_argument(
        "--incremental", action="store_true", help="Record the session as incremental instead of full."
    )
    generate.add_argument(
        "--no-prune", action="store_true", help="Keep documents that are no longer part of the work plan."
    )
    generate.add_argument(
        "--store",
        type=Path,
        help="JSON store file (defaults to .repodocs/store.json in the repository).",
    )

    plan = subparsers.add_parser(
        "plan", parents=shared, help="Print the work plan as JSON without generating anything."
    )
    plan.add_argument("path", nargs="?", default=".", help="Repository root (default: current directory).")

    serve = subparsers.add_parser("serve", parents=shared, help="Run the HTTP service.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def _fail(parser: argparse.ArgumentParser, message: str) -> NoReturn:
    parser.exit(1, f"{message}\n")


def _generate(parser: argparse.ArgumentParser, orchestrator: Orchestrator, args: argparse.Namespace) -> None:
    result = asyncio.run(
        orchestrator.run_for_path(
            args.path,
            session_type="incremental" if args.incremental else "full",
            prune_outdated=False if args.no_prune else None,
        )
    )
    if not result.success:
        _fail(parser, f"repodocs generate failed: {result.error}\nRun with --verbose for more details.")
    print(
        f"Generated {result.documents_generated}/{result.documents_planned} documents, "
        f"{result.links_created} links (session {result.session_id})"
    )
    if result.failed_items:
        print(f"Failed: {', '.join(result.failed_items)}")


def _plan(parser: argparse.ArgumentParser, orchestrator: Orchestrator, args: argparse.Namespace) -> None:
    try:
        plan = asyncio.run(orchestrator.preview_plan(repository_for_path(args.path)))
    except RepoDocsError as exc:
        _fail(parser, f"repodocs plan failed: {exc}")
    print(json.dumps(asdict(plan), indent=2))


_COMMANDS = {"generate": _generate, "plan": _plan}


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for repodocs commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose, log_file=args.log_file)

    if args.command == "serve":
        from .service import run_service

        run_service(host=args.host, port=args.port)
        return

    try:
        orchestrator = Orchestrator.for_repository(args.path, store_path=getattr(args, "store", None))
    except ConfigError as exc:
        _fail(parser, f"Invalid configuration: {exc}")
    except (RepoDocsError, ValueError) as exc:
        _fail(parser, f"repodocs {args.command} failed: {exc}")
    _COMMANDS[args.command](parser, orchestrator, args)


if __name__ == "__main__":
    main(sys.argv[1:])
