"""Command-line entry point for building the binding bundles."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .config import discover_config, load_config
from .errors import BuildError
from .pipeline import build_targets, create_context, list_targets

logger = logging.getLogger("bindings_pack")


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "build":
        return _handle_build(args)
    if args.command == "targets":
        return _handle_targets(args)

    parser.error(f"Unknown command '{args.command}'")
    return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bindings-pack", description="Package generated WebAssembly bindings.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", help="Build edge and/or server bundles.")
    build.add_argument(
        "--target",
        action="append",
        choices=["edge", "server", "all"],
        help="Target to build (repeatable, default: all).",
    )
    build.add_argument("--config", help="YAML config file (default: bindings-pack.yaml in the project root).")
    build.add_argument("--project-root", help="Project root (default: config directory or cwd).")
    build.add_argument("--json", action="store_true", help="Print build results as JSON.")

    subparsers.add_parser("targets", help="List available targets.")
    return parser


def _handle_build(args: argparse.Namespace) -> int:
    project_root = Path(args.project_root).resolve() if args.project_root else None
    config_path = Path(args.config) if args.config else discover_config(project_root or Path.cwd())
    targets = _resolve_targets(args.target)

    try:
        config = load_config(config_path, project_root=project_root)
        context = create_context(config)
        results = asyncio.run(build_targets(targets, context))
    except BuildError as exc:
        logger.error("%s", exc)
        print(str(exc), file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps([result.to_dict() for result in results], indent=2))
    else:
        for result in results:
            print(f"{result.target}: {result.entry}")
    logger.info("Finished build")
    return 0


def _handle_targets(args: argparse.Namespace) -> int:
    for spec in list_targets():
        print(f"{spec.name}\t{spec.description}")
    return 0


def _resolve_targets(values: Optional[List[str]]) -> List[str]:
    if not values or "all" in values:
        return [spec.name for spec in list_targets()]
    ordered: List[str] = []
    for value in values:
        if value not in ordered:
            ordered.append(value)
    return ordered


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
