"""Command-line entry point: ``python -m aidev``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

from .commands import CommandRouter
from .core.errors import AidevError, PolicyRejection
from .core.types import ScanStatus, ToolId
from .orchestration.runner import ToolRunner
from .providers.manager import ProviderManager
from .providers.openai_provider import OpenAIProvider
from .services.settings import Settings, SettingsStore
from .services.telemetry import JsonlTelemetrySink, telemetry_enabled
from .tools import DEFAULT_TOOL_FACTORIES, TOOL_REGISTRY, ToolDeps
from .tools.registry import get_tool_entry
from .utils.logging import setup_logging

LOGGER = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aidev", description="Run AIDev analysis tools from the terminal")
    parser.add_argument("--settings", type=Path, default=None, help="Path to settings.json")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List known tools")

    run = subparsers.add_parser("run", help="Run a tool against the workspace")
    run.add_argument("tool_id", help="Tool identifier, e.g. dead-code")
    run.add_argument("--path", dest="paths", action="append", default=[], help="Restrict the scan to a path")
    run.add_argument("--cwd", type=Path, default=Path.cwd(), help="Workspace directory (default: current)")
    run.add_argument("--format", choices=("markdown", "json"), default="markdown", help="Output format")
    run.add_argument("--model", default=None, help="Override the configured model")
    return parser


def _list_tools() -> int:
    for entry in TOOL_REGISTRY:
        available = "" if entry.id in DEFAULT_TOOL_FACTORIES else " (not available)"
        flags = []
        if entry.requires_model:
            flags.append("model")
        if entry.mutating:
            flags.append("mutating")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"{entry.id.value:<14} {entry.name}{suffix}{available}")
    return 0


async def _run_tool(args: argparse.Namespace, settings: Settings) -> int:
    try:
        tool_id = ToolId.parse(args.tool_id)
    except AidevError as exc:
        print(exc.message, file=sys.stderr)
        return 2
    entry = get_tool_entry(tool_id)
    if entry is None:
        print(f"No registry entry for {tool_id.value}", file=sys.stderr)
        return 2

    telemetry = JsonlTelemetrySink() if telemetry_enabled(settings) else None
    providers = ProviderManager(settings)
    providers.register(OpenAIProvider(settings))
    await providers.activate()

    cwd = args.cwd.expanduser().resolve()
    runner = ToolRunner(
        workspace=lambda: cwd,
        providers=providers,
        factories=DEFAULT_TOOL_FACTORIES,
        telemetry=telemetry,
        settings=settings,
    )
    router = CommandRouter(runner, settings=settings)
    try:
        result = await router.execute(entry.command_id, paths=args.paths)
    except PolicyRejection as exc:
        LOGGER.warning("Command %s rejected: %s", entry.command_id, exc.message)
        print(exc.message, file=sys.stderr)
        return 2
    finally:
        runner.dispose()
        await providers.dispose()
        if telemetry is not None:
            telemetry.dispose()

    if result is None:
        return 2
    exporter = DEFAULT_TOOL_FACTORIES[tool_id](ToolDeps(cwd=cwd, settings=settings))
    print(exporter.export(result, args.format))
    return 1 if result.status is ScanStatus.FAILED else 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.debug else logging.WARNING)

    if args.command == "list":
        return _list_tools()

    overrides = {"model": args.model} if args.model else None
    settings = SettingsStore(args.settings).load(overrides=overrides)
    if settings.debug_logging and not args.debug:
        setup_logging(logging.DEBUG, force=True)
    return asyncio.run(_run_tool(args, settings))


if __name__ == "__main__":
    raise SystemExit(main())
