"""Command-line interface for curatorsync."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from importlib.metadata import PackageNotFoundError, version

from curatorsync.cli_progress import RichSyncProgress
from curatorsync.config import load_config
from curatorsync.context import AppContext
from curatorsync.contracts.exceptions import (
    ConfigError,
    EntityValidationError,
    NetworkError,
    StorageError,
    SyncError,
)
from curatorsync.contracts.sync import FullSyncResult, SyncStatus


def _package_version() -> str:
    try:
        return version("curatorsync")
    except PackageNotFoundError:
        return "0.0.0"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="curatorsync")
    parser.add_argument("--version", action="version", version=f"%(prog)s {_package_version()}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Run a full sync now")
    sync_parser.add_argument("--config", required=True, help="Path to curatorsync.json")
    sync_parser.add_argument("--no-progress", action="store_true", help="Disable the progress display")
    sync_parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    status_parser = subparsers.add_parser("status", help="Show sync settings and history")
    status_parser.add_argument("--config", required=True, help="Path to curatorsync.json")
    status_parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    reset_parser = subparsers.add_parser("reset", help="Discard all local data")
    reset_parser.add_argument("--config", required=True, help="Path to curatorsync.json")
    reset_parser.add_argument("--yes", action="store_true", help="Confirm the destructive reset")
    reset_parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    return parser


async def _run_sync(args: argparse.Namespace) -> FullSyncResult:
    config = load_config(args.config)
    async with AppContext.open(config) as context:
        if args.no_progress:
            result = await context.scheduler.perform_manual_sync()
        else:
            with RichSyncProgress() as progress:
                context.engine.progress = progress
                result = await context.scheduler.perform_manual_sync()
    print(_format_summary(result))
    if result.status == SyncStatus.ERROR:
        raise SyncError("every sync phase failed")
    return result


async def _run_status(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    async with AppContext.open(config) as context:
        last_sync = await context.settings.get_last_sync_time()
        sync_settings = await context.settings.get_sync_settings()
        history = await context.settings.get_sync_history()
        total = await context.restaurants.count()
        unsynced = len(await context.restaurants.get_unsynced())

    lines = [
        "",
        "curatorsync - status",
        "",
        f"  Database:     {config.db_path}",
        f"  Server:       {config.api_base}",
        f"  Last sync:    {last_sync.isoformat() if last_sync else 'never'}",
        f"  Interval:     {sync_settings.sync_interval_minutes} min",
        f"  On startup:   {'yes' if sync_settings.sync_on_startup else 'no'}",
        f"  Restaurants:  {total} ({unsynced} not yet exported)",
        "",
    ]
    if history:
        lines.append("  History:")
        for entry in history:
            lines.append(f"    {entry.timestamp}  {entry.status.value:<8} {entry.message}")
        lines.append("")
    print("\n".join(lines))


async def _run_reset(args: argparse.Namespace) -> None:
    if not args.yes:
        raise ConfigError("reset discards all local data; pass --yes to confirm")
    config = load_config(args.config)
    async with AppContext.open(config) as context:
        await context.store.reset("requested from the command line")
    print(f"Local data in {config.db_path} has been cleared")


def _format_summary(result: FullSyncResult) -> str:
    lines = [
        "",
        f"curatorsync - sync complete ({result.status.value})",
        "",
        f"  Curators:     {result.curators.created} created, {result.curators.linked} linked, "
        f"{result.curators.skipped} skipped",
        f"  Restaurants:  {result.restaurants.added} added, {result.restaurants.updated} updated, "
        f"{result.restaurants.linked} linked, {result.restaurants.skipped} skipped, "
        f"{result.restaurants.errors} errors",
        f"  Export:       {result.export.synced} synced, {result.export.failed} failed",
    ]
    for name, outcome in (
        ("curators", result.curators_phase),
        ("restaurants", result.restaurants_phase),
        ("export", result.export_phase),
    ):
        if not outcome.success:
            lines.append(f"  [failed] {name}: {outcome.error}")
    lines.append("")
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(message)s", stream=sys.stderr)

    commands = {"sync": _run_sync, "status": _run_status, "reset": _run_reset}

    try:
        asyncio.run(commands[args.command](args))
        return 0
    except (ConfigError, EntityValidationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 3
    except NetworkError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 4
    except (SyncError, StorageError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 5
    except Exception as exc:  # pragma: no cover
        print(f"error: {exc}", file=sys.stderr)
        return 1
