"""Command-line entry points: ``serve``, ``sync`` and ``manifest``."""

from __future__ import annotations

import argparse
import logging
import os
import threading
from pathlib import Path
from typing import Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from .client import ProgressSnapshot, SyncClient, SyncResult
from .configuration import (
    ClientSettings,
    ConfigurationBundle,
    ServerSettings,
    load_configuration,
    log_diagnostics,
)
from .errors import ManifestFetchError
from .logging_utils import setup_logging
from .server import FileServer, ManifestBuilder, ManifestCache

logger = logging.getLogger("fileferry.cli")

EXIT_OK = 0
EXIT_FILES_FAILED = 1
EXIT_ABORTED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fileferry", description="Hash-based file tree sync.")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=(
            "Directory of YAML configuration files "
            "(default: $FILEFERRY_CONFIG_DIR or the config/ directory beside the package)."
        ),
    )
    parser.add_argument("--log-level", default=None, help="Override logging.level.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Serve the manifest and files over HTTP.")

    sync = sub.add_parser("sync", help="Bring the local tree up to date.")
    sync.add_argument("--url", default=None, help="Override client.manifest_url.")
    sync.add_argument("--target", type=Path, default=None, help="Override client.target_dir.")
    sync.add_argument("--dry-run", action="store_true", help="Only report what would be downloaded.")

    manifest = sub.add_parser("manifest", help="Print the manifest for a directory.")
    manifest.add_argument("root", type=Path)
    return parser


def configure(args: argparse.Namespace) -> ConfigurationBundle:
    bundle = load_configuration(args.config)
    logging_config = bundle.merged.get("logging", {}) or {}
    level = args.log_level or os.environ.get("FILEFERRY_LOG_LEVEL") or logging_config.get("level", "INFO")
    log_file = logging_config.get("file") or None
    bundle.log_path = setup_logging(
        level,
        log_file=(bundle.base_dir / log_file) if log_file else None,
        structured=bool(logging_config.get("structured", False)),
    )
    log_diagnostics(bundle)
    return bundle


def run_serve(bundle: ConfigurationBundle) -> int:
    settings = ServerSettings.from_config(bundle.merged, bundle.base_dir)
    server = FileServer(settings)
    return EXIT_OK if server.start(blocking=True) else EXIT_ABORTED


def run_sync(
    bundle: ConfigurationBundle,
    args: argparse.Namespace,
    console: Console,
) -> int:
    settings = ClientSettings.from_config(bundle.merged, bundle.base_dir)
    if args.url:
        settings.manifest_url = args.url
    if args.target:
        settings.target_dir = args.target.resolve()

    cancel_event = threading.Event()

    if args.dry_run:
        client = SyncClient(settings, cancel_event=cancel_event)
        try:
            report = client.diff()
        except ManifestFetchError as exc:
            console.print(f"[red][sync] Manifest unavailable:[/red] {exc}")
            return EXIT_ABORTED
        for item in report.work.items():
            console.print(f"{item.reason:>10}  {item.name}")
        console.print(f"[sync] {report.queued} of {report.checked} files need downloading")
        return EXIT_OK

    with Progress(
        TextColumn("[bold]sync[/bold]"),
        BarColumn(),
        TextColumn("{task.completed:.0f} files"),
        TextColumn("{task.fields[rate]}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("download", total=None, rate="")

        def _on_progress(snapshot: ProgressSnapshot) -> None:
            progress.update(
                task,
                total=snapshot.total_count,
                completed=snapshot.completed_count,
                rate=f"{snapshot.cumulative_bytes} bytes, {snapshot.bytes_per_second:.0f} B/s",
            )

        client = SyncClient(settings, progress_callback=_on_progress, cancel_event=cancel_event)
        try:
            result = client.run()
        except ManifestFetchError as exc:
            console.print(f"[red][sync] Manifest unavailable:[/red] {exc}")
            return EXIT_ABORTED
        except KeyboardInterrupt:
            client.cancel()
            console.print("[sync] Interrupted")
            return EXIT_ABORTED

    render_result(console, result)
    if result.cancelled:
        return EXIT_ABORTED
    return EXIT_OK if result.success else EXIT_FILES_FAILED


def render_result(console: Console, result: SyncResult) -> None:
    table = Table(title="Sync Result", show_header=False)
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("Status", "ok" if result.success else "incomplete")
    table.add_row("Checked", str(result.checked))
    table.add_row("Queued", str(result.queued))
    table.add_row("Downloaded", str(result.downloaded))
    table.add_row("Bytes", str(result.bytes_transferred))
    table.add_row("Elapsed", f"{result.elapsed:.2f}s")
    table.add_row("Message", result.message)
    console.print(table)

    if result.failed:
        failures = Table(title="Failed Files")
        failures.add_column("File")
        failures.add_column("Attempts", justify="right")
        failures.add_column("Reason")
        for failure in result.failed:
            failures.add_row(failure.name, str(failure.attempts), failure.reason)
        console.print(failures)


def run_manifest(root: Path, console: Console) -> int:
    root = root.resolve()
    if not root.is_dir():
        console.print(f"[red][manifest] Not a directory:[/red] {root}")
        return EXIT_ABORTED
    builder = ManifestBuilder(root, ManifestCache(root / ".fileferry-manifest.json"))
    console.print_json(builder.scan().to_json())
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for ``python -m fileferry``."""
    args = build_parser().parse_args(argv)
    console = Console()

    if args.command == "manifest":
        setup_logging(args.log_level or "WARNING")
        return run_manifest(args.root, console)

    bundle = configure(args)
    if bundle.status == "invalid":
        console.print("[red]Configuration is invalid; see the log for details.[/red]")
        return EXIT_ABORTED

    if args.command == "serve":
        return run_serve(bundle)
    return run_sync(bundle, args, console)


__all__ = ["build_parser", "main", "render_result"]
