#!/usr/bin/env python3
"""
LOGWATCH - Main Entry Point
Tail the newest file of every configured watch in the terminal

Usage:
    python -m LOGWATCH.main --config watches.json
    python -m LOGWATCH.main --config watches.json --watch 0 --watch 2
    python -m LOGWATCH.main --config watches.json --workspace app=/srv/app
"""
import argparse
import asyncio
import os
import sys
from typing import Dict, List, Optional, Sequence, Tuple

from dotenv import load_dotenv
from rich.console import Console
from rich.text import Text

from LOGWATCH.config.config_service import ConfigService
from LOGWATCH.config.models import is_filter_active
from LOGWATCH.core.coordinator import EventKind, WatchCoordinator, WatchEvent
from LOGWATCH.log_analysis.logger import DEFAULT_LOG_DIR, configure_logging
from LOGWATCH.sysmon.config_watch import ConfigFileWatcher
from LOGWATCH.util import watch_description

EVENT_STYLES = {
    EventKind.STARTED: "green",
    EventKind.STOPPED: "red",
    EventKind.FILE_CHANGED: "cyan",
    EventKind.CONTENT_CHANGED: "dim",
}


def parse_workspace(value: str) -> Tuple[str, str]:
    """Accept "name=path" or a bare path named after its basename"""
    if "=" in value:
        name, path = value.split("=", 1)
    else:
        path = value
        name = os.path.basename(os.path.normpath(value))
    return name, os.path.abspath(os.path.expanduser(path))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="logwatch",
        description="Follow the newest log file matching each configured glob pattern",
    )
    parser.add_argument("--config", required=True, help="Path to the watches JSON file")
    parser.add_argument("--workspace", action="append", default=[], metavar="[NAME=]PATH",
                        help="Workspace folder for relative patterns (repeatable, first is default)")
    parser.add_argument("--watch", action="append", type=int, default=[], metavar="ID",
                        help="Only start these watch ids (repeatable)")
    parser.add_argument("--log-dir", default=DEFAULT_LOG_DIR,
                        help="Directory of the engine's own log file")
    parser.add_argument("--no-reload", action="store_true",
                        help="Do not reload when the config file changes")
    return parser


class ConsolePrinter:
    """Prints coordinator events and the newly appended filtered text"""

    def __init__(self, coordinator: WatchCoordinator, console: Console):
        self.coordinator = coordinator
        self.console = console
        self._printed: Dict[int, bytes] = {}

    def _label(self, identity: int) -> str:
        watch = self.coordinator.config.get_watch(identity)
        if watch is None:
            return f"#{identity}"
        return f"#{identity} {watch_description(watch.title, watch.patterns)}"

    def __call__(self, event: WatchEvent) -> None:
        style = EVENT_STYLES.get(event.kind, "")
        state = self.coordinator.get_state(event.identity)

        if event.kind in (EventKind.STARTED, EventKind.STOPPED):
            self.console.print(Text(f"[{event.kind.value}] {self._label(event.identity)}", style=style))
            if event.kind == EventKind.STOPPED:
                self._printed.pop(event.identity, None)
            return

        if event.kind == EventKind.FILE_CHANGED:
            matched = state.matched_file if state else None
            self.console.print(Text(
                f"[{event.kind.value}] {self._label(event.identity)} -> {matched or 'no matching file found'}",
                style=style,
            ))
            self._printed[event.identity] = b""

        content = state.filtered_bytes if state and state.filtered_bytes else b""
        previous = self._printed.get(event.identity, b"")
        if previous and content.startswith(previous):
            appended = content[len(previous):]
        else:
            appended = content
        self._printed[event.identity] = content
        if appended.strip():
            self.console.print(appended.decode("utf-8", errors="replace").rstrip("\n"),
                               markup=False, highlight=False)


def select_watch_ids(config: ConfigService, requested: Sequence[int]) -> List[int]:
    all_ids = [watch.id for watch in config.iter_watches()]
    if not requested:
        return all_ids
    return [watch_id for watch_id in requested if watch_id in all_ids]


async def run(args: argparse.Namespace, console: Console) -> None:
    configure_logging(None, args.log_dir)
    workspace_folders = [parse_workspace(value) for value in args.workspace]
    config = ConfigService(args.config, workspace_folders=workspace_folders)

    # applies the configured log level
    coordinator = WatchCoordinator(config)
    coordinator.subscribe(ConsolePrinter(coordinator, console))

    loop = asyncio.get_running_loop()
    config_watcher: Optional[ConfigFileWatcher] = None
    if not args.no_reload:
        def on_config_written(_path: str) -> None:
            loop.call_soon_threadsafe(config.reload)

        config_watcher = ConfigFileWatcher(args.config, on_config_written)
        config_watcher.start()

    starting = set()

    def on_config_change() -> None:
        # watches added by a reload are started as well
        for watch_id in select_watch_ids(config, args.watch):
            if not coordinator.is_watching(watch_id):
                task = asyncio.ensure_future(coordinator.start_watch(watch_id, start_if_stopped=True))
                starting.add(task)
                task.add_done_callback(starting.discard)
    config.on_change(on_config_change)

    watch_ids = select_watch_ids(config, args.watch)
    if not watch_ids:
        console.print("[yellow]No watches configured[/yellow]")
    if is_filter_active(config.get_effective_filter_options()):
        console.print("[magenta]Filter active[/magenta]")

    try:
        await asyncio.gather(*(coordinator.start_watch(watch_id) for watch_id in watch_ids))
        await asyncio.Event().wait()
    finally:
        if config_watcher is not None:
            config_watcher.stop()
        coordinator.dispose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv()
    console = Console()

    if not os.path.isfile(args.config):
        console.print(f"[red]Config file not found: {args.config}[/red]")
        return 1

    console.print("Starting LOGWATCH...")
    console.print("Press Ctrl+C to stop all watches")
    console.print("-" * 80)
    try:
        asyncio.run(run(args, console))
    except KeyboardInterrupt:
        console.print("\nLOGWATCH stopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
