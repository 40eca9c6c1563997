"""
Watch Coordinator Module - Owning every live watch

Handles:
- Starting, stopping and orphan-sweeping watches keyed by watch id
- Wiring GlobWatcher notifications to reads, filtering and diffing
- Offset bookkeeping for clear/restore of a watch's contents
- State snapshots, statistics and the change-event stream for the host
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from LOGWATCH.config.config_service import ConfigService
from LOGWATCH.config.models import Watch
from LOGWATCH.errors import FileIOError
from LOGWATCH.log_analysis.logger import apply_log_level
from LOGWATCH.log_viewer.log_filter import FilterEngine, LogStats
from LOGWATCH.log_viewer.log_parser import LogParser
from LOGWATCH.log_viewer.log_reader import ContentReader, DecoderPool
from LOGWATCH.sysmon.glob_watcher import GlobChange, GlobWatcher
from LOGWATCH.util import get_workspace_dir, watch_description

NO_MATCHING_FILE = b"no matching file found"


class EventKind(Enum):
    STARTED = "started"
    STOPPED = "stopped"
    FILE_CHANGED = "fileChanged"
    CONTENT_CHANGED = "contentChanged"


@dataclass(frozen=True)
class WatchEvent:
    identity: int
    kind: EventKind


@dataclass(frozen=True)
class WatchState:
    """Read-only snapshot of one watch for the host"""
    identity: int
    running: bool
    matched_file: Optional[str]
    filtered_bytes: Optional[bytes]
    raw_bytes: Optional[bytes]
    created_at: datetime
    last_changed_at: datetime


@dataclass
class WatchRuntimeState:
    watch: Watch
    watcher: Optional[GlobWatcher]
    encoding: Optional[str]
    created_at: datetime
    last_changed_at: datetime
    last_file_name: Optional[str] = None
    offset: Optional[int] = None
    raw_bytes: Optional[bytes] = None
    filtered_bytes: Optional[bytes] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def snapshot(self) -> WatchState:
        return WatchState(
            identity=self.watch.id,
            running=self.watcher is not None,
            matched_file=self.last_file_name,
            filtered_bytes=self.filtered_bytes,
            raw_bytes=self.raw_bytes,
            created_at=self.created_at,
            last_changed_at=self.last_changed_at,
        )


class WatchCoordinator:
    """
    Owns the runtime state of every started watch

    All state changes happen on the event loop. Reads of one watch are
    serialized by its lock, so its events go out in tick completion order.
    """

    def __init__(self, config: ConfigService, reader: Optional[ContentReader] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.decoders = DecoderPool()
        self.reader = reader or ContentReader(self.decoders)
        self.filter_engine = FilterEngine(LogParser.from_config(config.get_custom_formats()))
        self._states: Dict[int, WatchRuntimeState] = {}
        self._listeners: List[Callable[[WatchEvent], None]] = []
        self._pending: set = set()
        self._unsubscribe_config = config.on_change(self._on_config_change)
        apply_log_level(config.get_log_level())

    # Events

    def subscribe(self, listener: Callable[[WatchEvent], None]) -> Callable[[], None]:
        """Register an event listener, returns a function that removes it"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _fire(self, identity: int, kind: EventKind) -> None:
        event = WatchEvent(identity, kind)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                self.logger.exception(f"Listener failed for {event}")

    # Queries

    def is_watching(self, identity: int) -> bool:
        state = self._states.get(identity)
        return state is not None and state.watcher is not None

    def get_state(self, identity: int) -> Optional[WatchState]:
        state = self._states.get(identity)
        if state is None:
            return None
        return state.snapshot()

    def get_stats(self, identity: int) -> Optional[LogStats]:
        state = self._states.get(identity)
        if state is None or state.raw_bytes is None:
            return None
        return self.filter_engine.get_stats(state.raw_bytes.decode("utf-8", errors="replace"))

    def get_content(self, identity: int, start_if_missing: bool = False) -> bytes:
        """
        Current filtered bytes, or the "no matching file" placeholder

        Args:
            identity: Watch id
            start_if_missing: Start an unknown watch in the background
        """
        state = self._states.get(identity)
        if state is not None:
            return state.filtered_bytes if state.filtered_bytes is not None else NO_MATCHING_FILE
        if start_if_missing:
            self._spawn(self.start_watch(identity, start_if_stopped=True))
        return NO_MATCHING_FILE

    # Lifecycle

    async def start_watch(self, identity: int, start_if_stopped: bool = False) -> Optional[WatchState]:
        """
        Start a watch, or return the state of one that already exists

        Args:
            identity: Watch id from the current configuration
            start_if_stopped: Restart a watch that was stopped

        Returns:
            The watch state, or None if the id is not configured
        """
        found = self._states.get(identity)
        if found is not None and (not start_if_stopped or found.watcher is not None):
            return found.snapshot()

        watch = self.config.get_watch(identity)
        if watch is None:
            self.logger.warning(f"No configured watch with id {identity}")
            return None

        options = self.config.get_effective_watch_options(identity)
        cwd = get_workspace_dir(self.config.get_workspace_folders(), watch.workspace_name)
        watcher = GlobWatcher(
            options,
            watch.patterns,
            cwd=cwd,
            allow_backslash_as_path_separator=self.config.allow_backslash_as_path_separator(),
        )
        now = datetime.now()
        state = WatchRuntimeState(
            watch=watch,
            watcher=watcher,
            encoding=options.encoding,
            created_at=now,
            last_changed_at=now,
        )

        async def on_change(change: GlobChange) -> None:
            await self._check_change(state, change.filename, watcher)

        watcher.on_change(on_change)
        self._states[identity] = state

        self.logger.info(f'Starting watch: "{self._describe(state)}"')
        self._fire(identity, EventKind.STARTED)
        await watcher.start_watch()
        return state.snapshot()

    def stop_watch(self, identity: int) -> bool:
        state = self._states.get(identity)
        if state is None or state.watcher is None:
            return False
        self._stop_state(state)
        return True

    def stop_all(self) -> None:
        for state in list(self._states.values()):
            if state.watcher is not None:
                self._stop_state(state)

    def _stop_state(self, state: WatchRuntimeState) -> None:
        state.watcher.dispose()
        state.watcher = None
        self._fire(state.watch.id, EventKind.STOPPED)
        self.logger.info(f'Stopping watch: "{self._describe(state)}"')

    def dispose(self) -> None:
        self.stop_all()
        self._unsubscribe_config()
        self._states.clear()
        self.decoders.clear()

    # Content

    async def clear_contents(self, identity: int) -> bool:
        """Hide everything currently in the file, later reads start at its end"""
        state = self._states.get(identity)
        if state is None or state.watcher is None or not state.last_file_name:
            return False
        try:
            size = (await asyncio.to_thread(Path(state.last_file_name).stat)).st_size
        except OSError as e:
            self.logger.debug(str(FileIOError(state.last_file_name, e)))
            return False
        state.offset = size
        await self._check_change(state, state.last_file_name, state.watcher)
        return True

    async def restore_contents(self, identity: int) -> bool:
        """Undo clear_contents, the next read covers the whole file again"""
        state = self._states.get(identity)
        if state is None or state.watcher is None or not state.last_file_name:
            return False
        state.offset = None
        await self._check_change(state, state.last_file_name, state.watcher)
        return True

    async def export_filtered(self, identity: int, destination) -> Optional[int]:
        """
        Write the current filtered content of a watch to a new file

        Returns:
            Number of bytes written, None when there is nothing to export
        """
        state = self._states.get(identity)
        if state is None or not state.filtered_bytes:
            return None
        data = state.filtered_bytes
        await asyncio.to_thread(Path(destination).write_bytes, data)
        self.logger.info(f"Exported {len(data)} bytes of watch {identity} to {destination}")
        return len(data)

    async def _check_change(self, state: WatchRuntimeState, filename: Optional[str],
                            origin: Optional[GlobWatcher]) -> bool:
        """
        Re-read, filter and diff one watch, emitting at most one event

        Returns:
            True if an event was emitted
        """
        async with state.lock:
            if state.watcher is None or state.watcher is not origin:
                return False

            file_changed = state.last_file_name != filename
            offset = None if file_changed else state.offset

            new_raw: Optional[bytes] = None
            unreadable = False
            if filename:
                try:
                    new_raw = await self.reader.read(
                        filename,
                        offset,
                        state.encoding,
                        self.config.get_effective_tail_lines(),
                    )
                except FileIOError as e:
                    # an unreadable file shows as "no file" until a later tick reads it
                    self.logger.debug(str(e))
                    unreadable = True

            # the watch may have been stopped while reading
            if state.watcher is not origin:
                return False

            new_filtered = None
            if new_raw is not None:
                new_filtered = self.filter_engine.filter_bytes(
                    new_raw, self.config.get_effective_filter_options())

            kind: Optional[EventKind] = None
            if file_changed:
                state.last_file_name = filename
                state.offset = None
                kind = EventKind.FILE_CHANGED

            state.raw_bytes = new_raw
            if state.filtered_bytes != new_filtered:
                state.filtered_bytes = new_filtered
                if kind is None:
                    kind = EventKind.FILE_CHANGED if unreadable else EventKind.CONTENT_CHANGED

            if kind is None:
                return False

            state.last_changed_at = datetime.now()
            if filename:
                self.logger.debug(f'Change for "{self._describe(state)}" on {filename}')
            else:
                self.logger.debug(f'Change for "{self._describe(state)}"')
            self._fire(state.watch.id, kind)
            return True

    # Configuration

    def _on_config_change(self) -> None:
        apply_log_level(self.config.get_log_level())
        self.filter_engine = FilterEngine(LogParser.from_config(self.config.get_custom_formats()))
        self.check_for_orphan_watches()
        self._spawn(self.refresh_all())

    def check_for_orphan_watches(self) -> List[int]:
        """
        Drop state of watches no longer present in the configuration

        Returns:
            The ids that were removed
        """
        removed = []
        for identity, state in list(self._states.items()):
            current = self.config.get_watch(identity)
            if current is not None and current.same_definition(state.watch):
                continue
            del self._states[identity]
            if state.watcher is not None:
                self._stop_state(state)
            removed.append(identity)
        return removed

    async def refresh_all(self) -> None:
        """Re-derive content of running watches under the current options"""
        for state in list(self._states.values()):
            if state.watcher is not None and state.last_file_name:
                await self._check_change(state, state.last_file_name, state.watcher)

    def _spawn(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            self.logger.debug("No running event loop, skipping background work")
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def wait_idle(self) -> None:
        """Wait for background refreshes started by configuration changes"""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def _describe(self, state: WatchRuntimeState) -> str:
        return watch_description(state.watch.title, state.watch.patterns)
