"""
Glob Watcher Module - Polling one watch for its newest matching file

Handles:
- The list tick: re-walking the patterns and selecting the newest file
- The file tick: stat-polling the selected file for growth, shrink or removal
- Self-rescheduling ticks (a slow walk never overlaps the next one)
- Change notifications to async listeners, in tick completion order
- Disposal, after which nothing else is emitted
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Set

from LOGWATCH.config.models import WatchOptions
from LOGWATCH.errors import FileIOError, PatternError, WalkIOError
from LOGWATCH.log_analysis.logger import Stopwatch
from LOGWATCH.sysmon.fs_walker import FileInfo, MultiPatternWalker, SinglePatternWalker
from LOGWATCH.sysmon.path_matcher import to_path_matcher
from LOGWATCH.util import pattern_description


class ChangeKind(Enum):
    FILE = "file"
    CONTENT = "content"


@dataclass(frozen=True)
class GlobChange:
    """A selected-file change (FILE) or a stat change of the same file (CONTENT)"""
    filename: Optional[str]
    kind: ChangeKind


Listener = Callable[[GlobChange], Awaitable[None]]


def build_walker(patterns: Sequence[str], cwd: Optional[str] = None,
                 ignore_pattern: Optional[str] = None,
                 allow_backslash_as_path_separator: bool = True):
    """
    Compile the patterns of a watch into a walker

    Raises:
        PatternError: If any pattern cannot be compiled
    """
    matchers = [
        to_path_matcher(
            pattern,
            cwd=cwd,
            name_ignore_pattern=ignore_pattern,
            allow_backslash_as_path_separator=allow_backslash_as_path_separator,
        )
        for pattern in patterns
    ]
    if len(matchers) == 1:
        return SinglePatternWalker(matchers[0])
    return MultiPatternWalker(matchers)


class GlobWatcher:
    """
    Per-watch polling state machine

    The two ticks run independently. Each one reschedules itself only after
    it completed, using the file-list and file-check intervals.
    """

    def __init__(self, options: WatchOptions, patterns: Sequence[str],
                 cwd: Optional[str] = None,
                 allow_backslash_as_path_separator: bool = True):
        self.logger = logging.getLogger(__name__)
        self.options = options
        self.patterns = list(patterns)
        self.pattern_description = pattern_description(self.patterns)
        self.stopwatch = Stopwatch(self.logger)

        self.walker = None
        self.pattern_error: Optional[PatternError] = None
        try:
            self.walker = build_walker(self.patterns, cwd, options.ignore_pattern,
                                       allow_backslash_as_path_separator)
        except PatternError as e:
            # the watch stays in "no match" for its whole life
            self.pattern_error = e
            self.logger.error(f"Cannot watch '{self.pattern_description}': {e}")

        self.last_file: Optional[FileInfo] = None
        self._listeners: List[Listener] = []
        self._list_timer: Optional[asyncio.TimerHandle] = None
        self._file_timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._disposed = False

    @property
    def last_file_path(self) -> Optional[str]:
        return self.last_file.full_path if self.last_file else None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def on_change(self, listener: Listener) -> Callable[[], None]:
        """Register a listener, returns a function that removes it"""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    async def _emit(self, change: GlobChange) -> None:
        for listener in list(self._listeners):
            if self._disposed:
                return
            await listener(change)

    def _on_walk_error(self, err: WalkIOError) -> None:
        # missing permissions on some folders are expected, not errors
        self.logger.debug(str(err))

    async def start_watch(self) -> None:
        """Run one list tick and one file tick, then keep polling"""
        await self._run_list_tick()
        await self._run_file_tick()

    async def list_tick(self) -> bool:
        """
        Re-walk the patterns and select the newest matching file

        Returns:
            True if the selection changed and a notification was emitted
        """
        if self._disposed:
            return False

        newest: Optional[FileInfo] = None
        if self.walker is not None:
            def on_file(file_info: FileInfo) -> None:
                nonlocal newest
                # strict comparison keeps the first file seen on a tie
                if newest is None or file_info.mtime_ns > newest.mtime_ns:
                    newest = file_info

            self.stopwatch.start(self.pattern_description)
            await self.walker.walk(on_file, self._on_walk_error)
            self.stopwatch.stop(self.pattern_description)

        if self._disposed:
            return False

        if newest is not None:
            if self.last_file is None or newest.full_path != self.last_file.full_path:
                self.last_file = newest
                await self._emit(GlobChange(newest.full_path, ChangeKind.FILE))
                return True
        elif self.last_file is not None:
            self.last_file = None
            await self._emit(GlobChange(None, ChangeKind.FILE))
            return True
        return False

    async def file_tick(self) -> bool:
        """
        Stat the selected file and report growth, shrink or removal

        Returns:
            True if a notification was emitted
        """
        current = self.last_file
        if self._disposed or current is None:
            return False

        try:
            new_stats = await asyncio.to_thread(os.stat, current.full_path)
        except OSError as e:
            self.logger.debug(str(FileIOError(current.full_path, e)))
            if self._disposed or self.last_file is not current:
                return False
            self.last_file = None
            await self._emit(GlobChange(None, ChangeKind.FILE))
            return True

        if self._disposed or self.last_file is not current:
            return False
        if new_stats.st_mtime_ns != current.mtime_ns or new_stats.st_size != current.size:
            self.last_file = FileInfo(current.full_path, new_stats)
            await self._emit(GlobChange(current.full_path, ChangeKind.CONTENT))
            return True
        return False

    async def _run_list_tick(self) -> None:
        try:
            await self.list_tick()
        except Exception:
            self.logger.exception(f"List tick failed for '{self.pattern_description}'")
        finally:
            self._list_timer = self._schedule(self.options.file_list_interval, self._run_list_tick)

    async def _run_file_tick(self) -> None:
        try:
            await self.file_tick()
        except Exception:
            self.logger.exception(f"File tick failed for '{self.pattern_description}'")
        finally:
            self._file_timer = self._schedule(self.options.file_check_interval, self._run_file_tick)

    def _schedule(self, interval_ms: int, tick) -> Optional[asyncio.TimerHandle]:
        if self._disposed:
            return None
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0, interval_ms) / 1000, self._spawn, tick)

    def _spawn(self, tick) -> None:
        if self._disposed:
            return
        task = asyncio.ensure_future(tick())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def dispose(self) -> None:
        """Cancel both pending reschedules, in-flight ticks finish silently"""
        self._disposed = True
        if self._list_timer is not None:
            self._list_timer.cancel()
            self._list_timer = None
        if self._file_timer is not None:
            self._file_timer.cancel()
            self._file_timer = None
        self._listeners.clear()
