"""
File System Walker Module - Enumerating files that match a watch pattern

Handles:
- Descent from a pattern's literal base directory
- Pruning by the segments before the first ** and by the ignore matcher
- Resolving symbolic links before classifying them
- Reporting per-entry failures without stopping sibling entries
- Walking several patterns of one watch concurrently

Blocking directory reads and stats run in worker threads through
asyncio.to_thread, so a walk suspends instead of blocking the event loop.
"""
import asyncio
import os
import stat as stat_module
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from LOGWATCH.errors import WalkIOError
from LOGWATCH.sysmon.path_matcher import PathMatcher


@dataclass(frozen=True)
class FileInfo:
    """A matched file and the stat taken when it was found"""
    full_path: str
    stats: os.stat_result

    @property
    def mtime_ns(self) -> int:
        return self.stats.st_mtime_ns

    @property
    def size(self) -> int:
        return self.stats.st_size


OnFile = Callable[[FileInfo], None]
OnError = Callable[[WalkIOError], None]

# (name, is_dir, is_symlink)
_DirEntry = Tuple[str, bool, bool]


def _ignore_error(_: WalkIOError) -> None:
    pass


def _list_dir(path: str) -> List[_DirEntry]:
    entries = []
    with os.scandir(path or os.curdir) as it:
        for entry in it:
            try:
                is_symlink = entry.is_symlink()
                is_dir = not is_symlink and entry.is_dir(follow_symlinks=False)
            except OSError:
                # classified later by a full stat
                is_symlink, is_dir = True, False
            entries.append((entry.name, is_dir, is_symlink))
    return entries


class _PatternWalk:
    """One walk of one PathMatcher"""

    def __init__(self, matcher: PathMatcher, on_file: OnFile, on_error: Optional[OnError],
                 pathmod=os.path):
        self.matcher = matcher
        self.on_file = on_file
        self.on_error = on_error or _ignore_error
        self.pathmod = pathmod

    def _report(self, path: str, err: OSError) -> None:
        self.on_error(WalkIOError(path, err))

    async def run(self) -> None:
        await self._handle_unknown(self.matcher.base_path, self.matcher.before_globstar_parts)

    async def _handle_unknown(self, full_path: str, parts: Tuple[str, ...]) -> None:
        try:
            stats = await asyncio.to_thread(os.stat, full_path or os.curdir)
        except OSError as e:
            self._report(full_path, e)
            return
        if stat_module.S_ISDIR(stats.st_mode):
            await self._handle_dir(full_path, parts)
        else:
            self._handle_file(full_path, stats)

    async def _handle_dir(self, full_path: str, parts: Tuple[str, ...]) -> None:
        try:
            entries = await asyncio.to_thread(_list_dir, full_path)
        except OSError as e:
            self._report(full_path, e)
            return

        pending = []
        for name, is_dir, is_symlink in entries:
            if self.matcher.name_ignore_matcher(name):
                continue
            if parts and not self.matcher.segment_matches(name, parts[0]):
                continue
            remaining = parts[1:]
            child_path = self.pathmod.join(full_path, name)
            if is_dir:
                if not remaining and not self.matcher.has_globstar:
                    # nothing below this directory can match the full pattern
                    continue
                pending.append(self._handle_dir(child_path, remaining))
            elif is_symlink:
                pending.append(self._handle_unknown(child_path, remaining))
            elif self.matcher.full_path_matcher(child_path):
                pending.append(self._stat_file(child_path))

        if pending:
            await asyncio.gather(*pending)

    async def _stat_file(self, full_path: str) -> None:
        try:
            stats = await asyncio.to_thread(os.stat, full_path)
        except OSError as e:
            self._report(full_path, e)
            return
        self._handle_file(full_path, stats)

    def _handle_file(self, full_path: str, stats: os.stat_result) -> None:
        if not self.matcher.full_path_matcher(full_path):
            return
        self.on_file(FileInfo(full_path=full_path, stats=stats))


async def walk_pattern(matcher: PathMatcher, on_file: OnFile,
                       on_error: Optional[OnError] = None, pathmod=os.path) -> None:
    """
    Walk one pattern, calling on_file for every matching file

    Completes only after every directory read and stat of the walk finished.
    """
    await _PatternWalk(matcher, on_file, on_error, pathmod).run()


class SinglePatternWalker:

    def __init__(self, matcher: PathMatcher):
        self.matcher = matcher

    async def walk(self, on_file: OnFile, on_error: Optional[OnError] = None) -> None:
        await walk_pattern(self.matcher, on_file, on_error)


class MultiPatternWalker:
    """Walks every pattern of a watch in parallel and joins on all of them"""

    def __init__(self, matchers: Sequence[PathMatcher]):
        self.matchers = list(matchers)

    async def walk(self, on_file: OnFile, on_error: Optional[OnError] = None) -> None:
        await asyncio.gather(*(walk_pattern(m, on_file, on_error) for m in self.matchers))


async def collect_files(walker, on_error: Optional[OnError] = None) -> List[FileInfo]:
    """Run a walker and return everything it found"""
    found: List[FileInfo] = []
    await walker.walk(found.append, on_error)
    return found
