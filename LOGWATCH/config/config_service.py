"""
Configuration Service - Loading watches.json and answering option queries

Handles:
- Reading and validating the configuration document
- Turning raw entries into the resolved Watch / WatchGroup tree
- Merging watch options (defaults <- global <- per watch)
- Merging filter options (defaults <- document <- in-memory overrides)
- Tail-line and engine log-level settings
- Change notification after reloads and overrides
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from LOGWATCH.config.models import (
    AppConfig,
    ConfigEntry,
    ConfigGroup,
    CustomFormatConfig,
    FilterOptions,
    FilterOptionsOverride,
    Watch,
    WatchEntry,
    WatchGroup,
    WatchOptions,
    iter_watches,
)
from LOGWATCH.log_analysis.logger import DiagnosticLevel
from LOGWATCH.sysmon.path_pattern import ResolveContext, resolve_variables

DEFAULT_WATCH_OPTIONS = WatchOptions()
DEFAULT_FILTER_OPTIONS = FilterOptions()


class ConfigService:
    """
    Owns the current configuration and its watch tree

    Watch ids are handed out from 0 in document order on every load, so an
    id only identifies a watch together with its definition.
    """

    def __init__(
        self,
        config_path: Optional[os.PathLike] = None,
        data: Optional[Mapping[str, Any]] = None,
        env: Optional[Mapping[str, str]] = None,
        home: Optional[str] = None,
        workspace_folders: Optional[Sequence[Tuple[str, str]]] = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.config_path = Path(config_path) if config_path else None
        self._data = dict(data) if data is not None else None
        self.env = env if env is not None else os.environ
        self.home = home or str(Path.home())
        self.workspace_folders: List[Tuple[str, str]] = list(workspace_folders or [])

        self.config = AppConfig()
        self.watches: List[WatchEntry] = []
        self.watches_by_id: Dict[int, Watch] = {}
        self._seq_id = 0

        # in-memory overrides, never written back to the document
        self._filter_overrides: Dict[str, Any] = {}
        self._tail_lines_override: Optional[int] = None

        self._listeners: List[Callable[[], None]] = []
        self.load()

    # Loading

    def _read_document(self) -> Mapping[str, Any]:
        if self.config_path is None:
            return self._data or {}
        with open(self.config_path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _next_id(self) -> int:
        watch_id = self._seq_id
        self._seq_id += 1
        return watch_id

    def _resolve_context(self) -> ResolveContext:
        workspace_folder = self.workspace_folders[0][1] if self.workspace_folders else None
        return ResolveContext(
            home=self.home,
            env=self.env,
            workspace_folder=workspace_folder,
            allow_backslash_as_path_separator=self.config.windows.allow_backslash_as_path_separator,
        )

    def _to_watch_entry(self, entry: ConfigEntry, ctx: ResolveContext) -> WatchEntry:
        if isinstance(entry, str):
            watch = Watch(
                id=self._next_id(),
                patterns=(resolve_variables(entry, ctx),),
                title=entry,
            )
        elif isinstance(entry, ConfigGroup):
            return WatchGroup(
                group_name=entry.group_name,
                watches=tuple(self._to_watch_entry(child, ctx) for child in entry.watches),
            )
        else:
            raw_patterns = [entry.pattern] if isinstance(entry.pattern, str) else entry.pattern
            watch = Watch(
                id=self._next_id(),
                patterns=tuple(resolve_variables(p, ctx) for p in raw_patterns),
                title=entry.title,
                workspace_name=entry.workspace_name,
                options=entry.options.as_updates() if entry.options else None,
            )
        self.watches_by_id[watch.id] = watch
        return watch

    def load(self) -> bool:
        """
        Re-read the document and rebuild the watch tree

        Returns:
            False if the document could not be read or validated, in which
            case the previous configuration stays in place
        """
        try:
            config = AppConfig.model_validate(self._read_document())
        except (OSError, ValueError, ValidationError) as e:
            self.logger.error(f"Invalid configuration {self.config_path or '(inline)'}: {e}")
            return False

        self.config = config
        self.watches = []
        self.watches_by_id = {}
        self._seq_id = 0
        ctx = self._resolve_context()
        for entry in config.watch:
            self.watches.append(self._to_watch_entry(entry, ctx))
        self.logger.debug(f"Loaded {len(self.watches_by_id)} watches")
        return True

    def reload(self, data: Optional[Mapping[str, Any]] = None) -> bool:
        """Load again (optionally from new inline data) and notify listeners"""
        if data is not None:
            self._data = dict(data)
        loaded = self.load()
        if loaded:
            self._fire_change()
        return loaded

    # Change notification

    def on_change(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    def _fire_change(self) -> None:
        for listener in list(self._listeners):
            listener()

    # Queries

    def get_watches(self) -> List[WatchEntry]:
        return self.watches

    def iter_watches(self) -> Iterator[Watch]:
        return iter_watches(self.watches)

    def get_watch(self, watch_id: int) -> Optional[Watch]:
        return self.watches_by_id.get(watch_id)

    def get_workspace_folders(self) -> List[Tuple[str, str]]:
        return self.workspace_folders

    def allow_backslash_as_path_separator(self) -> bool:
        return self.config.windows.allow_backslash_as_path_separator

    def get_effective_watch_options(self, watch_id: int) -> WatchOptions:
        merged = DEFAULT_WATCH_OPTIONS.model_dump()
        if self.config.options is not None:
            merged.update(self.config.options.as_updates())
        watch = self.watches_by_id.get(watch_id)
        if watch is not None and watch.options:
            merged.update(watch.options)
        return WatchOptions(**merged)

    def get_effective_filter_options(self) -> FilterOptions:
        merged = DEFAULT_FILTER_OPTIONS.model_dump()
        if self.config.filter is not None:
            merged.update(self.config.filter.as_updates())
        merged.update(self._filter_overrides)
        return FilterOptions(**merged)

    def get_effective_tail_lines(self) -> int:
        if self._tail_lines_override is not None:
            return max(0, self._tail_lines_override)
        tail_lines = self.config.tail_lines
        if tail_lines is None or tail_lines < 0:
            return 0
        return tail_lines

    def get_log_level(self) -> DiagnosticLevel:
        return DiagnosticLevel.parse(self.config.log_level)

    def get_custom_formats(self) -> List[CustomFormatConfig]:
        return list(self.config.custom_formats)

    # In-memory overrides

    def set_filter_overrides(self, **updates: Any) -> FilterOptions:
        """
        Override filter fields for this process only

        Args:
            **updates: FilterOptions fields (snake_case or camelCase names),
                a None value drops that override again

        Returns:
            The new effective filter options
        """
        override = FilterOptionsOverride.model_validate(updates)
        for name in override.model_fields_set:
            if getattr(override, name) is None:
                self._filter_overrides.pop(name, None)
        self._filter_overrides.update(override.as_updates())
        self._fire_change()
        return self.get_effective_filter_options()

    def clear_filter_overrides(self) -> None:
        self._filter_overrides.clear()
        self._fire_change()

    def set_tail_lines(self, value: int) -> None:
        self._tail_lines_override = value
        self._fire_change()
