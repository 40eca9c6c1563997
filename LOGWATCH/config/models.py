"""
Configuration Models - What the watches.json document contains

Two families of types live here:
- pydantic models validating the raw document (camelCase keys)
- the resolved, immutable watch tree the engine works with
  (Watch | WatchGroup), rebuilt wholesale on every reload
"""
from dataclasses import dataclass
from typing import Dict, Iterator, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

MinLevelName = Literal["ERROR", "WARN", "INFO", "DEBUG", "TRACE", "ALL"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _upper_level(value):
    if isinstance(value, str):
        return value.strip().upper()
    return value


class WatchOptions(_CamelModel):
    """Polling cadence and walk settings of a watch"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    file_check_interval: int = 500
    file_list_interval: int = 2000
    ignore_pattern: Optional[str] = "(node_modules|.git)"
    encoding: Optional[str] = None


class WatchOptionsOverride(_CamelModel):
    """Partial WatchOptions, unset and null fields leave the lower layer in place"""
    file_check_interval: Optional[int] = None
    file_list_interval: Optional[int] = None
    ignore_pattern: Optional[str] = None
    encoding: Optional[str] = None

    def as_updates(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class FilterOptions(_CamelModel):
    """What the filter keeps and how it renders kept lines"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    min_level: MinLevelName = "ALL"
    search_pattern: Optional[str] = None
    search_regex: Optional[str] = None
    clean_format: bool = False
    exclude_patterns: Optional[Tuple[str, ...]] = None
    include_patterns: Optional[Tuple[str, ...]] = None

    @field_validator("min_level", mode="before")
    @classmethod
    def normalize_level(cls, value):
        return _upper_level(value)


class FilterOptionsOverride(_CamelModel):
    min_level: Optional[MinLevelName] = None
    search_pattern: Optional[str] = None
    search_regex: Optional[str] = None
    clean_format: Optional[bool] = None
    exclude_patterns: Optional[List[str]] = None
    include_patterns: Optional[List[str]] = None

    @field_validator("min_level", mode="before")
    @classmethod
    def normalize_level(cls, value):
        return _upper_level(value)

    def as_updates(self) -> dict:
        return self.model_dump(exclude_unset=True, exclude_none=True)


def is_filter_active(options: FilterOptions) -> bool:
    """True unless every criterion sits at its neutral default"""
    return (
        options.min_level not in ("ALL", "TRACE")
        or bool(options.search_pattern)
        or bool(options.search_regex)
        or options.clean_format
        or bool(options.exclude_patterns)
        or bool(options.include_patterns)
    )


class FormatGroups(_CamelModel):
    """Capture-group index per field, 0 or less means the field is absent"""
    timestamp: int = -1
    level: int = -1
    source: int = -1
    message: int = -1


class CustomFormatConfig(_CamelModel):
    name: str
    pattern: str
    groups: FormatGroups = Field(default_factory=FormatGroups)


class WindowsConfig(_CamelModel):
    allow_backslash_as_path_separator: bool = True


class ConfigWatch(_CamelModel):
    title: Optional[str] = None
    pattern: Union[str, List[str]]
    workspace_name: Optional[str] = None
    options: Optional[WatchOptionsOverride] = None


class ConfigGroup(_CamelModel):
    group_name: str
    watches: List["ConfigEntry"] = Field(default_factory=list)


ConfigEntry = Union[str, ConfigGroup, ConfigWatch]
ConfigGroup.model_rebuild()


class AppConfig(_CamelModel):
    """The whole configuration document"""
    watch: List[ConfigEntry] = Field(default_factory=list)
    options: Optional[WatchOptionsOverride] = None
    filter: Optional[FilterOptionsOverride] = None
    tail_lines: Optional[int] = None
    log_level: Optional[str] = None
    windows: WindowsConfig = Field(default_factory=WindowsConfig)
    custom_formats: List[CustomFormatConfig] = Field(default_factory=list)


@dataclass(frozen=True)
class Watch:
    """A resolved watch: patterns are already variable-expanded"""
    id: int
    patterns: Tuple[str, ...]
    title: Optional[str] = None
    workspace_name: Optional[str] = None
    options: Optional[Dict[str, object]] = None
    kind: Literal["watch"] = "watch"

    @property
    def is_multi(self) -> bool:
        return len(self.patterns) > 1

    def same_definition(self, other: "Watch") -> bool:
        """Whether other still describes this watch (options aside)"""
        return (
            self.id == other.id
            and self.patterns == other.patterns
            and self.title == other.title
            and self.workspace_name == other.workspace_name
        )


@dataclass(frozen=True)
class WatchGroup:
    """Purely organisational container"""
    group_name: str
    watches: Tuple[Union["Watch", "WatchGroup"], ...] = ()
    kind: Literal["group"] = "group"


WatchEntry = Union[Watch, WatchGroup]


def iter_watches(entries: Sequence[WatchEntry]) -> Iterator[Watch]:
    """Flatten a watch tree depth-first"""
    for entry in entries:
        if isinstance(entry, WatchGroup):
            yield from iter_watches(entry.watches)
        else:
            yield entry
