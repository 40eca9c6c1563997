"""
Log Parser Module - Structured parsing of watched log lines

Handles:
- Severity identification (ERROR, WARN, INFO, DEBUG, TRACE)
- An ordered list of line formats, caller-supplied ones first
- Timestamp, source and message extraction per format
- Falling back to "unparsed" when no format matches

Timestamps are kept as the text found in the line; nothing here needs them
as datetimes.
"""
import logging
import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, List, Optional, Sequence

from LOGWATCH.errors import PatternError


class Severity(IntEnum):
    """Log line severity, lower value is more severe"""
    ERROR = 1
    WARN = 2
    INFO = 3
    DEBUG = 4
    TRACE = 5

    def at_least(self, threshold: "Severity") -> bool:
        """True if this severity is as severe as threshold or more"""
        return self <= threshold

    @classmethod
    def threshold(cls, min_level: Optional[str]) -> "Severity":
        """Map a filter min_level name to a threshold, ALL shows everything"""
        if not min_level:
            return cls.TRACE
        name = min_level.strip().upper()
        if name == "ALL":
            return cls.TRACE
        try:
            return cls[name]
        except KeyError:
            return cls.TRACE


_LEVEL_ALIASES = {
    "ERROR": Severity.ERROR,
    "FATAL": Severity.ERROR,
    "WARN": Severity.WARN,
    "WARNING": Severity.WARN,
    "INFO": Severity.INFO,
    "DEBUG": Severity.DEBUG,
    "TRACE": Severity.TRACE,
}


def parse_level(level_str: Optional[str]) -> Severity:
    """Case-insensitive level mapping, anything unknown is INFO"""
    if not level_str:
        return Severity.INFO
    return _LEVEL_ALIASES.get(level_str.strip().upper(), Severity.INFO)


@dataclass(frozen=True)
class LogLine:
    """Parsed log line with metadata"""
    timestamp: str
    level: Severity
    source: str
    message: str
    raw_line: str

    def __str__(self) -> str:
        return self.raw_line


@dataclass(frozen=True)
class LogFormat:
    """
    A named line layout

    Group indices point at capture groups of regex; an index of 0 or less
    means the format does not carry that field.
    """
    name: str
    regex: "re.Pattern[str]"
    timestamp_group: int = -1
    level_group: int = -1
    source_group: int = -1
    message_group: int = -1

    @classmethod
    def compile(cls, name: str, pattern: str, timestamp: int = -1, level: int = -1,
                source: int = -1, message: int = -1, flags: int = 0) -> "LogFormat":
        try:
            regex = re.compile(pattern, flags)
        except re.error as e:
            raise PatternError(pattern, str(e)) from e
        return cls(name, regex, timestamp, level, source, message)

    def match(self, line: str) -> Optional[LogLine]:
        match = self.regex.search(line)
        if not match:
            return None
        return LogLine(
            timestamp=self._group(match, self.timestamp_group, ""),
            level=parse_level(self._group(match, self.level_group, None)),
            source=self._group(match, self.source_group, ""),
            message=self._group(match, self.message_group, line),
            raw_line=line,
        )

    @staticmethod
    def _group(match: re.Match, index: int, default):
        if index <= 0 or index > (match.re.groups or 0):
            return default
        value = match.group(index)
        return value if value is not None else default


LEVEL_PATTERN = r"ERROR|FATAL|WARN(?:ING)?|INFO|DEBUG|TRACE"

# Most specific layouts first, the bare-level fallback last
BUILT_IN_FORMATS: List[LogFormat] = [
    # Sling: "13.02.2026 16:04:23.089 *INFO* [FelixLogListener] message"
    LogFormat.compile(
        "sling",
        r"^(\d{2}\.\d{2}\.\d{4}\s+\d{2}:\d{2}:\d{2}\.\d{3})\s+\*(\w+)\*\s+\[([^\]]+)\]\s+(.*)$",
        timestamp=1, level=2, source=3, message=4,
    ),
    # ISO timestamp, bracketed source: "2026-02-13 16:04:23.089 INFO [main] message"
    LogFormat.compile(
        "iso",
        rf"^(\d{{4}}-\d{{2}}-\d{{2}}[T ]\d{{2}}:\d{{2}}:\d{{2}}[.,]\d{{3}}\S*)\s+({LEVEL_PATTERN})\s+\[([^\]]+)\]\s+(.*)$",
        timestamp=1, level=2, source=3, message=4, flags=re.IGNORECASE,
    ),
    # ISO timestamp, dash separated source: "2026-02-13T16:04:23.089Z WARN app.Main - message"
    LogFormat.compile(
        "iso-plain",
        rf"^(\d{{4}}-\d{{2}}-\d{{2}}[T ]\d{{2}}:\d{{2}}:\d{{2}}[.,]\d{{3}}\S*)\s+({LEVEL_PATTERN})\s+(\S+)\s+[-–]\s+(.*)$",
        timestamp=1, level=2, source=3, message=4, flags=re.IGNORECASE,
    ),
    # Logback: "16:04:23.089 [main] DEBUG message"
    LogFormat.compile(
        "logback",
        rf"^(\d{{2}}:\d{{2}}:\d{{2}}[.,]\d{{3}})\s+\[([^\]]+)\]\s+({LEVEL_PATTERN})\s+(.*)$",
        timestamp=1, level=3, source=2, message=4, flags=re.IGNORECASE,
    ),
    # Syslog has no level field: "Feb 13 16:04:23 host sshd[42]: message"
    LogFormat.compile(
        "syslog",
        r"^(\w{3}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2})\s+(\S+)\s+(\S+?)(?:\[\d+\])?:\s+(.*)$",
        timestamp=1, source=3, message=4,
    ),
    # Bare or bracketed level: "[WARN] message", "ERROR message"
    LogFormat.compile(
        "simple",
        rf"^\[?({LEVEL_PATTERN})\]?\s+(.*)$",
        level=1, message=2, flags=re.IGNORECASE,
    ),
]


class LogParser:
    """
    Tries each active format in order, the first match wins

    Supported built-in layouts:
    - Sling:     "13.02.2026 16:04:23.089 *INFO* [source] message"
    - ISO:       "2026-02-13 16:04:23.089 INFO [source] message"
    - ISO plain: "2026-02-13 16:04:23.089 INFO source - message"
    - Logback:   "16:04:23.089 [thread] INFO message"
    - Syslog:    "Feb 13 16:04:23 host service[pid]: message"
    - Simple:    "[INFO] message" or "INFO message"
    """

    def __init__(self, custom_formats: Optional[Sequence[LogFormat]] = None):
        self.logger = logging.getLogger(__name__)
        self.formats: List[LogFormat] = []
        self.set_custom_formats(custom_formats or [])

    def set_custom_formats(self, custom_formats: Iterable[LogFormat]) -> None:
        """Custom formats are tried first, then the built-in ones"""
        self.formats = list(custom_formats) + BUILT_IN_FORMATS

    @classmethod
    def from_config(cls, custom_formats: Iterable) -> "LogParser":
        """
        Build a parser from CustomFormatConfig entries

        Entries whose pattern does not compile are logged and skipped.
        """
        parser = cls()
        compiled = []
        for fmt in custom_formats:
            try:
                compiled.append(LogFormat.compile(
                    fmt.name,
                    fmt.pattern,
                    timestamp=fmt.groups.timestamp,
                    level=fmt.groups.level,
                    source=fmt.groups.source,
                    message=fmt.groups.message,
                ))
            except PatternError as e:
                parser.logger.error(f"Skipping log format '{fmt.name}': {e}")
        parser.set_custom_formats(compiled)
        return parser

    def parse_line(self, line: str) -> Optional[LogLine]:
        """
        Parse a single log line

        Returns:
            LogLine, or None when no format matches (an unparsed line)
        """
        for fmt in self.formats:
            parsed = fmt.match(line)
            if parsed is not None:
                return parsed
        return None

    def parse_lines(self, lines: Iterable[str]) -> List[Optional[LogLine]]:
        return [self.parse_line(line) for line in lines]
