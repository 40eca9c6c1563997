"""
Log Filter Module - Deciding which lines of a watch are shown

Handles:
- Severity threshold filtering
- Exclude and include substring lists
- Case-insensitive free-text search
- Regular expression search
- Clean format output (message body only)
- Severity statistics for a block of text
"""
import logging
import re
from dataclasses import dataclass, fields
from typing import Dict, Optional

from LOGWATCH.config.models import FilterOptions, is_filter_active
from LOGWATCH.log_viewer.log_parser import LogLine, LogParser, Severity

_LINE_SPLIT_RE = re.compile(r"\r?\n")


@dataclass
class LogStats:
    """Line counts per severity bucket, independent of any active filter"""
    total_lines: int = 0
    error_count: int = 0
    warn_count: int = 0
    info_count: int = 0
    debug_count: int = 0
    trace_count: int = 0
    unparsed_count: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


_STATS_FIELD = {
    Severity.ERROR: "error_count",
    Severity.WARN: "warn_count",
    Severity.INFO: "info_count",
    Severity.DEBUG: "debug_count",
    Severity.TRACE: "trace_count",
}


class FilterEngine:
    """Applies FilterOptions to text, line by line"""

    def __init__(self, parser: Optional[LogParser] = None):
        self.logger = logging.getLogger(__name__)
        self.parser = parser or LogParser()
        self._regex_cache: Dict[str, Optional[re.Pattern]] = {}

    def _search_regex(self, pattern: Optional[str]) -> Optional[re.Pattern]:
        if not pattern:
            return None
        if pattern not in self._regex_cache:
            try:
                self._regex_cache[pattern] = re.compile(pattern)
            except re.error as e:
                self.logger.warning(f"Ignoring invalid search regex '{pattern}': {e}")
                self._regex_cache[pattern] = None
        return self._regex_cache[pattern]

    def should_filter_line(self, parsed: Optional[LogLine], options: FilterOptions) -> bool:
        """
        Decide whether a line is dropped

        Args:
            parsed: The parsed line, None for an unparsed line
            options: Effective filter options

        Returns:
            True if the line must be dropped
        """
        # unparsed lines cannot be rendered in clean format, and only there
        if parsed is None:
            return options.clean_format

        if not parsed.level.at_least(Severity.threshold(options.min_level)):
            return True

        message = parsed.message
        raw_line = parsed.raw_line

        if options.exclude_patterns:
            for pattern in options.exclude_patterns:
                if pattern in message or pattern in raw_line:
                    return True

        if options.include_patterns:
            if not any(pattern in message or pattern in raw_line
                       for pattern in options.include_patterns):
                return True

        if options.search_pattern:
            needle = options.search_pattern.lower()
            if needle not in message.lower() and needle not in raw_line.lower():
                return True

        regex = self._search_regex(options.search_regex)
        if regex is not None:
            if not regex.search(message) and not regex.search(raw_line):
                return True

        return False

    def format_line(self, parsed: Optional[LogLine], options: FilterOptions) -> str:
        if parsed is None:
            return ""
        if options.clean_format:
            return parsed.message
        return parsed.raw_line

    def filter_content(self, content: str, options: FilterOptions) -> str:
        """
        Filter and format a block of log text

        Returns the input unchanged when no criterion is active.
        """
        if not is_filter_active(options):
            return content

        kept = []
        for line in _LINE_SPLIT_RE.split(content):
            if not line.strip():
                continue
            parsed = self.parser.parse_line(line)
            if self.should_filter_line(parsed, options):
                continue
            if parsed is None:
                # kept unparsed lines are shown as they are
                kept.append(line)
                continue
            formatted = self.format_line(parsed, options)
            if formatted:
                kept.append(formatted)
        return "\n".join(kept)

    def filter_bytes(self, content: bytes, options: FilterOptions) -> bytes:
        if not is_filter_active(options):
            return content
        text = content.decode("utf-8", errors="replace")
        return self.filter_content(text, options).encode("utf-8")

    def get_stats(self, content: str) -> LogStats:
        """Count non-blank lines per severity plus unparsed ones"""
        stats = LogStats()
        for line in _LINE_SPLIT_RE.split(content):
            if not line.strip():
                continue
            stats.total_lines += 1
            parsed = self.parser.parse_line(line)
            if parsed is None:
                stats.unparsed_count += 1
                continue
            field_name = _STATS_FIELD[parsed.level]
            setattr(stats, field_name, getattr(stats, field_name) + 1)
        return stats
