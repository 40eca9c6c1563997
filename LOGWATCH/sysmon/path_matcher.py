"""
Path Matcher Module - Glob compilation for walks

Handles:
- Translating glob syntax to regular expressions (*, **, ?, [...], {a,b}, (a|b))
- The per-name ignore matcher applied to directory entries
- The full-path matcher deciding final inclusion
- Per-segment matching used to prune a walk before its first **

Dotfiles are matched like any other name. Matching is case-sensitive unless
the platform's paths are case-insensitive.
"""
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional, Tuple

from LOGWATCH.errors import PatternError
from LOGWATCH.sysmon.path_pattern import (
    fix_path_separators,
    fix_pattern_path_separators,
    to_full_path_pattern,
)


def _default_case_sensitive(pathmod=os.path) -> bool:
    return pathmod.normcase("A") == "A"


class _GlobTranslator:
    """Recursive-descent translation of one glob into a regex body"""

    def __init__(self, pattern: str):
        self.pattern = pattern
        self.pos = 0

    def error(self, reason: str) -> PatternError:
        return PatternError(self.pattern, reason)

    def translate(self) -> str:
        body = self._sequence(stop_chars="")
        if self.pos < len(self.pattern):
            raise self.error(f"unexpected '{self.pattern[self.pos]}' at {self.pos}")
        return body

    def _at_segment_start(self) -> bool:
        return self.pos == 0 or self.pattern[self.pos - 1] == "/"

    def _sequence(self, stop_chars: str) -> str:
        out = []
        pattern = self.pattern
        while self.pos < len(pattern):
            char = pattern[self.pos]
            if char in stop_chars:
                break
            if char == "\\":
                self.pos += 1
                if self.pos < len(pattern):
                    out.append(re.escape(pattern[self.pos]))
                    self.pos += 1
                else:
                    out.append(re.escape("\\"))
            elif char == "*":
                out.append(self._star())
            elif char == "?":
                out.append("[^/]")
                self.pos += 1
            elif char == "[":
                out.append(self._bracket())
            elif char == "{":
                out.append(self._alternation("{", "}", ","))
            elif char == "(":
                out.append(self._alternation("(", ")", "|"))
            else:
                out.append(re.escape(char))
                self.pos += 1
        return "".join(out)

    def _star(self) -> str:
        pattern = self.pattern
        start = self.pos
        at_segment_start = self._at_segment_start()
        while self.pos < len(pattern) and pattern[self.pos] == "*":
            self.pos += 1
        if self.pos - start < 2 or not at_segment_start:
            return "[^/]*"
        if self.pos == len(pattern):
            return ".*"
        if pattern[self.pos] == "/":
            # "**/" spans zero or more whole directories
            self.pos += 1
            return "(?:[^/]*/)*"
        return "[^/]*"

    def _bracket(self) -> str:
        pattern = self.pattern
        end = self.pos + 1
        if end < len(pattern) and pattern[end] in "!^":
            end += 1
        if end < len(pattern) and pattern[end] == "]":
            end += 1
        while end < len(pattern) and pattern[end] != "]":
            end += 1
        if end >= len(pattern):
            # unterminated class is a literal "["
            self.pos += 1
            return re.escape("[")
        content = pattern[self.pos + 1:end]
        self.pos = end + 1
        negate = content[:1] in ("!", "^")
        if negate:
            content = content[1:]
        content = content.replace("\\", "\\\\").replace("[", "\\[")
        if negate:
            return f"[^/{content}]"
        return f"[{content}]"

    def _alternation(self, open_char: str, close_char: str, separator: str) -> str:
        self.pos += 1
        options = []
        while True:
            options.append(self._sequence(stop_chars=separator + close_char))
            if self.pos >= len(self.pattern):
                raise self.error(f"unterminated '{open_char}'")
            char = self.pattern[self.pos]
            self.pos += 1
            if char == close_char:
                break
        if len(options) == 1 and open_char == "{":
            # "{a}" is not an alternation
            return re.escape("{") + options[0] + re.escape("}")
        return "(?:" + "|".join(options) + ")"


def glob_to_regex(pattern: str) -> str:
    """Translate a "/"-separated glob into a regex body (no anchors)"""
    return _GlobTranslator(pattern).translate()


@lru_cache(maxsize=512)
def compile_glob(pattern: str, case_sensitive: bool = True) -> "re.Pattern[str]":
    flags = 0 if case_sensitive else re.IGNORECASE
    try:
        return re.compile(glob_to_regex(pattern), flags)
    except re.error as e:
        raise PatternError(pattern, str(e)) from e


def is_match(some_path: str, pattern: str, pathmod=os.path,
             case_sensitive: Optional[bool] = None) -> bool:
    if case_sensitive is None:
        case_sensitive = _default_case_sensitive(pathmod)
    some_path = fix_path_separators(some_path, pathmod)
    return compile_glob(pattern, case_sensitive).fullmatch(some_path) is not None


def make_matcher(pattern: str, pathmod=os.path,
                 case_sensitive: Optional[bool] = None) -> Callable[[str], bool]:
    if case_sensitive is None:
        case_sensitive = _default_case_sensitive(pathmod)
    regex = compile_glob(pattern, case_sensitive)
    if pathmod.sep == "\\":
        return lambda value: regex.fullmatch(value.replace("\\", "/")) is not None
    return lambda value: regex.fullmatch(value) is not None


def _never(_: str) -> bool:
    return False


@dataclass(frozen=True)
class PathMatcher:
    """Compiled predicates for walking one pattern"""
    pattern: str
    base_path: str
    before_globstar_parts: Tuple[str, ...]
    has_globstar: bool
    name_ignore_matcher: Callable[[str], bool]
    full_path_matcher: Callable[[str], bool]
    case_sensitive: bool = True

    def segment_matches(self, name: str, segment: str) -> bool:
        """True if a directory entry name satisfies one pre-globstar segment"""
        return compile_glob(segment, self.case_sensitive).fullmatch(name) is not None


def to_path_matcher(
    pattern: str,
    cwd: Optional[str] = None,
    name_ignore_pattern: Optional[str] = None,
    pathmod=os.path,
    allow_backslash_as_path_separator: bool = True,
    case_sensitive: Optional[bool] = None,
) -> PathMatcher:
    """
    Compile a (variable-resolved) pattern into a PathMatcher

    Raises:
        PatternError: If the pattern or the ignore pattern cannot be compiled
    """
    if case_sensitive is None:
        case_sensitive = _default_case_sensitive(pathmod)
    full = to_full_path_pattern(pattern, cwd, pathmod, allow_backslash_as_path_separator)

    full_path_matcher = make_matcher(full.full_pattern, pathmod, case_sensitive)
    if name_ignore_pattern:
        ignore = fix_pattern_path_separators(name_ignore_pattern, pathmod,
                                             allow_backslash_as_path_separator)
        name_ignore_matcher = make_matcher(ignore, pathmod, case_sensitive)
    else:
        name_ignore_matcher = _never

    # compile segments now so a bad segment fails at start, not mid-walk
    for segment in full.before_globstar_parts:
        compile_glob(segment, case_sensitive)

    return PathMatcher(
        pattern=pattern,
        base_path=full.base_path,
        before_globstar_parts=full.before_globstar_parts,
        has_globstar=full.has_globstar,
        name_ignore_matcher=name_ignore_matcher,
        full_path_matcher=full_path_matcher,
        case_sensitive=case_sensitive,
    )
