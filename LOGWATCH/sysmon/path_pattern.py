"""
Path Pattern Module - Turning watch patterns into walkable pieces

Handles:
- Variable substitution (~, $HOME, ${userHome}, ${workspaceFolder},
  ${workspaceFolderBasename}, ${env:NAME})
- Splitting a glob into its literal base directory and the match expression
- Collecting the segments that come before the first ** so a walk can prune
- Separator normalisation ("/" for matching, native separator for the base)

Patterns are split into segments before any glob syntax is parsed, so an
alternation cannot span a separator: "/var/{log/app,tmp}/*.log" is rejected
with a PatternError. Use one pattern per alternative instead (a watch accepts
a list of patterns).
"""
import os
import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple

_HOME_PREFIX_RE = re.compile(r'^(~|\$HOME)(?=\W|$)')
_VARIABLE_RE = re.compile(r'\$\{([^}]+)\}')

# Characters that turn a path segment into a match expression
GLOB_META_CHARS = frozenset('*?[]{}()')


@dataclass
class ResolveContext:
    """Everything needed to expand the variables of a pattern"""
    home: str
    env: Mapping[str, str] = field(default_factory=dict)
    workspace_folder: Optional[str] = None
    # only meaningful where the native separator is "\"
    allow_backslash_as_path_separator: bool = True
    pathmod: object = os.path


@dataclass(frozen=True)
class FullPathPattern:
    """A pattern split into its walk start and match expression"""
    base_path: str
    full_pattern: str
    before_globstar_parts: Tuple[str, ...]
    has_globstar: bool


def backslash_separator_allowed(pathmod=os.path,
                                allow_backslash_as_path_separator: bool = True) -> bool:
    if pathmod.sep == "/":
        return False
    return allow_backslash_as_path_separator


def resolve_variables(pattern: str, ctx: ResolveContext) -> str:
    """
    Expand home and ${...} variables textually

    Variables that cannot be resolved (e.g. ${workspaceFolder} without a
    workspace, or an unset ${env:NAME}) are left verbatim.
    """
    pathmod = ctx.pathmod
    home = ctx.home
    workspace_folder = ctx.workspace_folder
    if not ctx.allow_backslash_as_path_separator and pathmod.sep == "\\":
        home = home.replace("\\", "/")
        if workspace_folder:
            workspace_folder = workspace_folder.replace("\\", "/")

    pattern = _HOME_PREFIX_RE.sub(lambda _: home, pattern, count=1)

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        if name == "userHome":
            return home
        if name == "workspaceFolder":
            return workspace_folder if workspace_folder else match.group(0)
        if name == "workspaceFolderBasename":
            if workspace_folder:
                return pathmod.basename(workspace_folder.rstrip("/\\"))
            return match.group(0)
        if name.startswith("env:"):
            value = ctx.env.get(name[len("env:"):])
            return value if value is not None else match.group(0)
        return match.group(0)

    return _VARIABLE_RE.sub(substitute, pattern)


def fix_path_separators(some_path: str, pathmod=os.path) -> str:
    """Use "/" as the separator of a real path so it can be glob-matched"""
    if pathmod.sep == "\\":
        return some_path.replace("\\", "/")
    return some_path


def fix_pattern_path_separators(pattern: str, pathmod=os.path,
                                allow_backslash_as_path_separator: bool = True) -> str:
    # when backslash is a separator it cannot also be an escape character
    if backslash_separator_allowed(pathmod, allow_backslash_as_path_separator):
        return pattern.replace("\\", "/")
    return pattern


def split_pattern(pattern: str, pathmod=os.path,
                  allow_backslash_as_path_separator: bool = True) -> List[str]:
    if backslash_separator_allowed(pathmod, allow_backslash_as_path_separator):
        return re.split(r'[/\\]', pattern)
    return pattern.split("/")


def is_globstar_segment(segment: str) -> bool:
    return "**" in segment


def literal_segment(segment: str) -> Optional[str]:
    """
    Return the unescaped text of a segment without match metacharacters

    Returns:
        The literal segment, or None if the segment is a match expression
    """
    literal = []
    escaped = False
    for char in segment:
        if escaped:
            literal.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char in GLOB_META_CHARS:
            return None
        else:
            literal.append(char)
    return "".join(literal)


def parse_pattern(pattern: str, pathmod=os.path,
                  allow_backslash_as_path_separator: bool = True) -> Tuple[str, Optional[str], Tuple[str, ...], bool]:
    """
    Split a pattern into base path, match expression and pre-globstar parts

    Returns:
        (base_path, match_pattern or None, before_globstar_parts, has_globstar)
    """
    parts = split_pattern(pattern, pathmod, allow_backslash_as_path_separator)

    kind = "base"
    base_parts: List[str] = []
    pattern_parts: List[str] = []
    before_globstar: List[str] = []

    for part in parts:
        if kind != "after_globstar":
            if is_globstar_segment(part):
                kind = "after_globstar"
            elif kind == "base":
                literal = literal_segment(part)
                if literal is None:
                    kind = "pattern"
                else:
                    base_parts.append(literal)
                    continue

        pattern_parts.append(part)
        if kind == "pattern":
            before_globstar.append(part)

    if pattern_parts:
        # keeps root ("/" from ["", ""]) apart from a relative base ("")
        base_parts.append("")

    base_path = pathmod.sep.join(base_parts)
    match_pattern = "/".join(pattern_parts) if pattern_parts else None
    return base_path, match_pattern, tuple(before_globstar), kind == "after_globstar"


def pattern_resolve(base_path: str, pattern: Optional[str], pathmod=os.path) -> str:
    base_path = fix_path_separators(base_path, pathmod).rstrip("/")
    if pattern:
        return f"{base_path}/{pattern}"
    return base_path


def to_full_path_pattern(pattern: str, cwd: Optional[str] = None, pathmod=os.path,
                         allow_backslash_as_path_separator: bool = True) -> FullPathPattern:
    """
    Build the walk description for one (already variable-resolved) pattern

    Args:
        pattern: Glob pattern, absolute or relative
        cwd: Directory relative patterns are anchored to
        pathmod: posixpath or ntpath, defaults to the platform's

    Returns:
        FullPathPattern with the native-separator base path and the
        "/"-separated full pattern
    """
    base_path, match_pattern, before_globstar, has_globstar = parse_pattern(
        pattern, pathmod, allow_backslash_as_path_separator)

    full_pattern = fix_pattern_path_separators(pattern, pathmod, allow_backslash_as_path_separator)
    if cwd is not None and not pathmod.isabs(base_path):
        base_path = pathmod.join(cwd, base_path)
        full_pattern = pattern_resolve(base_path, match_pattern, pathmod)

    return FullPathPattern(
        base_path=base_path,
        full_pattern=full_pattern,
        before_globstar_parts=before_globstar,
        has_globstar=has_globstar,
    )
