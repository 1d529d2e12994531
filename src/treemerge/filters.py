"""Include/exclude selection of scanned paths.

Patterns use gitwildmatch syntax through ``pathspec``: ``*`` stays inside one
path segment, ``**`` crosses directories and a pattern without a slash matches
at any depth. Matching always runs on root-relative paths with POSIX
separators.
"""

from __future__ import annotations

import os
import re
from typing import TYPE_CHECKING

import pathspec

from treemerge.config import DEFAULT_EXCLUDES
from treemerge.exceptions import InvalidPatternError

if TYPE_CHECKING:
    from collections.abc import Sequence

BACKSLASH_IS_SEPARATOR = os.sep == "\\"


def normalize_globs(globs: Sequence[str]) -> list[str]:
    """Normalize a sequence of path glob patterns.

    Strip surrounding whitespace. On Windows, backslashes are path separators
    and become forward slashes; elsewhere they escape the next character
    (``\\*``, ``\\[``). Empty patterns are kept so that compilation can reject them.

    Args:
        globs (Sequence[str]): the glob patterns to normalize

    Returns:
        list[str]: the normalized glob patterns
    """
    globs = [(g or "").strip() for g in globs]
    if BACKSLASH_IS_SEPARATOR:
        return [g.replace("\\", "/") for g in globs]
    return globs


def _has_unbalanced_class(pattern: str) -> bool:
    opened = False
    escaped = False
    for ch in pattern:
        if escaped:
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == "[" and not opened:
            opened = True
        elif ch == "]" and opened:
            opened = False
    return opened


def compile_globs(patterns: Sequence[str]) -> pathspec.PathSpec:
    """Compile glob patterns into a single matcher.

    Args:
        patterns (Sequence[str]): the patterns to compile

    Raises:
        InvalidPatternError: if a pattern is empty, has an unclosed ``[`` class,
            is a negation or a comment, or is rejected by the gitwildmatch compiler.

    Returns:
        pathspec.PathSpec: a matcher that matches a path when any pattern does
    """
    compiled = []
    for raw in normalize_globs(patterns):
        if not raw:
            raise InvalidPatternError(pattern=raw, message="Empty glob pattern")
        if raw.startswith(("!", "#")):
            raise InvalidPatternError(pattern=raw, message="Negated or comment glob pattern")
        if _has_unbalanced_class(raw):
            raise InvalidPatternError(pattern=raw, message="Unclosed character class in glob pattern")
        try:
            spec = pathspec.PathSpec.from_lines("gitwildmatch", [raw])
        except (ValueError, re.error) as e:
            raise InvalidPatternError(pattern=raw) from e
        if not spec.patterns or spec.patterns[0].include is None:
            raise InvalidPatternError(pattern=raw, message="Glob pattern matches nothing")
        compiled.extend(spec.patterns)
    return pathspec.PathSpec(compiled)


class GlobFilter:
    """Compiled include, exclude and built-in exclude matchers.

    Decision precedence, first match wins:

    1. an include pattern matches: selected, whatever the exclusions say;
    2. an explicit exclude pattern matches: rejected;
    3. built-in excludes are active and one matches: rejected;
    4. otherwise selected.
    """

    def __init__(
        self,
        includes: pathspec.PathSpec,
        excludes: pathspec.PathSpec,
        builtin: pathspec.PathSpec,
        *,
        all_files: bool,
    ) -> None:
        self._includes = includes
        self._excludes = excludes
        self._builtin = builtin
        self.all_files = all_files

    @classmethod
    def compile(
        cls,
        includes: Sequence[str] = (),
        excludes: Sequence[str] = (),
        *,
        all_files: bool = False,
    ) -> GlobFilter:
        """Compile user patterns and the built-in excludes.

        Every pattern is compiled up front so that a malformed one fails
        before any traversal starts.

        Args:
            includes (Sequence[str]): include patterns, overriding every exclusion
            excludes (Sequence[str]): explicit exclude patterns
            all_files (bool): disable the built-in exclude list

        Returns:
            GlobFilter: the compiled filter
        """
        return cls(
            compile_globs(includes),
            compile_globs(excludes),
            compile_globs(() if all_files else DEFAULT_EXCLUDES),
            all_files=all_files,
        )

    def is_selected(self, rel: str) -> bool:
        """Decide whether a root-relative path passes the glob rules.

        Args:
            rel (str): the path relative to the scanned root

        Returns:
            bool: True if the path is selected, False otherwise
        """
        if BACKSLASH_IS_SEPARATOR:
            rel = rel.replace("\\", "/")
        if self._includes.match_file(rel):
            return True
        if self._excludes.match_file(rel):
            return False
        return self.all_files or not self._builtin.match_file(rel)
