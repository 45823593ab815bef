"""Ignore-pattern matching for project context aggregation.

Paths handed to a matcher are relative to the project root, use ``/`` as
separator and carry a trailing ``/`` when they name a directory.

Two matchers are provided:
- GitignoreMatcher: glob patterns (*, ?, [...]), directory-only patterns
  (trailing /), anchored patterns (containing /) and negation (leading !).
- PrefixIgnoreMatcher: literal prefix match, used when no pattern matcher
  is available.
"""

import fnmatch
import logging
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

# Version-control metadata, excluded regardless of ignore rules
VCS_DIRS = frozenset({".git", ".hg", ".svn"})


class IgnoreMatcher(Protocol):
    def ignores(self, rel_path: str) -> bool:
        ...


MatcherFactory = Callable[[List[str]], Optional[IgnoreMatcher]]


def read_ignore_patterns(root: Path, filename: str = ".gitignore") -> List[str]:
    """Read one pattern per non-empty, non-comment line of the ignore file."""
    ignore_path = root / filename
    if not ignore_path.is_file():
        return []

    try:
        content = ignore_path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning(f"Could not read ignore file {ignore_path}: {e}")
        return []

    patterns = []
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        patterns.append(line)
    return patterns


class PrefixIgnoreMatcher:
    """Ignores any path that starts with one of the literal patterns."""

    def __init__(self, patterns: List[str]):
        self.patterns = [p.lstrip("/") for p in patterns if p.lstrip("/")]

    def ignores(self, rel_path: str) -> bool:
        return any(rel_path.startswith(p) for p in self.patterns)


class GitignoreMatcher:
    """Gitignore-style glob matcher (root ignore file only, no nesting)."""

    def __init__(self, patterns: List[str]):
        # (pattern, is_negation, dir_only, anchored)
        self._rules: List[Tuple[str, bool, bool, bool]] = []
        for raw in patterns:
            pattern = raw
            is_negation = pattern.startswith("!")
            if is_negation:
                pattern = pattern[1:]
            dir_only = pattern.endswith("/")
            pattern = pattern.rstrip("/")
            anchored = "/" in pattern
            pattern = pattern.lstrip("/")
            if not pattern:
                continue
            self._rules.append((pattern, is_negation, dir_only, anchored))

    def ignores(self, rel_path: str) -> bool:
        is_dir = rel_path.endswith("/")
        path = rel_path.rstrip("/")
        parts = path.split("/")

        ignored = False
        for pattern, is_negation, dir_only, anchored in self._rules:
            if anchored:
                # Full-path match, or the pattern names one of our ancestor dirs
                prefixes = ["/".join(parts[:i]) for i in range(1, len(parts))]
                matches = any(fnmatch.fnmatch(p, pattern) for p in prefixes)
                if not matches and (is_dir or not dir_only):
                    matches = fnmatch.fnmatch(path, pattern)
            else:
                candidates = parts if (is_dir or not dir_only) else parts[:-1]
                matches = any(fnmatch.fnmatch(part, pattern) for part in candidates)

            if matches:
                ignored = not is_negation

        return ignored


def build_ignore_matcher(
    root: Path,
    style: str = "gitignore",
    filename: str = ".gitignore",
    factory: Optional[MatcherFactory] = None,
) -> IgnoreMatcher:
    """
    Build the matcher used to filter a project's files.

    A caller supplied ``factory`` takes precedence; when it yields nothing
    (or no factory is configured and style is ``prefix``) the literal
    prefix matcher built from the ignore file is used.
    """
    patterns = read_ignore_patterns(root, filename)

    if factory is None and style == "gitignore":
        factory = GitignoreMatcher

    if factory is not None:
        matcher = factory(patterns)
        if matcher is not None:
            return matcher
        logger.debug(f"Ignore matcher factory unavailable for {root}, using prefix matcher")

    return PrefixIgnoreMatcher(patterns)
