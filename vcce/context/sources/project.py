"""Project file aggregation for AI conversation context.

Walks a project tree and concatenates its readable, non-ignored files into
one labeled text blob, stopping once a byte budget is exceeded:

    === src/app.py ===
    <file content>

    === assets/logo.png (binary, content omitted) ===
"""

from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Iterator, Optional, Tuple

from vcce.context.ignore import VCS_DIRS, IgnoreMatcher, PrefixIgnoreMatcher

logger = logging.getLogger(__name__)

# Extensions treated as binary: only a placeholder with the path is emitted
BINARY_EXTENSIONS = frozenset({
    # images
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".tiff", ".psd",
    # audio / video
    ".mp3", ".wav", ".ogg", ".flac", ".mp4", ".mov", ".avi", ".mkv", ".webm",
    # archives
    ".zip", ".tar", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".rar", ".jar",
    # compiled / native
    ".exe", ".dll", ".so", ".dylib", ".o", ".a", ".lib", ".class", ".pyc",
    ".pyo", ".wasm", ".bin",
    # documents / fonts / data
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".ttf", ".otf", ".woff", ".woff2", ".eot", ".sqlite", ".db",
})


@dataclass
class ProjectContext:
    """Aggregated project text plus walk statistics."""
    text: str
    file_count: int
    byte_count: int
    truncated: bool


def is_binary_path(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in BINARY_EXTENSIONS


def iter_project_files(root: Path, matcher: IgnoreMatcher) -> Iterator[Tuple[str, Path]]:
    """
    Yield (relative_path, absolute_path) for every regular file under root.

    Depth-first with an explicit stack; entries are visited in sorted order
    so the output is stable. VCS metadata directories are always skipped,
    directory symlinks are not followed.
    """
    stack = [(root, "")]
    while stack:
        directory, rel_dir = stack.pop()
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.debug(f"Skipping unreadable directory {directory}: {e}")
            continue

        subdirs = []
        for entry in entries:
            rel_path = f"{rel_dir}{entry.name}"
            try:
                if entry.is_dir(follow_symlinks=False):
                    if entry.name in VCS_DIRS or matcher.ignores(rel_path + "/"):
                        continue
                    subdirs.append((Path(entry.path), rel_path + "/"))
                elif entry.is_file():
                    if matcher.ignores(rel_path):
                        continue
                    yield rel_path, Path(entry.path)
            except OSError as e:
                logger.debug(f"Skipping {entry.path}: {e}")

        # Reversed so the first subdirectory is popped first
        stack.extend(reversed(subdirs))


def _format_block(rel_path: str, abs_path: Path) -> Optional[str]:
    if is_binary_path(rel_path):
        return f"=== {rel_path} (binary, content omitted) ===\n\n"
    try:
        content = abs_path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Skipping unreadable file {abs_path}: {e}")
        return None
    return f"=== {rel_path} ===\n{content}\n\n"


def build_project_context(
    root: Path,
    budget_bytes: int,
    matcher: Optional[IgnoreMatcher] = None,
) -> ProjectContext:
    """
    Aggregate project files into a single context string.

    The walk stops as soon as the running UTF-8 size exceeds budget_bytes,
    so the result is at most budget_bytes plus the block of the file that
    crossed the limit.

    Args:
        root: Project directory
        budget_bytes: Soft size limit for the aggregated text
        matcher: Ignore matcher (defaults to an empty prefix matcher)

    Returns:
        ProjectContext (possibly truncated)
    """
    matcher = matcher or PrefixIgnoreMatcher([])
    blocks = []
    total = 0
    count = 0
    truncated = False

    for rel_path, abs_path in iter_project_files(root, matcher):
        block = _format_block(rel_path, abs_path)
        if block is None:
            continue
        blocks.append(block)
        total += len(block.encode("utf-8"))
        count += 1
        if total > budget_bytes:
            truncated = True
            break

    return ProjectContext(
        text="".join(blocks),
        file_count=count,
        byte_count=total,
        truncated=truncated,
    )
