"""All-or-nothing application of unified diffs to a project tree.

apply_patch() works in two phases:

1. Plan: parse the diff and apply every hunk in memory against the
   current files. Any mismatch raises PatchConflict, any unsupported
   construct raises PatchNotImplemented. Nothing is written.
2. Commit: write each new file body to a temp file beside its target and
   os.replace() it into place. If a step fails, files already touched are
   restored from the in-memory originals before the error propagates.
"""

from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import re
import stat
import tempfile
from typing import Dict, List, Optional, Tuple

from vcce.core.errors import PatchConflict, PatchNotImplemented

logger = logging.getLogger(__name__)

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

# git extended headers we refuse to interpret
UNSUPPORTED_HEADERS = (
    "rename from ",
    "rename to ",
    "copy from ",
    "copy to ",
    "GIT binary patch",
    "Binary files ",
)


@dataclass
class Hunk:
    old_start: int
    old_len: int
    new_start: int
    new_len: int
    old_lines: List[str] = field(default_factory=list)
    new_lines: List[str] = field(default_factory=list)


@dataclass
class FilePatch:
    old_path: Optional[str]  # None for file creation
    new_path: Optional[str]  # None for file deletion
    hunks: List[Hunk] = field(default_factory=list)

    @property
    def path(self) -> str:
        return self.new_path or self.old_path or ""


@dataclass
class PlannedChange:
    rel_path: str
    abs_path: Path
    original: Optional[str]  # None when the file does not exist yet
    content: Optional[str]   # None when the file is to be deleted
    mode: Optional[int] = None  # permission bits of the existing file


def _parse_path(header: str, prefix: str) -> Optional[str]:
    # "--- a/src/x.py\t2024-01-01 ..." -> "src/x.py"
    path = header[4:].rstrip("\r\n").split("\t", 1)[0].strip()
    if path == "/dev/null":
        return None
    if path.startswith('"') and path.endswith('"'):
        path = path[1:-1]
    if path.startswith(prefix):
        path = path[len(prefix):]
    return path


def _strip_newline(hunk: Hunk, last: Optional[str]) -> None:
    # "\ No newline at end of file" applies to the line just before it
    if last in ("old", "both") and hunk.old_lines:
        hunk.old_lines[-1] = hunk.old_lines[-1].rstrip("\r\n")
    if last in ("new", "both") and hunk.new_lines:
        hunk.new_lines[-1] = hunk.new_lines[-1].rstrip("\r\n")


def _parse_hunk(lines: List[str], start: int, header: str) -> Tuple[Hunk, int]:
    m = HUNK_HEADER.match(header)
    if not m:
        raise PatchConflict(f"Malformed hunk header: {header.strip()}")

    hunk = Hunk(
        old_start=int(m.group(1)),
        old_len=int(m.group(2)) if m.group(2) is not None else 1,
        new_start=int(m.group(3)),
        new_len=int(m.group(4)) if m.group(4) is not None else 1,
    )

    i = start
    last = None
    while i < len(lines) and (len(hunk.old_lines) < hunk.old_len or len(hunk.new_lines) < hunk.new_len):
        line = lines[i]
        tag, text = line[:1], line[1:]
        if line in ("\n", "\r\n"):
            # Blank context line whose leading space was stripped
            tag, text = " ", line
        if not text.endswith("\n"):
            text += "\n"

        if tag == " ":
            hunk.old_lines.append(text)
            hunk.new_lines.append(text)
            last = "both"
        elif tag == "-":
            hunk.old_lines.append(text)
            last = "old"
        elif tag == "+":
            hunk.new_lines.append(text)
            last = "new"
        elif tag == "\\":
            _strip_newline(hunk, last)
        else:
            raise PatchConflict(f"Unexpected line in hunk: {line.rstrip()}")
        i += 1

    if len(hunk.old_lines) != hunk.old_len or len(hunk.new_lines) != hunk.new_len:
        raise PatchConflict(f"Truncated hunk: {header.strip()}")

    if i < len(lines) and lines[i].startswith("\\"):
        _strip_newline(hunk, last)
        i += 1

    return hunk, i


def parse_unified_diff(diff_text: str) -> List[FilePatch]:
    """
    Parse a unified diff into per-file patches.

    Raises:
        PatchNotImplemented: For binary/rename/copy patches or a diff
            without any file headers
        PatchConflict: For malformed hunks
    """
    lines = diff_text.splitlines(keepends=True)
    patches: List[FilePatch] = []
    current: Optional[FilePatch] = None
    i = 0

    while i < len(lines):
        line = lines[i]

        if line.startswith(UNSUPPORTED_HEADERS):
            raise PatchNotImplemented(f"Unsupported diff construct: {line.strip()}")

        if line.startswith("--- ") and i + 1 < len(lines) and lines[i + 1].startswith("+++ "):
            current = FilePatch(
                old_path=_parse_path(line, "a/"),
                new_path=_parse_path(lines[i + 1], "b/"),
            )
            if current.old_path is None and current.new_path is None:
                raise PatchConflict("Diff header has /dev/null on both sides")
            patches.append(current)
            i += 2
            continue

        if line.startswith("@@"):
            if current is None:
                raise PatchNotImplemented("Hunk found before any file header")
            hunk, i = _parse_hunk(lines, i + 1, line)
            current.hunks.append(hunk)
            continue

        i += 1

    if not patches:
        raise PatchNotImplemented("Diff contains no file headers")
    return patches


def _locate(original: List[str], old: List[str], expected: int, floor: int) -> Optional[int]:
    """Index where ``old`` matches ``original``, nearest to ``expected``."""
    want = [l.rstrip("\r\n") for l in old]
    last_start = len(original) - len(old)
    if last_start < floor:
        return None

    expected = min(max(expected, floor), last_start)
    for delta in range(0, max(expected - floor, last_start - expected) + 1):
        for candidate in (expected + delta, expected - delta):
            if floor <= candidate <= last_start:
                window = original[candidate:candidate + len(old)]
                if [l.rstrip("\r\n") for l in window] == want:
                    return candidate
    return None


def apply_hunks(original: List[str], hunks: List[Hunk], path: str = "") -> List[str]:
    """Apply hunks to a list of lines (with line endings)."""
    result: List[str] = []
    pos = 0
    for n, hunk in enumerate(hunks, 1):
        if hunk.old_len == 0:
            expected = hunk.old_start
        else:
            expected = hunk.old_start - 1
        index = _locate(original, hunk.old_lines, expected, pos)
        if index is None:
            raise PatchConflict(f"Hunk #{n} does not apply to {path or 'file'}")
        result.extend(original[pos:index])
        result.extend(hunk.new_lines)
        pos = index + len(hunk.old_lines)
    result.extend(original[pos:])
    return result


def _read_text(path: Path) -> str:
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def _resolve_target(root: Path, rel_path: str) -> Path:
    target = (root / rel_path).resolve()
    if target != root and root not in target.parents:
        raise PatchConflict(f"Patch path escapes project: {rel_path}")
    return target


def plan_patch(root: Path, diff_text: str) -> List[PlannedChange]:
    """
    Compute the final content of every file the diff touches.

    Raises:
        PatchConflict: If any hunk or file precondition fails
        PatchNotImplemented: For unsupported diff constructs
    """
    root = root.resolve()
    staged: Dict[Path, PlannedChange] = {}

    for file_patch in parse_unified_diff(diff_text):
        if (
            file_patch.old_path is not None
            and file_patch.new_path is not None
            and file_patch.old_path != file_patch.new_path
        ):
            raise PatchNotImplemented(
                f"Renames are not supported: {file_patch.old_path} -> {file_patch.new_path}"
            )

        rel_path = file_patch.path
        target = _resolve_target(root, rel_path)

        if target in staged:
            change = staged[target]
            exists = change.content is not None
            current = change.content or ""
        else:
            exists = target.is_file()
            if target.exists() and not exists:
                raise PatchConflict(f"Not a regular file: {rel_path}")
            current = _read_text(target) if exists else ""
            change = PlannedChange(
                rel_path=rel_path,
                abs_path=target,
                original=current if exists else None,
                content=current if exists else None,
                mode=stat.S_IMODE(target.stat().st_mode) if exists else None,
            )

        if file_patch.old_path is None and exists:
            raise PatchConflict(f"File already exists: {rel_path}")
        if file_patch.old_path is not None and not exists:
            raise PatchConflict(f"File not found: {rel_path}")

        new_lines = apply_hunks(current.splitlines(keepends=True), file_patch.hunks, rel_path)
        if file_patch.new_path is None:
            if new_lines:
                raise PatchConflict(f"Deletion of {rel_path} does not remove all content")
            change.content = None
        else:
            change.content = "".join(new_lines)

        staged[target] = change

    return list(staged.values())


def _default_file_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def _write_atomic(path: Path, content: str, mode: Optional[int] = None) -> None:
    """Replace path with content. mode defaults to 0666 minus the umask."""
    if mode is None:
        mode = _default_file_mode()
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=".vcce-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def _missing_parents(path: Path, root: Path) -> List[Path]:
    missing = []
    parent = path.parent
    while parent != root and not parent.exists():
        missing.append(parent)
        parent = parent.parent
    return list(reversed(missing))


def commit_changes(root: Path, changes: List[PlannedChange]) -> None:
    """Write planned changes; restore everything on failure."""
    root = root.resolve()
    done: List[PlannedChange] = []
    created_dirs: List[Path] = []

    try:
        for change in changes:
            if change.content is None:
                if change.original is not None:
                    os.remove(change.abs_path)
                    done.append(change)
                continue
            if change.content == change.original:
                continue
            for parent in _missing_parents(change.abs_path, root):
                parent.mkdir()
                created_dirs.append(parent)
            _write_atomic(change.abs_path, change.content, change.mode)
            done.append(change)
    except BaseException:
        logger.error(f"Patch commit failed after {len(done)} file(s); rolling back")
        _rollback(done, created_dirs)
        raise


def _rollback(done: List[PlannedChange], created_dirs: List[Path]) -> None:
    for change in reversed(done):
        try:
            if change.original is None:
                os.remove(change.abs_path)
            else:
                _write_atomic(change.abs_path, change.original, change.mode)
        except OSError as e:
            logger.error(f"Rollback failed for {change.abs_path}: {e}")
    for directory in reversed(created_dirs):
        try:
            directory.rmdir()
        except OSError as e:
            logger.error(f"Rollback could not remove {directory}: {e}")


def apply_patch(root: Path, diff_text: str) -> List[str]:
    """
    Apply a unified diff to the project rooted at ``root``.

    Returns:
        Relative paths of the files that were created, modified or deleted

    Raises:
        PatchConflict, PatchNotImplemented: Nothing was written
        OSError: Commit failed; touched files were restored
    """
    changes = plan_patch(root, diff_text)
    commit_changes(root, changes)
    return [c.rel_path for c in changes]
