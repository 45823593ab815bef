"""Pending patch registry for AI-proposed file changes.

After each AI reply the first fenced ```diff / ```patch block is extracted
and stored under a fresh id until the client approves or discards it.
"""

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
import re
import time
import uuid
from typing import Dict, List, Optional

from vcce.core.diff_apply import apply_patch
from vcce.core.errors import UnknownPatch

logger = logging.getLogger(__name__)

PATCH_BLOCK = re.compile(r"```(?:diff|patch)[^\n]*\n(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_patch(reply: str) -> Optional[str]:
    """
    Return the body of the first fenced diff/patch block in reply.

    Example:
        >>> extract_patch("Try this:\\n```diff\\n--- a/x\\n+++ b/x\\n```")
        '--- a/x\\n+++ b/x\\n'
        >>> extract_patch("No changes needed.") is None
        True
    """
    match = PATCH_BLOCK.search(reply or "")
    if not match:
        return None
    body = match.group(1)
    return body if body.strip() else None


@dataclass
class PendingPatch:
    id: str
    project_path: str
    diff: str
    created_at: float

    def to_wire(self) -> Dict[str, str]:
        return {"id": self.id, "diff": self.diff}


class PatchRegistry:
    """
    Process-wide table of pending patches.

    Each entry's transitions (discard, approve) hold a lock scoped to that
    patch id; whoever acquires it first wins and the other caller finds
    the entry gone (UnknownPatch).
    """

    def __init__(self):
        self._patches: Dict[str, PendingPatch] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._patches)

    def __contains__(self, patch_id: str) -> bool:
        return patch_id in self._patches

    def get(self, patch_id: str) -> Optional[PendingPatch]:
        return self._patches.get(patch_id)

    def register(self, project_path: str, diff: str) -> PendingPatch:
        patch = PendingPatch(
            id=uuid.uuid4().hex,
            project_path=project_path,
            diff=diff,
            created_at=time.time(),
        )
        self._patches[patch.id] = patch
        logger.info(f"Registered patch {patch.id} for {project_path}")
        return patch

    def register_from_reply(self, project_path: str, reply: str) -> Optional[PendingPatch]:
        diff = extract_patch(reply)
        if diff is None:
            return None
        return self.register(project_path, diff)

    def _lock_for(self, patch_id: str) -> asyncio.Lock:
        return self._locks.setdefault(patch_id, asyncio.Lock())

    def _remove(self, patch_id: str) -> None:
        self._patches.pop(patch_id, None)
        self._locks.pop(patch_id, None)

    async def discard(self, patch_id: str) -> None:
        """
        Remove a pending patch.

        Raises:
            UnknownPatch: If no such patch is pending
        """
        async with self._lock_for(patch_id):
            if patch_id not in self._patches:
                self._locks.pop(patch_id, None)
                raise UnknownPatch(patch_id)
            self._remove(patch_id)
        logger.info(f"Discarded patch {patch_id}")

    async def approve(self, patch_id: str) -> List[str]:
        """
        Apply a pending patch to its project and remove it.

        The entry is kept when applying fails, so the client may still
        discard it. Nothing is written unless every hunk applies.

        Returns:
            Relative paths of the files changed

        Raises:
            UnknownPatch: If no such patch is pending
            PatchConflict, PatchNotImplemented: Patch could not be applied
        """
        async with self._lock_for(patch_id):
            patch = self._patches.get(patch_id)
            if patch is None:
                self._locks.pop(patch_id, None)
                raise UnknownPatch(patch_id)

            changed = await asyncio.to_thread(apply_patch, Path(patch.project_path), patch.diff)
            self._remove(patch_id)

        logger.info(f"Applied patch {patch_id} to {patch.project_path}: {', '.join(changed)}")
        return changed

    def clear(self) -> None:
        self._patches.clear()
        self._locks.clear()
