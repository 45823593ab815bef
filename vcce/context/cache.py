"""Per-project context cache.

One Session per resolved project path. A session is built on first use or
when the caller asks for a new one; otherwise the cached text is reused
verbatim, whatever happened on disk in between. With ``ttl > 0`` a
session not used for ``ttl`` seconds is rebuilt on next use.
"""

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
import time
from typing import Dict, Optional, Tuple

from vcce.context.ignore import MatcherFactory, build_ignore_matcher
from vcce.context.sources.project import build_project_context

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Cached context for one project."""
    project_path: str
    files_text: str
    last_used: float
    created_at: float
    file_count: int = 0
    truncated: bool = False

    @property
    def byte_count(self) -> int:
        return len(self.files_text.encode("utf-8"))


class ContextCache:
    """
    Keyed store of project Sessions.

    Builds for the same project are serialized by a per-path lock, so two
    connections asking at once trigger a single walk; the second caller
    reuses the result. Builds run in a worker thread to keep the event
    loop responsive.
    """

    def __init__(
        self,
        budget_bytes: int = 256 * 1024,
        ttl: float = 0.0,
        ignore_style: str = "gitignore",
        ignore_file: str = ".gitignore",
        matcher_factory: Optional[MatcherFactory] = None,
    ):
        self.budget_bytes = budget_bytes
        self.ttl = ttl
        self.ignore_style = ignore_style
        self.ignore_file = ignore_file
        self.matcher_factory = matcher_factory
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    @staticmethod
    def key_for(project_path: str) -> str:
        return str(Path(project_path).expanduser().resolve())

    def peek(self, project_path: str) -> Optional[Session]:
        """Return the cached session without touching it."""
        return self._sessions.get(self.key_for(project_path))

    def _is_stale(self, session: Session, now: float) -> bool:
        return self.ttl > 0 and (now - session.last_used) > self.ttl

    async def get_session(self, project_path: str, refresh: bool = False) -> Tuple[Session, bool]:
        """
        Return the session for a project, building it when needed.

        Args:
            project_path: Project directory
            refresh: Rebuild even when a cached session exists

        Returns:
            (session, created) where created is True if a walk happened

        Raises:
            NotADirectoryError: If project_path is not a directory
        """
        key = self.key_for(project_path)
        lock = self._locks.setdefault(key, asyncio.Lock())

        async with lock:
            now = time.time()
            session = self._sessions.get(key)
            if session is not None and not refresh and not self._is_stale(session, now):
                session.last_used = now
                return session, False

            session = await asyncio.to_thread(self._build, key)
            self._sessions[key] = session
            return session, True

    def _build(self, key: str) -> Session:
        root = Path(key)
        if not root.is_dir():
            raise NotADirectoryError(f"Project path is not a directory: {key}")

        start = time.time()
        matcher = build_ignore_matcher(
            root,
            style=self.ignore_style,
            filename=self.ignore_file,
            factory=self.matcher_factory,
        )
        context = build_project_context(root, self.budget_bytes, matcher)
        elapsed = time.time() - start
        logger.info(
            f"Built context for {key}: {context.file_count} files, "
            f"{context.byte_count} bytes{' (truncated)' if context.truncated else ''} "
            f"in {elapsed:.2f}s"
        )

        now = time.time()
        return Session(
            project_path=key,
            files_text=context.text,
            last_used=now,
            created_at=now,
            file_count=context.file_count,
            truncated=context.truncated,
        )

    def clear(self) -> None:
        self._sessions.clear()
        self._locks.clear()
