"""In-memory state shared by every connection of the daemon.

Owned explicitly by the server and handed to the dispatcher:
- contexts: project context sessions keyed by project path
- patches: pending AI patches keyed by patch id
- processes: running exec commands keyed by (connection, request id)
- completer: chat-completion backend (holds the API key)

Nothing here survives a restart.
"""

import time
from typing import Any, Dict, Optional

from vcce.context.cache import ContextCache
from vcce.context.ignore import MatcherFactory
from vcce.core.assistant import Assistant
from vcce.core.client_cache import get_cache_stats
from vcce.core.configs import ServerConfig
from vcce.core.patches import PatchRegistry
from vcce.providers.mistral import ChatCompleter, MistralCompleter
from vcce.tools.exec_shell import ProcessRunner


class DaemonState:
    """
    Process-wide state for the daemon.

    Concurrency: the daemon runs on a single asyncio loop. Per-key locks
    inside ContextCache and PatchRegistry serialize transitions that span
    an await (context builds, patch application).
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        completer: Optional[ChatCompleter] = None,
        matcher_factory: Optional[MatcherFactory] = None,
    ):
        """
        Args:
            config: Server configuration (defaults to ServerConfig())
            completer: Chat backend (defaults to MistralCompleter with the configured key)
            matcher_factory: Optional ignore matcher factory for context builds
        """
        self.config = config or ServerConfig()
        self.start_time = time.time()

        self.contexts = ContextCache(
            budget_bytes=self.config.context_budget_bytes,
            ttl=self.config.context_ttl,
            ignore_style=self.config.ignore_matcher,
            ignore_file=self.config.ignore_file,
            matcher_factory=matcher_factory,
        )
        self.patches = PatchRegistry()
        self.processes = ProcessRunner()
        self.completer: ChatCompleter = completer or MistralCompleter(api_key=self.config.api_key)
        self.assistant = Assistant(
            contexts=self.contexts,
            patches=self.patches,
            completer=self.completer,
            model=self.config.llm_model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )

    def ai_status(self) -> Dict[str, Any]:
        return {
            "hasApiKey": self.completer.has_api_key(),
            "model": self.config.llm_model,
            "sessions": len(self.contexts),
            "pendingPatches": len(self.patches),
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get daemon statistics for health check."""
        return {
            "uptime_seconds": time.time() - self.start_time,
            "cached_contexts": len(self.contexts),
            "pending_patches": len(self.patches),
            "running_processes": len(self.processes),
            "context_ttl": self.config.context_ttl,
            **get_cache_stats(),
        }
