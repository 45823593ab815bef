"""aiChat orchestration: project context + completion + patch detection."""

from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional

from vcce.context.cache import ContextCache, Session
from vcce.core.errors import HandlerFailure
from vcce.core.patches import PatchRegistry, PendingPatch
from vcce.providers.mistral import ChatCompleter

logger = logging.getLogger(__name__)

VALID_ROLES = {"system", "user", "assistant"}


def build_system_prompt(session: Session) -> str:
    """
    Build the system prompt using XML-like sections:

    1. <system_info> - Role
    2. <project> - Project path and (possibly truncated) file snapshot
    3. <instructions> - How to propose file changes
    """
    truncated = ' truncated="true"' if session.truncated else ""
    return (
        "<system_info>\n"
        "You are a coding assistant embedded in a code editor. You answer questions "
        "about the user's project and propose changes to its files.\n"
        "</system_info>\n\n"
        f'<project path="{session.project_path}"{truncated}>\n'
        f"{session.files_text}"
        "</project>\n\n"
        "<instructions>\n"
        "- File paths are relative to the project root.\n"
        "- When you propose file changes, include exactly one fenced ```diff block "
        "containing a unified diff (--- a/path, +++ b/path, @@ hunks) covering all files.\n"
        "- Use /dev/null as the old path to create a file and as the new path to delete one.\n"
        "- The user approves or discards the diff; do not assume it has been applied.\n"
        "</instructions>"
    )


def normalize_messages(messages: Any) -> List[Dict[str, str]]:
    """
    Validate client chat messages.

    Raises:
        HandlerFailure: If messages is not a list of {role, content} dicts
    """
    if not isinstance(messages, list):
        raise HandlerFailure("'messages' must be a list")

    normalized = []
    for i, message in enumerate(messages):
        if not isinstance(message, dict):
            raise HandlerFailure(f"Message {i} must be an object")
        role = message.get("role")
        content = message.get("content")
        if role not in VALID_ROLES:
            raise HandlerFailure(f"Message {i} has invalid role {role!r}")
        if not isinstance(content, str):
            raise HandlerFailure(f"Message {i} content must be a string")
        normalized.append({"role": role, "content": content})
    return normalized


@dataclass
class ChatResult:
    reply: str
    patch: Optional[PendingPatch]
    session: Session
    new_session: bool

    def meta(self) -> Dict[str, Any]:
        return {
            "patch": self.patch.to_wire() if self.patch else None,
            "contextBytes": self.session.byte_count,
            "truncated": self.session.truncated,
            "newSession": self.new_session,
        }


class Assistant:
    """Glues the context cache, the completion service and the patch registry."""

    def __init__(
        self,
        contexts: ContextCache,
        patches: PatchRegistry,
        completer: ChatCompleter,
        model: str,
        temperature: float = 0.2,
        max_tokens: int = 32000,
    ):
        self.contexts = contexts
        self.patches = patches
        self.completer = completer
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def options(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    async def chat(self, project_path: str, messages: Any, new_session: bool = False) -> ChatResult:
        """
        Answer a conversation about a project.

        The cached project session is reused unless new_session is set or
        none exists yet. A diff block in the reply becomes a pending patch.
        """
        conversation = normalize_messages(messages)
        session, created = await self.contexts.get_session(project_path, refresh=new_session)

        prompt = [{"role": "system", "content": build_system_prompt(session)}]
        prompt.extend(conversation)

        reply = await self.completer.complete(prompt, self.options())
        patch = self.patches.register_from_reply(session.project_path, reply)
        return ChatResult(reply=reply, patch=patch, session=session, new_session=created)
