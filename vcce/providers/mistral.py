"""Mistral chat-completion backend for aiChat."""

import logging
from typing import Any, Dict, List, Optional, Protocol, TYPE_CHECKING

from vcce.core.client_cache import get_cached_client
from vcce.core.errors import HandlerFailure, MissingApiKey

if TYPE_CHECKING:
    from mistralai import Mistral

logger = logging.getLogger(__name__)


class ChatCompleter(Protocol):
    """What the daemon needs from a chat-completion service."""

    def has_api_key(self) -> bool:
        ...

    def set_api_key(self, key: str) -> None:
        ...

    async def complete(self, messages: List[Dict[str, str]], options: Dict[str, Any]) -> str:
        ...


class MistralCompleter:
    """
    Chat completions through the Mistral SDK.

    The API key can be provided at startup (config / MISTRAL_API_KEY) or
    later by the client with setApiKey. Clients are pooled per key.
    """

    def __init__(self, api_key: Optional[str] = None, client: Optional["Mistral"] = None):
        """
        Args:
            api_key: Mistral API key (may be set later)
            client: Pre-initialized Mistral client (tests)
        """
        self._api_key = api_key
        self._client = client
        if not api_key and client is None:
            logger.warning(
                "MISTRAL_API_KEY not set - AI features are disabled until a key is provided by the client"
            )

    def has_api_key(self) -> bool:
        return bool(self._api_key) or self._client is not None

    def set_api_key(self, key: str) -> None:
        self._api_key = key
        self._client = None
        logger.info("API key set via client")

    def _get_client(self) -> "Mistral":
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise MissingApiKey()
        return get_cached_client(self._api_key)

    async def complete(self, messages: List[Dict[str, str]], options: Dict[str, Any]) -> str:
        """
        Run one chat completion.

        Args:
            messages: [{"role": "system"|"user"|"assistant", "content": str}, ...]
            options: {"model", "temperature", "max_tokens"}

        Returns:
            Assistant reply text ("" when the model returned no content)

        Raises:
            MissingApiKey: If no key is configured
            HandlerFailure: If the API call fails
        """
        client = self._get_client()
        model = options["model"]
        logger.debug(
            f"Sending chat completion: model={model}, messages={len(messages)}, "
            f"temperature={options.get('temperature')}, max_tokens={options.get('max_tokens')}"
        )

        try:
            response = await client.chat.complete_async(
                model=model,
                messages=messages,
                temperature=options.get("temperature"),
                max_tokens=options.get("max_tokens"),
            )
        except Exception as e:
            logger.error(f"Chat completion failed: {e}")
            raise HandlerFailure(f"AI request failed: {e}") from e

        if not response or not response.choices:
            return ""
        content = response.choices[0].message.content
        if isinstance(content, list):
            # Content chunks (text + references); keep the text parts
            content = "".join(getattr(chunk, "text", "") or "" for chunk in content)
        output = content or ""
        logger.debug(f"Chat completion successful, output length: {len(output)}")
        return output
