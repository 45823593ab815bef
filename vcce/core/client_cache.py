"""
HTTP client connection pooling for the Mistral API.

Caches Mistral client instances per API key so that repeated aiChat calls
reuse HTTP connections. Replacing the key via setApiKey simply selects
(or creates) another cached client.
"""

import hashlib
from typing import Any, Dict, TYPE_CHECKING

if TYPE_CHECKING:
    from mistralai import Mistral  # pragma: no cover


# Global cache for Mistral clients
_client_cache: Dict[str, Any] = {}


def _cache_key(api_key: str) -> str:
    # Hash api_key so the raw key never sits in the cache key
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def get_cached_client(api_key: str) -> "Mistral":
    """
    Get or create a cached Mistral client instance.

    Args:
        api_key: Mistral API key

    Returns:
        Cached or newly created Mistral client instance
    """
    cache_key = _cache_key(api_key)

    if cache_key not in _client_cache:
        from mistralai import Mistral
        _client_cache[cache_key] = Mistral(api_key=api_key)

    return _client_cache[cache_key]


def clear_client_cache() -> None:
    """Clear the client cache (tests, key rotation)."""
    _client_cache.clear()


def get_cache_stats() -> Dict[str, int]:
    return {
        "cached_clients": len(_client_cache)
    }
