"""Project context aggregation and caching for AI conversations."""

from vcce.context.cache import ContextCache, Session

__all__ = ["ContextCache", "Session"]
