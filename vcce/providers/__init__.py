"""Chat-completion providers for aiChat.

Import directly from submodules as needed.
"""

__all__ = []
