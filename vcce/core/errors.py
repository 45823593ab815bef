"""Error taxonomy for the VCCE daemon.

Only MalformedPayload is fatal to a connection. Everything else is
caught at the handler boundary and reported as an ``ok: false`` response.
"""


class DaemonError(Exception):
    """Base class for all daemon errors."""


class MalformedPayload(DaemonError):
    """Frame payload could not be decoded (connection-fatal)."""


class FrameTooLarge(MalformedPayload):
    """Payload does not fit the 4-byte length prefix or the configured limit."""


class UnknownCommand(DaemonError):
    """Request named a command that has no handler."""

    def __init__(self, cmd):
        super().__init__(f"Unknown command {cmd}")
        self.cmd = cmd


class HandlerFailure(DaemonError):
    """An I/O, process or network error raised inside a handler."""


class MissingArgument(HandlerFailure):
    def __init__(self, name: str):
        super().__init__(f"Missing required argument '{name}'")
        self.name = name


class MissingApiKey(HandlerFailure):
    def __init__(self):
        super().__init__("API key is not configured on the server")


class UnknownPatch(DaemonError):
    def __init__(self, patch_id):
        super().__init__(f"Unknown patch {patch_id}")
        self.patch_id = patch_id


class PatchNotImplemented(DaemonError, NotImplementedError):
    """The diff uses a construct the patch applier does not support."""


class PatchConflict(DaemonError):
    """A hunk did not match the files on disk; nothing was written."""
