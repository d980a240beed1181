"""
Error kinds raised or delivered by the bridge.

Request-scoped errors travel through the pending future of the request that
caused them. Only worker death fails every pending request at once.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""


class SpawnError(BridgeError):
    """The worker process could not be started."""


class WorkerExitedError(BridgeError):
    """The worker process terminated. Any exit code counts, including 0."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


class FrameParseError(BridgeError):
    """One frame on the worker output stream could not be decoded."""

    def __init__(self, message: str, frame: bytes = b""):
        super().__init__(message)
        self.frame = frame


class OrphanReplyWarning(RuntimeWarning):
    """A reply arrived for an id that has no pending entry."""


class DuplicateIdError(BridgeError):
    """A pending entry already exists for this id."""


class WriteAfterCloseError(BridgeError):
    """A request was written to a worker whose input stream is gone."""


class FatalSupervisorError(BridgeError):
    """The restart budget is exhausted. The host process should terminate."""

    def __init__(self, message: str, fail_count: int = 0):
        super().__init__(message)
        self.fail_count = fail_count


class EncodeError(BridgeError):
    """A request payload could not be serialized to JSON."""


class BridgeClosedError(BridgeError):
    """The bridge was closed or has given up on its worker."""
