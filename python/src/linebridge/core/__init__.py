"""
Core modules for the async-first stdio bridge.
"""

from .errors import (
    BridgeError,
    SpawnError,
    WorkerExitedError,
    FrameParseError,
    OrphanReplyWarning,
    DuplicateIdError,
    WriteAfterCloseError,
    FatalSupervisorError,
    EncodeError,
    BridgeClosedError,
)
from .message import Request, Reply, encode_request, FRAME_TERMINATOR
from .framing import Frame, FrameReader
from .correlation import CorrelationTable
from .config import BridgeConfig
from .supervisor import WorkerSupervisor, WorkerState, exit_host_process
from .bridge import Bridge
from .sync_wrapper import SyncBridge
from .worker import StreamWorker
from .metrics import Metrics, MetricsSnapshot
from .logging import (
    StructuredLogger,
    LogEntry,
    LogEvent,
    LogLevel,
    LogHandler,
    default_json_handler,
    default_pretty_handler,
    stderr_json_handler,
)

__all__ = [
    # Errors
    "BridgeError",
    "SpawnError",
    "WorkerExitedError",
    "FrameParseError",
    "OrphanReplyWarning",
    "DuplicateIdError",
    "WriteAfterCloseError",
    "FatalSupervisorError",
    "EncodeError",
    "BridgeClosedError",
    # Messages and framing
    "Request",
    "Reply",
    "encode_request",
    "FRAME_TERMINATOR",
    "Frame",
    "FrameReader",
    "CorrelationTable",
    # Lifecycle
    "BridgeConfig",
    "WorkerSupervisor",
    "WorkerState",
    "exit_host_process",
    "Bridge",
    "SyncBridge",
    "StreamWorker",
    # Metrics
    "Metrics",
    "MetricsSnapshot",
    # Logging
    "StructuredLogger",
    "LogEntry",
    "LogEvent",
    "LogLevel",
    "LogHandler",
    "default_json_handler",
    "default_pretty_handler",
    "stderr_json_handler",
]
