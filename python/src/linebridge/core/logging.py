"""
Structured logging for bridge and worker lifecycle events.

Provides JSON-formatted logs with pluggable output handlers.
"""

import sys
import time
import orjson
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Optional, Dict
from enum import Enum


class LogLevel(Enum):
    """Log levels for structured logging."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LogEvent(Enum):
    """Standard log events for bridge operations."""

    # Worker lifecycle
    WORKER_SPAWN = "worker_spawn"
    WORKER_EXIT = "worker_exit"
    WORKER_RESTART = "worker_restart"
    WORKER_STOP = "worker_stop"
    SUPERVISOR_FATAL = "supervisor_fatal"
    FAIL_COUNTER_RESET = "fail_counter_reset"

    # Requests
    REQUEST_START = "request_start"
    REQUEST_END = "request_end"
    REQUEST_TIMEOUT = "request_timeout"
    REQUEST_ERROR = "request_error"

    # Frames
    FRAME_PARSE_ERROR = "frame_parse_error"
    ORPHAN_REPLY = "orphan_reply"
    DUPLICATE_ID = "duplicate_id"


@dataclass
class LogEntry:
    """
    Structured log entry with all context.

    Can be serialized to JSON or passed to custom handlers.
    """

    # Required
    event: str
    level: str
    message: str
    timestamp: float = field(default_factory=time.time)

    # Correlation
    bridge_id: Optional[str] = None
    request_id: Optional[str] = None

    # Worker
    worker_pid: Optional[int] = None
    state: Optional[str] = None
    fail_count: Optional[int] = None

    # Timing
    duration_ms: Optional[float] = None

    # Status
    success: Optional[bool] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    # Custom metadata
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None:
                result[key] = value
        return result

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return orjson.dumps(self.to_dict(), default=str).decode("utf-8")


# Type alias for log handler
LogHandler = Callable[[LogEntry], None]


class StructuredLogger:
    """
    Structured logger with pluggable handlers.

    Usage:
        logger = StructuredLogger(
            handler=lambda entry: print(entry.to_json())
        )

        logger.info(LogEvent.WORKER_SPAWN, "Worker spawned", worker_pid=1234)
        logger.warn(LogEvent.ORPHAN_REPLY, "No pending entry", request_id="abc")

    Integration with Bridge:
        bridge = Bridge(["./worker"], log_handler=default_json_handler)
    """

    def __init__(
        self,
        handler: Optional[LogHandler] = None,
        level: LogLevel = LogLevel.INFO,
        bridge_id: Optional[str] = None,
    ):
        self.handler = handler
        self.level = level
        self.bridge_id = bridge_id
        self._level_order = {
            LogLevel.DEBUG: 0,
            LogLevel.INFO: 1,
            LogLevel.WARN: 2,
            LogLevel.ERROR: 3,
        }

    def set_handler(self, handler: LogHandler):
        """Set or update the log handler."""
        self.handler = handler

    def _should_log(self, level: LogLevel) -> bool:
        """Check if this level should be logged."""
        return self._level_order.get(level, 0) >= self._level_order.get(self.level, 0)

    def log(
        self,
        event: LogEvent,
        message: str,
        level: LogLevel = LogLevel.INFO,
        **kwargs,
    ):
        """
        Log an event with structured data.

        Args:
            event: The event type (from LogEvent enum)
            message: Human-readable message
            level: Log level (default: INFO)
            **kwargs: Additional fields for LogEntry
        """
        if not self.handler or not self._should_log(level):
            return

        entry = LogEntry(
            event=event.value,
            level=level.value,
            message=message,
            bridge_id=self.bridge_id,
            **kwargs,
        )

        try:
            self.handler(entry)
        except Exception as e:
            # Don't let logging errors break the bridge
            print(f"Log handler error: {e}", file=sys.stderr)

    def debug(self, event: LogEvent, message: str, **kwargs):
        """Log at DEBUG level."""
        self.log(event, message, level=LogLevel.DEBUG, **kwargs)

    def info(self, event: LogEvent, message: str, **kwargs):
        """Log at INFO level."""
        self.log(event, message, level=LogLevel.INFO, **kwargs)

    def warn(self, event: LogEvent, message: str, **kwargs):
        """Log at WARN level."""
        self.log(event, message, level=LogLevel.WARN, **kwargs)

    def error(self, event: LogEvent, message: str, **kwargs):
        """Log at ERROR level."""
        self.log(event, message, level=LogLevel.ERROR, **kwargs)

    # Convenience methods for common events

    def request_start(self, request_id: str, metadata: Optional[Dict[str, Any]] = None):
        """Log request submission."""
        self.debug(
            LogEvent.REQUEST_START,
            f"Submitting {request_id}",
            request_id=request_id,
            metadata=metadata or {},
        )

    def request_end(
        self,
        request_id: str,
        duration_ms: float,
        success: bool = True,
        error: Optional[BaseException] = None,
    ):
        """Log request completion."""
        event = LogEvent.REQUEST_END if success else LogEvent.REQUEST_ERROR
        level = LogLevel.INFO if success else LogLevel.WARN
        self.log(
            event,
            f"{'Completed' if success else 'Failed'} {request_id}",
            level=level,
            request_id=request_id,
            duration_ms=round(duration_ms, 2),
            success=success,
            error=str(error) if error is not None else None,
            error_type=type(error).__name__ if error is not None else None,
        )

    def worker_spawn(self, pid: int, command: str):
        """Log worker process spawn."""
        self.info(
            LogEvent.WORKER_SPAWN,
            f"Worker spawned: {command}",
            worker_pid=pid,
            state="running",
        )

    def worker_exit(self, pid: Optional[int], exit_code: Optional[int], fail_count: int):
        """Log worker process exit. Always unexpected while the bridge is open."""
        self.warn(
            LogEvent.WORKER_EXIT,
            f"Worker exited prematurely with code {exit_code}",
            worker_pid=pid,
            fail_count=fail_count,
            metadata={"exit_code": exit_code},
        )

    def worker_stop(self, reason: str = "shutdown"):
        """Log worker stop."""
        self.info(
            LogEvent.WORKER_STOP,
            f"Worker stopped: {reason}",
        )

    def frame_error(self, error: BaseException):
        """Log a dropped frame."""
        self.warn(
            LogEvent.FRAME_PARSE_ERROR,
            "Dropped malformed frame",
            error=str(error),
            error_type=type(error).__name__,
        )


def default_json_handler(entry: LogEntry):
    """Default handler that prints JSON to stdout."""
    print(entry.to_json())


def stderr_json_handler(entry: LogEntry):
    """JSON handler for worker processes, whose stdout carries the protocol."""
    print(entry.to_json(), file=sys.stderr)


def default_pretty_handler(entry: LogEntry):
    """Default handler that prints human-readable output."""
    timestamp = time.strftime("%H:%M:%S", time.localtime(entry.timestamp))
    level = entry.level.upper().ljust(5)
    prefix = f"[{timestamp}] [{level}]"

    parts = [prefix, entry.event, entry.message]

    if entry.request_id:
        parts.append(f"req={entry.request_id[:8]}")
    if entry.worker_pid is not None:
        parts.append(f"pid={entry.worker_pid}")
    if entry.fail_count is not None:
        parts.append(f"fails={entry.fail_count}")
    if entry.duration_ms is not None:
        parts.append(f"{entry.duration_ms:.1f}ms")
    if entry.error:
        parts.append(f"error={entry.error}")

    print(" ".join(parts))
