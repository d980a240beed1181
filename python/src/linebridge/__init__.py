"""
linebridge - request/reply bridge to a long-lived stdio worker

A short-lived handler (one invocation per inbound event, possibly many at
once) shares a single long-lived worker process. Requests go to the worker's
stdin as one JSON object per line; replies come back on its stdout, one JSON
object per line, in whatever order the worker finishes them. Replies are
matched to their callers by request id.

## Quick Start

### Worker process
```python
from linebridge import StreamWorker

class EchoWorker(StreamWorker):
    async def handle(self, payload, context):
        return {"echo": payload}

if __name__ == "__main__":
    EchoWorker().run()
```

Any executable works as a worker as long as it reads one JSON object per
line on stdin and writes `{"id": ..., "payload": ...}` lines on stdout.

### Host process
```python
from linebridge import Bridge

async with Bridge(["python", "echo_worker.py"]) as bridge:
    # Awaitable call
    reply = await bridge.call("req-1", {"x": 1})

    # Or keep the future and collect later
    future = await bridge.submit("req-2", {"x": 2})
    reply = await future
```

### Platform handler
```python
from linebridge import Bridge, InvocationHandler

handler = InvocationHandler(Bridge(["./worker"]))

async def handle(event, context):
    error, response = await handler.handle(event, context)
```

## Worker supervision

The worker is spawned with the first request. Every exit counts as a crash
(the worker is meant to run forever): pending requests fail with
WorkerExitedError and the worker is respawned. A well-formed reply resets the
fail counter. After more than `max_fails` crashes in a row the supervisor
gives up and, by default, terminates the host process so the platform can
provision a fresh one.

## Exports

- Bridge: Async façade (submit / call / close)
- SyncBridge: Blocking wrapper running the bridge on a background loop
- StreamWorker: Base class for Python workers
- InvocationHandler, make_sync_handler: Platform handler adapters
- BridgeConfig: Settings, optionally read from LINEBRIDGE_* variables
- Metrics: Metrics collection for observability
- StructuredLogger: Structured logging with request ids
"""

from .core.bridge import Bridge
from .core.sync_wrapper import SyncBridge
from .core.worker import StreamWorker
from .core.config import BridgeConfig
from .core.supervisor import WorkerState, exit_host_process
from .core.message import Request, Reply
from .core.framing import FrameReader
from .core.correlation import CorrelationTable
from .core.errors import (
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
from .core.metrics import Metrics, MetricsSnapshot
from .core.logging import (
    StructuredLogger,
    LogEntry,
    LogEvent,
    LogLevel,
    LogHandler,
    default_json_handler,
    default_pretty_handler,
    stderr_json_handler,
)
from .handler import (
    InvocationHandler,
    make_sync_handler,
    resolve_request_id,
    context_to_dict,
)

__version__ = "0.1.0"
__all__ = [
    # Core
    "Bridge",
    "SyncBridge",
    "StreamWorker",
    "BridgeConfig",
    "WorkerState",
    "exit_host_process",
    "Request",
    "Reply",
    "FrameReader",
    "CorrelationTable",
    # Handler glue
    "InvocationHandler",
    "make_sync_handler",
    "resolve_request_id",
    "context_to_dict",
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
