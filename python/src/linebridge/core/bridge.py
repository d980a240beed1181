"""
Async-first Bridge: multiplexed request/reply over one supervised worker.
"""

import asyncio
import time
import uuid
from typing import Any, Dict, List, Optional

from .config import BridgeConfig, DEFAULT_MAX_FAILS, DEFAULT_RESTART_DELAY
from .correlation import CorrelationTable
from .errors import BridgeClosedError, BridgeError, FatalSupervisorError, WriteAfterCloseError
from .framing import DEFAULT_MAX_FRAME_BYTES, Frame, FrameReader
from .logging import StructuredLogger, LogEvent, LogHandler, LogLevel
from .message import Reply, Request
from .metrics import Metrics
from .supervisor import FatalHandler, WorkerState, WorkerSupervisor


class Bridge:
    """
    Submit requests to a long-lived worker process and await their replies.

    The worker reads one JSON object per line on stdin and writes one JSON
    object per line on stdout, in any order. Replies are matched to requests
    by id, so many calls may be in flight at once.

    Features:
    - Lazy spawn: the worker starts with the first request (or start())
    - Bounded restart: max_fails crashes in a row end the host process
      (through on_fatal, which defaults to exit_host_process). Each respawn
      waits restart_delay * fail_count seconds, so with the defaults a worker
      that cannot start at all ends the host after about one second.
    - Default timeout: Configurable at bridge level
    - Metrics: Request latency, error rates, pending depth
    - Structured logging: JSON logs with request ids

    Usage:
        async with Bridge(["./worker"]) as bridge:
            reply = await bridge.call("req-1", {"path": "/"})
    """

    def __init__(
        self,
        command: List[str],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        max_fails: int = DEFAULT_MAX_FAILS,
        auto_restart: bool = True,
        restart_delay: float = DEFAULT_RESTART_DELAY,
        default_timeout: Optional[float] = None,
        read_chunk_size: int = 64 * 1024,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
        terminate_timeout: float = 2.0,
        enable_metrics: bool = True,
        log_handler: Optional[LogHandler] = None,
        log_level: LogLevel = LogLevel.INFO,
        on_fatal: Optional[FatalHandler] = None,
    ):
        self._bridge_id = str(uuid.uuid4())[:8]
        self.default_timeout = default_timeout

        # Metrics collection
        self.enable_metrics = enable_metrics
        self._metrics = Metrics() if enable_metrics else None

        # Structured logging
        self._logger = StructuredLogger(
            handler=log_handler,
            level=log_level,
            bridge_id=self._bridge_id,
        )

        self._reader = FrameReader(max_frame_bytes=max_frame_bytes)
        self._table = CorrelationTable(logger=self._logger, metrics=self._metrics)
        self._supervisor = WorkerSupervisor(
            command,
            env=env,
            cwd=cwd,
            max_fails=max_fails,
            auto_restart=auto_restart,
            restart_delay=restart_delay,
            read_chunk_size=read_chunk_size,
            terminate_timeout=terminate_timeout,
            on_output=self._on_output,
            on_crash=self._on_crash,
            on_fatal=on_fatal,
            logger=self._logger,
            metrics=self._metrics,
        )

        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: BridgeConfig,
        enable_metrics: bool = True,
        log_handler: Optional[LogHandler] = None,
        on_fatal: Optional[FatalHandler] = None,
    ) -> "Bridge":
        """Create a Bridge from a BridgeConfig."""
        return cls(
            config.command,
            env=config.env,
            cwd=config.cwd,
            max_fails=config.max_fails,
            auto_restart=config.auto_restart,
            restart_delay=config.restart_delay,
            default_timeout=config.default_timeout,
            read_chunk_size=config.read_chunk_size,
            max_frame_bytes=config.max_frame_bytes,
            terminate_timeout=config.terminate_timeout,
            enable_metrics=enable_metrics,
            log_handler=log_handler,
            log_level=config.log_level,
            on_fatal=on_fatal,
        )

    @property
    def metrics(self) -> Optional[Metrics]:
        """Get the metrics collector."""
        return self._metrics

    @property
    def logger(self) -> StructuredLogger:
        """Get the structured logger."""
        return self._logger

    @property
    def supervisor(self) -> WorkerSupervisor:
        return self._supervisor

    @property
    def state(self) -> WorkerState:
        return self._supervisor.state

    @property
    def fail_count(self) -> int:
        return self._supervisor.fail_count

    @property
    def pending_count(self) -> int:
        return len(self._table)

    @property
    def closed(self) -> bool:
        return self._closed

    def set_log_handler(self, handler: LogHandler):
        """
        Set a custom log handler.

        Usage:
            bridge.set_log_handler(lambda entry: print(entry.to_json()))
        """
        self._logger.set_handler(handler)

    async def start(self):
        """Spawn the worker now instead of on the first request."""
        await self._ensure_running()

    async def _ensure_running(self):
        if self._closed:
            raise BridgeClosedError("Bridge is closed")
        try:
            await self._supervisor.ensure_running()
        except FatalSupervisorError as e:
            raise BridgeClosedError(f"Bridge gave up on its worker: {e}") from e

    async def submit(
        self,
        request_id: str,
        payload: Any,
        context: Optional[Dict[str, Any]] = None,
    ) -> asyncio.Future:
        """
        Send a request and return the future that will receive its reply.

        The future fails with WorkerExitedError or SpawnError if the worker
        dies first, and with WriteAfterCloseError if the worker's stdin was
        already gone when the request was written.

        Raises:
            DuplicateIdError: If request_id is still awaiting a reply
            EncodeError: If the payload cannot be serialized
            SpawnError: If the worker could not be started
            BridgeClosedError: If the bridge is closed or has given up
        """
        request = Request.create(request_id, payload, context)
        line = request.encode()

        await self._ensure_running()

        future = asyncio.get_running_loop().create_future()
        self._table.register(request.id, future)
        self._logger.request_start(request.id)

        try:
            await self._supervisor.write(line)
        except WriteAfterCloseError as e:
            self._table.fail(request.id, e)
        except (Exception, asyncio.CancelledError):
            self._table.discard(request.id)
            raise

        return future

    async def call(
        self,
        request_id: str,
        payload: Any,
        context: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Submit a request and wait for its reply payload.

        Args:
            request_id: Correlation id, unique among in-flight requests
            payload: Opaque JSON value passed to the worker
            context: Optional invocation context passed to the worker
            timeout: Optional timeout in seconds (uses default_timeout if not set)

        Returns:
            The reply payload

        Raises:
            TimeoutError: If no reply arrived in time
            BridgeError: Any error from submit() or the pending future
        """
        effective_timeout = timeout if timeout is not None else self.default_timeout

        start_time = time.perf_counter()
        if self._metrics:
            self._metrics.start_request(request_id)

        future = None
        try:
            future = await self.submit(request_id, payload, context)
            result = await asyncio.wait_for(future, timeout=effective_timeout)

        except asyncio.TimeoutError:
            # A late reply becomes an orphan
            self._table.discard(request_id)
            error = TimeoutError(
                f"Request {request_id} timed out after {effective_timeout} seconds"
            )
            self._finish_request(request_id, start_time, error)
            self._logger.warn(
                LogEvent.REQUEST_TIMEOUT,
                str(error),
                request_id=request_id,
            )
            raise error

        except asyncio.CancelledError as e:
            if future is not None:
                self._table.discard(request_id)
            self._finish_request(request_id, start_time, e)
            raise

        except Exception as e:
            self._finish_request(request_id, start_time, e)
            raise

        self._finish_request(request_id, start_time)
        return result

    def _finish_request(
        self,
        request_id: str,
        start_time: float,
        error: Optional[BaseException] = None,
    ):
        duration_ms = (time.perf_counter() - start_time) * 1000
        if self._metrics:
            self._metrics.end_request(start_time, success=error is None)
        self._logger.request_end(
            request_id=request_id,
            duration_ms=duration_ms,
            success=error is None,
            error=error,
        )

    def _on_output(self, chunk: bytes):
        """Handle a chunk of worker stdout."""
        for frame in self._reader.feed(chunk):
            self._dispatch(frame)

    def _dispatch(self, frame: Frame):
        if not frame.ok:
            self._frame_error(frame.error)
            return

        try:
            reply = Reply.from_frame(frame.value, raw=frame.raw)
        except BridgeError as e:
            self._frame_error(e)
            return

        self._supervisor.record_reply()
        self._table.resolve(reply.id, reply.payload)

    def _frame_error(self, error: BaseException):
        self._logger.frame_error(error)
        if self._metrics:
            self._metrics.record_parse_error()

    def _on_crash(self, error: BridgeError):
        """The shared channel is gone: fail everything still pending."""
        for frame in self._reader.finish():
            self._frame_error(frame.error)
        failed = self._table.fail_all(error)
        if failed:
            self._logger.warn(
                LogEvent.REQUEST_ERROR,
                f"Failed {failed} pending requests: {error}",
                error=str(error),
                error_type=type(error).__name__,
                metadata={"failed": failed},
            )

    async def close(self):
        """Close the bridge, failing pending requests and stopping the worker."""
        if self._closed:
            return
        self._closed = True

        self._table.fail_all(BridgeClosedError("Bridge shutting down"))
        await self._supervisor.close()
        self._reader.reset()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, tb):
        await self.close()
