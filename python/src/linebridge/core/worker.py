"""
Worker-side runtime for processes served by a Bridge.
"""

import asyncio
import inspect
import sys
import orjson
from typing import Any, BinaryIO, Dict, Optional, Set

from .errors import EncodeError
from .logging import StructuredLogger, LogEvent, LogLevel, stderr_json_handler
from .message import Reply


class StreamWorker:
    """
    Base class for worker processes speaking newline-delimited JSON on stdio.

    Subclasses implement handle(payload, context). It may be a plain method or
    a coroutine function; coroutines run concurrently, so their replies can
    leave in a different order than the requests came in.

    Each request line is {"id", "payload", "context", ...}. Each reply line is
    {"id", "payload"}, or {"id", "error": {"type", "message"}} when handle()
    raises.

    Usage:
        class EchoWorker(StreamWorker):
            def handle(self, payload, context):
                return payload

        if __name__ == "__main__":
            EchoWorker().run()
    """

    def __init__(
        self,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[BinaryIO] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self._stdin = stdin
        self._stdout = stdout
        self._running = True
        self._tasks: Set[asyncio.Task] = set()
        self._logger = logger or StructuredLogger(
            handler=stderr_json_handler, level=LogLevel.WARN
        )

        # IO redirection
        self.original_stdout = None

    def handle(self, payload: Any, context: Dict[str, Any]) -> Any:
        """Process one request payload and return the reply payload."""
        raise NotImplementedError

    def _setup_io_redirection(self):
        """Keep the real stdout for replies and send stray prints to stderr."""
        if self._stdin is None:
            self._stdin = sys.stdin.buffer
        if self._stdout is None:
            self._stdout = sys.stdout.buffer

        self.original_stdout = sys.stdout
        sys.stdout = sys.stderr

    def _restore_io(self):
        if self.original_stdout is not None:
            sys.stdout = self.original_stdout
            self.original_stdout = None

    def _send(self, data: bytes):
        try:
            self._stdout.write(data)
            self._stdout.flush()
        except (BrokenPipeError, ValueError) as e:
            # Bridge went away; nothing left to answer
            self._logger.warn(LogEvent.WORKER_STOP, f"Reply stream closed: {e}")
            self._running = False

    def _send_result(self, request_id: str, result: Any):
        try:
            data = Reply(id=request_id, payload=result).encode()
        except EncodeError as e:
            self._send_error(request_id, e)
            return
        self._send(data)

    def _send_error(self, request_id: str, error: BaseException):
        self._send(
            orjson.dumps(
                {
                    "id": request_id,
                    "error": {"type": type(error).__name__, "message": str(error)},
                },
                option=orjson.OPT_APPEND_NEWLINE,
            )
        )

    async def _handle_async(self, request_id: str, payload: Any, context: Dict[str, Any]):
        try:
            result = await self.handle(payload, context)
        except Exception as e:
            self._send_error(request_id, e)
            return
        self._send_result(request_id, result)

    def _handle_line(self, line: bytes):
        """Decode one request line and dispatch it to handle()."""
        if not line.strip():
            return

        try:
            message = orjson.loads(line)
        except orjson.JSONDecodeError as e:
            self._logger.warn(
                LogEvent.FRAME_PARSE_ERROR,
                f"Skipping malformed request line: {e}",
                error_type="FrameParseError",
            )
            return

        request_id = message.get("id") if isinstance(message, dict) else None
        if not isinstance(request_id, str) or not request_id:
            self._logger.warn(
                LogEvent.FRAME_PARSE_ERROR,
                "Skipping request without id",
                error_type="FrameParseError",
            )
            return

        payload = message.get("payload")
        context = message.get("context") or {}

        if inspect.iscoroutinefunction(self.handle):
            task = asyncio.create_task(self._handle_async(request_id, payload, context))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return

        try:
            result = self.handle(payload, context)
        except Exception as e:
            self._send_error(request_id, e)
            return
        self._send_result(request_id, result)

    async def serve(self):
        """Answer requests until stdin closes, then finish in-flight handlers."""
        if self._stdin is None or self._stdout is None:
            self._setup_io_redirection()

        loop = asyncio.get_running_loop()
        while self._running:
            line = await loop.run_in_executor(None, self._stdin.readline)
            if not line:
                break
            self._handle_line(line)
            # let concurrent handlers make progress between reads
            await asyncio.sleep(0)

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def run(self):
        """Run the worker until stdin is closed."""
        self._setup_io_redirection()
        try:
            asyncio.run(self.serve())
        finally:
            self._restore_io()
