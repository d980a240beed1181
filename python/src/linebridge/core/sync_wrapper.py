"""
Sync wrapper for the async Bridge.
Provides a blocking API on top of the async core.
"""

import asyncio
import threading
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .bridge import Bridge


class SyncBridge:
    """
    Synchronous wrapper for Bridge.

    Runs the bridge on an event loop in a background thread. Every operation
    is handed to that loop, so the bridge itself stays single-threaded.

    Usage:
        with SyncBridge(Bridge(["./worker"])) as bridge:
            reply = bridge.call("req-1", {"path": "/"})
    """

    def __init__(self, bridge: "Bridge"):
        """
        Initialize sync wrapper.

        Args:
            bridge: The async Bridge instance to wrap
        """
        self._bridge = bridge
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[threading.Thread] = None
        self._loop_started = threading.Event()
        self._loop_stopped = threading.Event()

    @property
    def bridge(self) -> "Bridge":
        return self._bridge

    def start(self):
        """Start the worker synchronously."""
        self._ensure_loop()
        return self._run_async(self._bridge.start())

    def call(
        self,
        request_id: str,
        payload: Any,
        context: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Submit a request and block until its reply arrives.

        Args:
            request_id: Correlation id, unique among in-flight requests
            payload: Opaque JSON value passed to the worker
            context: Optional invocation context
            timeout: Optional timeout in seconds

        Returns:
            The reply payload
        """
        self._ensure_loop()
        return self._run_async(
            self._bridge.call(request_id, payload, context=context, timeout=timeout)
        )

    def close(self):
        """Close the bridge synchronously."""
        if self._loop and not self._loop.is_closed():
            self._run_async(self._bridge.close())
            self._stop_loop()

    def _ensure_loop(self):
        """Ensure an event loop is running in a background thread."""
        if self._loop is None or self._loop.is_closed():
            self._start_loop()

    def _start_loop(self):
        """Start an event loop in a background thread."""
        self._loop_started.clear()
        self._loop_stopped.clear()

        def run_loop():
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
            self._loop_started.set()
            self._loop.run_forever()
            self._loop.close()
            self._loop_stopped.set()

        self._loop_thread = threading.Thread(target=run_loop, daemon=True)
        self._loop_thread.start()
        self._loop_started.wait()

    def _stop_loop(self):
        """Stop the background event loop."""
        if self._loop and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._loop_stopped.wait(timeout=2)
            if self._loop_thread is not None:
                self._loop_thread.join(timeout=2)
        self._loop = None
        self._loop_thread = None

    def _run_async(self, coro):
        """
        Run an async coroutine in the background loop.

        Args:
            coro: The coroutine to run

        Returns:
            The result of the coroutine
        """
        if not self._loop or self._loop.is_closed():
            coro.close()
            raise RuntimeError("Event loop is not running")

        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    def __enter__(self):
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, tb):
        """Context manager exit."""
        self.close()
