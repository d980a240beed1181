"""
Worker process supervision: spawn, crash detection and bounded restart.
"""

import asyncio
import contextlib
import os
import shlex
import sys
from enum import Enum
from typing import Callable, Dict, List, Optional

from .config import DEFAULT_MAX_FAILS, DEFAULT_RESTART_DELAY
from .errors import (
    BridgeClosedError,
    BridgeError,
    FatalSupervisorError,
    SpawnError,
    WorkerExitedError,
    WriteAfterCloseError,
)
from .logging import StructuredLogger, LogEvent
from .metrics import Metrics


class WorkerState(Enum):
    """Lifecycle states of the supervised worker."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    CRASHED = "crashed"


OutputHandler = Callable[[bytes], None]
CrashHandler = Callable[[BridgeError], None]
FatalHandler = Callable[[FatalSupervisorError], None]


def exit_host_process(error: FatalSupervisorError):
    """Default fatal handler: end the host so the platform provisions a fresh one."""
    print(f"FATAL: {error}", file=sys.stderr, flush=True)
    os._exit(1)


class WorkerSupervisor:
    """
    Owns the single worker process and its restart policy.

    States: STOPPED -> STARTING -> RUNNING -> (CRASHED | STOPPED)

    - The first ensure_running() spawns the worker.
    - Any exit of the worker is a crash, whatever the exit code, since the
      worker is meant to run indefinitely. A spawn error is a crash too.
    - Each crash increments fail_count and is reported to on_crash. While
      fail_count <= max_fails the worker is respawned, otherwise the
      supervisor stops for good and on_fatal receives a FatalSupervisorError.
    - record_reply() resets fail_count, so only crash loops exhaust the budget.
    """

    def __init__(
        self,
        command: List[str],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        max_fails: int = DEFAULT_MAX_FAILS,
        auto_restart: bool = True,
        restart_delay: float = DEFAULT_RESTART_DELAY,
        read_chunk_size: int = 64 * 1024,
        terminate_timeout: float = 2.0,
        on_output: Optional[OutputHandler] = None,
        on_crash: Optional[CrashHandler] = None,
        on_fatal: Optional[FatalHandler] = None,
        logger: Optional[StructuredLogger] = None,
        metrics: Optional[Metrics] = None,
    ):
        if not command:
            raise ValueError("Worker command is empty")

        self.command = list(command)
        self.env = env
        self.cwd = cwd
        self.max_fails = max_fails
        self.auto_restart = auto_restart
        self.restart_delay = restart_delay
        self.read_chunk_size = read_chunk_size
        self.terminate_timeout = terminate_timeout

        self._on_output = on_output
        self._on_crash = on_crash
        self._on_fatal = on_fatal or exit_host_process
        self._logger = logger or StructuredLogger()
        self._metrics = metrics

        self.state = WorkerState.STOPPED
        self.fail_count = 0
        self.spawn_count = 0
        self.process: Optional[asyncio.subprocess.Process] = None

        self._fatal: Optional[FatalSupervisorError] = None
        self._closing = False
        self._lock = asyncio.Lock()
        self._watch_task: Optional[asyncio.Task] = None
        self._recovery_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> Optional[int]:
        """PID of the live worker, if any."""
        if self.process is not None and self.process.returncode is None:
            return self.process.pid
        return None

    @property
    def fatal_error(self) -> Optional[FatalSupervisorError]:
        """The error that ended supervision, once the restart budget is spent."""
        return self._fatal

    @property
    def is_running(self) -> bool:
        return self.state is WorkerState.RUNNING

    def _set_state(self, state: WorkerState):
        self.state = state
        if self._metrics:
            self._metrics.record_supervisor_state(state.value)

    async def ensure_running(self):
        """
        Make sure a worker is running, spawning one if needed.

        Raises:
            SpawnError: If the worker could not be started (counted as a crash)
            FatalSupervisorError: If the restart budget is exhausted
            BridgeClosedError: If the supervisor was closed
        """
        async with self._lock:
            if self._fatal is not None:
                raise FatalSupervisorError(str(self._fatal), self._fatal.fail_count)
            if self._closing:
                raise BridgeClosedError("Worker supervisor is closed")
            if self.state is WorkerState.RUNNING:
                return
            await self._spawn()

    async def _spawn(self):
        """Start the worker process. Caller holds the lock."""
        self._set_state(WorkerState.STARTING)

        env = os.environ.copy()
        if self.env:
            env.update(self.env)

        try:
            # pipe stdin/stdout, pass stderr through
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=None,
                env=env,
                cwd=self.cwd,
            )
        except (OSError, ValueError) as e:
            error = SpawnError(f"Failed to spawn worker {self.command[0]!r}: {e}")
            self._crashed(error)
            raise error from e

        self.process = process
        self.spawn_count += 1
        if self._metrics:
            self._metrics.record_worker_spawn()
        self._set_state(WorkerState.RUNNING)
        self._logger.worker_spawn(process.pid, shlex.join(self.command))

        self._watch_task = asyncio.create_task(self._watch(process))

    async def _watch(self, process: asyncio.subprocess.Process):
        """Forward worker output until EOF, then treat the exit as a crash."""
        while True:
            chunk = await process.stdout.read(self.read_chunk_size)
            if not chunk:
                break
            if self._on_output is None:
                continue
            try:
                self._on_output(chunk)
            except Exception as e:
                self._logger.error(
                    LogEvent.FRAME_PARSE_ERROR,
                    f"Output handler failed: {e}",
                    worker_pid=process.pid,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        exit_code = await process.wait()

        if self._closing or process is not self.process:
            return

        self._crashed(
            WorkerExitedError(
                f"Worker exited prematurely with code {exit_code}",
                exit_code=exit_code,
            ),
            pid=process.pid,
        )

    def _crashed(self, error: BridgeError, pid: Optional[int] = None):
        """Record a crash, then respawn or give up."""
        self._set_state(WorkerState.CRASHED)
        self.process = None
        self.fail_count += 1
        if self._metrics:
            self._metrics.record_worker_crash()

        if isinstance(error, WorkerExitedError):
            self._logger.worker_exit(pid, error.exit_code, self.fail_count)
        else:
            self._logger.error(
                LogEvent.WORKER_EXIT,
                str(error),
                fail_count=self.fail_count,
                error=str(error),
                error_type=type(error).__name__,
            )

        if self._on_crash is not None:
            try:
                self._on_crash(error)
            except Exception as e:
                self._logger.error(
                    LogEvent.WORKER_EXIT,
                    f"Crash handler failed: {e}",
                    error=str(e),
                    error_type=type(e).__name__,
                )

        if self.fail_count > self.max_fails:
            self._give_up(error)
            return

        self._set_state(WorkerState.STOPPED)
        if self.auto_restart and not self._closing:
            if self._recovery_task is None or self._recovery_task.done():
                self._recovery_task = asyncio.create_task(self._recover())

    def _give_up(self, error: BridgeError):
        fatal = FatalSupervisorError(
            f"Worker failed {self.fail_count} times (limit {self.max_fails}): {error}",
            fail_count=self.fail_count,
        )
        fatal.__cause__ = error
        self._fatal = fatal
        self._set_state(WorkerState.STOPPED)

        self._logger.error(
            LogEvent.SUPERVISOR_FATAL,
            "Max restart attempts reached",
            fail_count=self.fail_count,
            error=str(fatal),
            error_type=type(fatal).__name__,
        )
        try:
            self._on_fatal(fatal)
        except Exception as e:
            self._logger.error(
                LogEvent.SUPERVISOR_FATAL,
                f"Fatal handler failed: {e}",
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _recover(self):
        """Respawn after a crash, waiting restart_delay * fail_count first."""
        delay = self.restart_delay * self.fail_count
        if delay > 0:
            await asyncio.sleep(delay)

        # A failed spawn below schedules the next attempt itself
        self._recovery_task = None
        if self._closing or self._fatal is not None:
            return

        self._logger.info(
            LogEvent.WORKER_RESTART,
            f"Restarting worker (attempt {self.fail_count}/{self.max_fails})",
            fail_count=self.fail_count,
            metadata={"attempt": self.fail_count, "max": self.max_fails},
        )
        try:
            await self.ensure_running()
        except (SpawnError, FatalSupervisorError, BridgeClosedError):
            # Already recorded by _crashed or by close()
            return

    def record_reply(self):
        """A well-formed reply arrived: the worker is healthy again."""
        if self.fail_count > 0 and self._fatal is None:
            self._logger.info(
                LogEvent.FAIL_COUNTER_RESET,
                f"Fail counter reset after {self.fail_count} failures",
                fail_count=0,
            )
            self.fail_count = 0

    async def write(self, data: bytes):
        """
        Write bytes to the worker's stdin.

        Raises:
            WriteAfterCloseError: If the worker's input stream is gone
        """
        process = self.process
        if (
            self.state is not WorkerState.RUNNING
            or process is None
            or process.returncode is not None
            or process.stdin is None
            or process.stdin.is_closing()
        ):
            raise WriteAfterCloseError("Worker input stream is closed")

        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except ConnectionError as e:
            raise WriteAfterCloseError(f"Worker input stream is closed: {e}") from e

    async def close(self):
        """Stop the worker: close stdin, wait, then SIGTERM and SIGKILL."""
        if self._closing:
            return
        self._closing = True

        if self._recovery_task is not None and not self._recovery_task.done():
            self._recovery_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._recovery_task

        async with self._lock:
            process = self.process
            if process is not None and process.returncode is None:
                if process.stdin is not None:
                    with contextlib.suppress(OSError):
                        process.stdin.close()
                try:
                    await asyncio.wait_for(process.wait(), timeout=self.terminate_timeout)
                except asyncio.TimeoutError:
                    with contextlib.suppress(ProcessLookupError):
                        process.terminate()
                    try:
                        await asyncio.wait_for(
                            process.wait(), timeout=self.terminate_timeout
                        )
                    except asyncio.TimeoutError:
                        with contextlib.suppress(ProcessLookupError):
                            process.kill()
                        await process.wait()

            if self._watch_task is not None and not self._watch_task.done():
                self._watch_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._watch_task

            self.process = None
            self._set_state(WorkerState.STOPPED)

        self._logger.worker_stop(reason="shutdown")
