"""
Tests for metrics and structured logging features.
"""

import contextlib
import io
import json
import time
import sys
import os

# Add src to path for testing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from linebridge.core.metrics import Metrics, MetricsSnapshot
from linebridge.core.logging import (
    StructuredLogger,
    LogEntry,
    LogEvent,
    LogLevel,
    default_json_handler,
    default_pretty_handler,
    stderr_json_handler,
)
from linebridge.core.bridge import Bridge

from bridge_helpers import FatalRecorder


class TestMetrics:
    """Test metrics collection."""

    def test_metrics_creation(self):
        """Test creating a Metrics instance."""
        snapshot = Metrics().snapshot()
        assert isinstance(snapshot, MetricsSnapshot)
        assert snapshot.requests_total == 0
        assert snapshot.pending_depth == 0
        assert snapshot.supervisor_state == "stopped"

    def test_record_request_success(self):
        """Test recording successful requests."""
        metrics = Metrics()

        start = metrics.start_request("req-1")
        assert metrics.snapshot().pending_depth == 1
        time.sleep(0.01)
        latency = metrics.end_request(start, success=True)

        assert latency > 0
        snapshot = metrics.snapshot()
        assert snapshot.requests_total == 1
        assert snapshot.requests_success == 1
        assert snapshot.pending_depth == 0
        assert snapshot.latency_max_ms >= latency

    def test_record_request_failure(self):
        metrics = Metrics()
        metrics.end_request(metrics.start_request("req-1"), success=False)

        snapshot = metrics.snapshot()
        assert snapshot.requests_failed == 1
        assert snapshot.requests_success == 0

    def test_latency_percentiles(self):
        """Test latency percentile calculation."""
        metrics = Metrics()
        now = time.perf_counter()
        for i in range(100):
            metrics.start_request(f"req-{i}")
            # Pretend request i took i+1 milliseconds
            metrics.end_request(now - (i + 1) / 1000.0)

        snapshot = metrics.snapshot()
        assert snapshot.latency_min_ms < snapshot.latency_p50_ms
        assert snapshot.latency_p50_ms <= snapshot.latency_p95_ms
        assert snapshot.latency_p95_ms <= snapshot.latency_p99_ms
        assert snapshot.latency_p99_ms <= snapshot.latency_max_ms

    def test_pending_max_depth(self):
        metrics = Metrics()
        starts = [metrics.start_request(f"req-{i}") for i in range(3)]
        for start in starts:
            metrics.end_request(start)

        snapshot = metrics.snapshot()
        assert snapshot.pending_max_depth == 3
        assert snapshot.pending_depth == 0

    def test_worker_and_stream_counters(self):
        metrics = Metrics()
        metrics.record_worker_spawn()
        metrics.record_worker_crash()
        metrics.record_supervisor_state("running")
        metrics.record_orphan_reply()
        metrics.record_parse_error()
        metrics.record_parse_error()

        snapshot = metrics.snapshot()
        assert snapshot.worker_spawns == 1
        assert snapshot.worker_crashes == 1
        assert snapshot.supervisor_state == "running"
        assert snapshot.orphan_replies == 1
        assert snapshot.parse_errors == 2

    def test_metrics_to_dict(self):
        metrics = Metrics()
        metrics.end_request(metrics.start_request("a"), success=True)
        metrics.end_request(metrics.start_request("b"), success=False)

        data = metrics.to_dict()
        assert data["requests"]["total"] == 2
        assert data["requests"]["error_rate"] == 0.5
        assert set(data) == {"requests", "latency_ms", "pending", "worker", "stream"}

    def test_metrics_reset_keeps_state(self):
        metrics = Metrics()
        metrics.record_worker_spawn()
        metrics.record_supervisor_state("running")
        metrics.reset()

        snapshot = metrics.snapshot()
        assert snapshot.worker_spawns == 0
        assert snapshot.supervisor_state == "running"


class TestStructuredLogger:
    """Test structured logging."""

    def test_logger_creation(self):
        entries = []
        logger = StructuredLogger(handler=entries.append, bridge_id="b-1")

        logger.info(LogEvent.WORKER_SPAWN, "Worker spawned", worker_pid=42)

        assert len(entries) == 1
        assert entries[0].event == "worker_spawn"
        assert entries[0].level == "info"
        assert entries[0].worker_pid == 42
        assert entries[0].bridge_id == "b-1"

    def test_no_handler_is_silent(self):
        StructuredLogger().error(LogEvent.SUPERVISOR_FATAL, "nobody listens")

    def test_log_levels(self):
        """Test that entries below the configured level are dropped."""
        entries = []
        logger = StructuredLogger(handler=entries.append, level=LogLevel.WARN)

        logger.debug(LogEvent.REQUEST_START, "Debug message")
        logger.info(LogEvent.REQUEST_END, "Info message")
        logger.warn(LogEvent.ORPHAN_REPLY, "Warn message")
        logger.error(LogEvent.SUPERVISOR_FATAL, "Error message")

        assert [e.level for e in entries] == ["warn", "error"]

    def test_log_entry_to_dict(self):
        entry = LogEntry(
            event="request_end",
            level="info",
            message="Completed a",
            request_id="a",
            duration_ms=42.5,
            success=True,
        )

        data = entry.to_dict()
        assert data["request_id"] == "a"
        assert data["duration_ms"] == 42.5
        assert data["success"] is True
        # None values should be omitted
        assert "error" not in data
        assert "worker_pid" not in data

    def test_log_entry_to_json(self):
        entry = LogEntry(
            event="worker_exit",
            level="warn",
            message="Worker exited",
            metadata={"exit_code": 3},
        )
        data = json.loads(entry.to_json())
        assert data["event"] == "worker_exit"
        assert data["metadata"] == {"exit_code": 3}

    def test_convenience_methods(self):
        entries = []
        logger = StructuredLogger(handler=entries.append, level=LogLevel.DEBUG)

        logger.request_start("a")
        assert entries[-1].event == "request_start"
        assert entries[-1].level == "debug"

        logger.request_end("a", duration_ms=15.5, success=True)
        assert entries[-1].event == "request_end"
        assert entries[-1].duration_ms == 15.5

        logger.request_end("b", duration_ms=1.0, success=False, error=TimeoutError("late"))
        assert entries[-1].event == "request_error"
        assert entries[-1].error == "late"
        assert entries[-1].error_type == "TimeoutError"

        logger.worker_exit(pid=7, exit_code=3, fail_count=2)
        assert entries[-1].event == "worker_exit"
        assert entries[-1].fail_count == 2
        assert entries[-1].metadata == {"exit_code": 3}

        logger.frame_error(ValueError("bad"))
        assert entries[-1].event == "frame_parse_error"

    def test_handler_exception_handling(self):
        """Test that handler exceptions don't break logging."""

        def bad_handler(entry):
            raise ValueError("Handler error")

        logger = StructuredLogger(handler=bad_handler)
        with contextlib.redirect_stderr(io.StringIO()) as err:
            logger.info(LogEvent.WORKER_SPAWN, "Test")
        assert "Handler error" in err.getvalue()

    def test_builtin_handlers(self):
        entry = LogEntry(
            event="worker_spawn",
            level="info",
            message="Worker spawned",
            worker_pid=1,
            request_id="abcdefghijk",
        )

        with contextlib.redirect_stdout(io.StringIO()) as out:
            default_json_handler(entry)
            default_pretty_handler(entry)
        lines = out.getvalue().splitlines()
        assert json.loads(lines[0])["event"] == "worker_spawn"
        assert "pid=1" in lines[1]
        assert "req=abcdefgh" in lines[1]

        with contextlib.redirect_stderr(io.StringIO()) as err:
            stderr_json_handler(entry)
        assert json.loads(err.getvalue())["worker_pid"] == 1


class TestIntegration:
    """Logger and metrics wiring on Bridge."""

    def test_bridge_logging(self):
        entries = []
        bridge = Bridge(["true"], log_handler=entries.append, on_fatal=FatalRecorder())
        bridge.logger.info(LogEvent.WORKER_SPAWN, "hello")

        assert entries[0].bridge_id == bridge.logger.bridge_id
        assert entries[0].bridge_id is not None

    def test_set_log_handler(self):
        entries = []
        bridge = Bridge(["true"], on_fatal=FatalRecorder())
        bridge.set_log_handler(entries.append)
        bridge.logger.warn(LogEvent.ORPHAN_REPLY, "x")
        assert len(entries) == 1

    def test_bridge_metrics_property(self):
        assert isinstance(Bridge(["true"], on_fatal=FatalRecorder()).metrics, Metrics)
        assert Bridge(["true"], enable_metrics=False, on_fatal=FatalRecorder()).metrics is None
