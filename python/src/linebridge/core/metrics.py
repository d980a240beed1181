"""
Metrics collection for observability.

Tracks request latency, error rates, pending depth, and worker lifecycle events.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Any
from collections import deque
import threading


@dataclass
class MetricsSnapshot:
    """Point-in-time snapshot of all metrics."""

    # Counters
    requests_total: int = 0
    requests_success: int = 0
    requests_failed: int = 0

    # Latency (milliseconds)
    latency_avg_ms: float = 0.0
    latency_p50_ms: float = 0.0
    latency_p95_ms: float = 0.0
    latency_p99_ms: float = 0.0
    latency_min_ms: float = 0.0
    latency_max_ms: float = 0.0

    # Pending entries
    pending_depth: int = 0
    pending_max_depth: int = 0

    # Worker lifecycle
    worker_spawns: int = 0
    worker_crashes: int = 0
    supervisor_state: str = "stopped"

    # Stream health
    orphan_replies: int = 0
    parse_errors: int = 0

    # Timestamp
    timestamp: float = field(default_factory=time.time)


class Metrics:
    """
    Thread-safe metrics collector for Bridge.

    Usage:
        metrics = Metrics()

        start = metrics.start_request("req-1")
        # ... await reply ...
        metrics.end_request(start, success=True)

        snapshot = metrics.snapshot()
        print(f"Avg latency: {snapshot.latency_avg_ms}ms")
    """

    def __init__(self, max_latency_samples: int = 1000):
        self.max_latency_samples = max_latency_samples

        # Counters (thread-safe via locks)
        self._lock = threading.Lock()
        self._requests_total = 0
        self._requests_success = 0
        self._requests_failed = 0

        self._pending_depth = 0
        self._pending_max_depth = 0

        self._worker_spawns = 0
        self._worker_crashes = 0
        self._supervisor_state = "stopped"

        self._orphan_replies = 0
        self._parse_errors = 0

        # Latency samples (circular buffer)
        self._latencies: deque = deque(maxlen=max_latency_samples)

    def start_request(self, request_id: str) -> float:
        """
        Start tracking a request.

        Returns start timestamp for later end_request() call.
        """
        with self._lock:
            self._requests_total += 1
            self._pending_depth += 1
            self._pending_max_depth = max(self._pending_max_depth, self._pending_depth)

        return time.perf_counter()

    def end_request(self, start_time: float, success: bool = True) -> float:
        """
        End tracking a request.

        Returns latency in milliseconds.
        """
        latency_ms = (time.perf_counter() - start_time) * 1000

        with self._lock:
            self._pending_depth -= 1

            if success:
                self._requests_success += 1
            else:
                self._requests_failed += 1

            self._latencies.append(latency_ms)

        return latency_ms

    def record_worker_spawn(self):
        with self._lock:
            self._worker_spawns += 1

    def record_worker_crash(self):
        with self._lock:
            self._worker_crashes += 1

    def record_supervisor_state(self, state: str):
        with self._lock:
            self._supervisor_state = state

    def record_orphan_reply(self):
        with self._lock:
            self._orphan_replies += 1

    def record_parse_error(self):
        with self._lock:
            self._parse_errors += 1

    def snapshot(self) -> MetricsSnapshot:
        """Get a point-in-time snapshot of all metrics."""
        with self._lock:
            latencies = list(self._latencies)

            # Calculate percentiles
            if latencies:
                sorted_latencies = sorted(latencies)
                n = len(sorted_latencies)
                p50_idx = int(n * 0.50)
                p95_idx = int(n * 0.95)
                p99_idx = int(n * 0.99)

                latency_avg = sum(latencies) / n
                latency_p50 = sorted_latencies[min(p50_idx, n - 1)]
                latency_p95 = sorted_latencies[min(p95_idx, n - 1)]
                latency_p99 = sorted_latencies[min(p99_idx, n - 1)]
                latency_min = sorted_latencies[0]
                latency_max = sorted_latencies[-1]
            else:
                latency_avg = latency_p50 = latency_p95 = latency_p99 = 0.0
                latency_min = latency_max = 0.0

            return MetricsSnapshot(
                requests_total=self._requests_total,
                requests_success=self._requests_success,
                requests_failed=self._requests_failed,
                latency_avg_ms=latency_avg,
                latency_p50_ms=latency_p50,
                latency_p95_ms=latency_p95,
                latency_p99_ms=latency_p99,
                latency_min_ms=latency_min,
                latency_max_ms=latency_max,
                pending_depth=self._pending_depth,
                pending_max_depth=self._pending_max_depth,
                worker_spawns=self._worker_spawns,
                worker_crashes=self._worker_crashes,
                supervisor_state=self._supervisor_state,
                orphan_replies=self._orphan_replies,
                parse_errors=self._parse_errors,
            )

    def reset(self):
        """Reset all metrics."""
        with self._lock:
            self._requests_total = 0
            self._requests_success = 0
            self._requests_failed = 0
            self._pending_depth = 0
            self._pending_max_depth = 0
            self._worker_spawns = 0
            self._worker_crashes = 0
            self._orphan_replies = 0
            self._parse_errors = 0
            self._latencies.clear()

    def to_dict(self) -> Dict[str, Any]:
        """Get metrics as a dictionary (for logging/serialization)."""
        snapshot = self.snapshot()
        return {
            "requests": {
                "total": snapshot.requests_total,
                "success": snapshot.requests_success,
                "failed": snapshot.requests_failed,
                "error_rate": (
                    snapshot.requests_failed / snapshot.requests_total
                    if snapshot.requests_total > 0
                    else 0.0
                ),
            },
            "latency_ms": {
                "avg": round(snapshot.latency_avg_ms, 2),
                "p50": round(snapshot.latency_p50_ms, 2),
                "p95": round(snapshot.latency_p95_ms, 2),
                "p99": round(snapshot.latency_p99_ms, 2),
                "min": round(snapshot.latency_min_ms, 2),
                "max": round(snapshot.latency_max_ms, 2),
            },
            "pending": {
                "depth": snapshot.pending_depth,
                "max_depth": snapshot.pending_max_depth,
            },
            "worker": {
                "spawns": snapshot.worker_spawns,
                "crashes": snapshot.worker_crashes,
                "state": snapshot.supervisor_state,
            },
            "stream": {
                "orphan_replies": snapshot.orphan_replies,
                "parse_errors": snapshot.parse_errors,
            },
        }
