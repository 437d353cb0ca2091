"""Live operational statistics for a server instance.

Tracks cumulative request counters, per-method/tool/resource/prompt
breakdowns and a bounded window of response-time samples. All mutation
happens under a single lock so the sample window is appended and trimmed
atomically.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from datetime import UTC, datetime
from typing import Any

# Maximum number of response-time samples kept for min/avg/max
MAX_TIMING_SAMPLES = 1000


def _get_timestamp() -> str:
    """Get current UTC timestamp in ISO 8601 format."""
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class StatsTracker:
    """Counters and rolling timing samples for one server instance.

    When disabled, every ``record_*`` call is a no-op.
    """

    def __init__(self, enabled: bool = True, max_samples: int = MAX_TIMING_SAMPLES) -> None:
        """Initialize the tracker.

        Args:
            enabled: Whether recording is active.
            max_samples: Capacity of the response-time window.

        Raises:
            ValueError: If max_samples is not positive.
        """
        if max_samples <= 0:
            raise ValueError("max_samples must be positive")

        self._enabled = enabled
        self._max_samples = max_samples
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._started_at_iso = _get_timestamp()
        self._init_counters()

    def _init_counters(self) -> None:
        self._total_requests = 0
        self._successful = 0
        self._failed = 0
        self._by_method: dict[str, dict[str, int]] = {}
        self._tools: dict[str, dict[str, Any]] = {}
        self._resources: dict[str, int] = {}
        self._prompts: dict[str, int] = {}
        self._errors_by_code: dict[int, int] = {}
        self._total_errors = 0
        self._last_error: dict[str, Any] | None = None
        self._last_request_at: str | None = None
        self._response_times: deque[float] = deque(maxlen=self._max_samples)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    @property
    def sample_count(self) -> int:
        """Number of response-time samples currently held."""
        with self._lock:
            return len(self._response_times)

    def record_request(
        self,
        method: str,
        duration_ms: float,
        success: bool,
        error_code: int | None = None,
    ) -> None:
        """Record one dispatched request.

        Args:
            method: JSON-RPC method name.
            duration_ms: Time spent dispatching, in milliseconds.
            success: Whether a result (not an error) was returned.
            error_code: JSON-RPC error code for failures.
        """
        if not self._enabled:
            return

        with self._lock:
            self._total_requests += 1
            entry = self._by_method.setdefault(method, {"count": 0, "errors": 0})
            entry["count"] += 1
            if success:
                self._successful += 1
            else:
                self._failed += 1
                entry["errors"] += 1
            # deque(maxlen) evicts the oldest sample on overflow
            self._response_times.append(float(duration_ms))
            self._last_request_at = _get_timestamp()

    def record_tool_invocation(self, tool_name: str, duration_ms: float, success: bool = True) -> None:
        """Record a tool call and its execution time."""
        if not self._enabled:
            return

        with self._lock:
            entry = self._tools.setdefault(
                tool_name,
                {"invocations": 0, "failures": 0, "total_time_ms": 0.0, "last_invoked_at": None},
            )
            entry["invocations"] += 1
            if not success:
                entry["failures"] += 1
            entry["total_time_ms"] += float(duration_ms)
            entry["last_invoked_at"] = _get_timestamp()

    def record_resource_read(self, uri: str) -> None:
        if not self._enabled:
            return

        with self._lock:
            self._resources[uri] = self._resources.get(uri, 0) + 1

    def record_prompt_generation(self, name: str) -> None:
        if not self._enabled:
            return

        with self._lock:
            self._prompts[name] = self._prompts.get(name, 0) + 1

    def record_error(self, code: int, message: str = "", method: str | None = None) -> None:
        """Record an error response.

        Args:
            code: JSON-RPC error code.
            message: Client-facing error message.
            method: Method that failed, when known.
        """
        if not self._enabled:
            return

        with self._lock:
            self._total_errors += 1
            self._errors_by_code[code] = self._errors_by_code.get(code, 0) + 1
            self._last_error = {
                "code": code,
                "message": message,
                "method": method,
                "timestamp": _get_timestamp(),
            }

    def _average(self) -> float:
        if not self._response_times:
            return 0.0
        return round(sum(self._response_times) / len(self._response_times), 3)

    def get_stats_summary(self) -> dict[str, Any]:
        """Lightweight snapshot suitable for frequent polling."""
        with self._lock:
            total = self._total_requests
            success_rate = round(self._successful / total * 100, 2) if total else 0.0
            return {
                "uptime_seconds": round(time.time() - self._started_at, 3),
                "total_requests": total,
                "success_rate": success_rate,
                "avg_response_time_ms": self._average(),
                "total_tool_invocations": sum(t["invocations"] for t in self._tools.values()),
                "total_resource_reads": sum(self._resources.values()),
                "total_prompt_generations": sum(self._prompts.values()),
                "total_errors": self._total_errors,
                "last_request_at": self._last_request_at,
            }

    def get_stats(self) -> dict[str, Any]:
        """Full breakdown of all counters."""
        with self._lock:
            samples = list(self._response_times)
            tools = {}
            for name, entry in self._tools.items():
                invocations = entry["invocations"]
                tools[name] = {
                    **entry,
                    "avg_time_ms": round(entry["total_time_ms"] / invocations, 3)
                    if invocations
                    else 0.0,
                }
            return {
                "enabled": self._enabled,
                "started_at": self._started_at_iso,
                "uptime_seconds": round(time.time() - self._started_at, 3),
                "last_request_at": self._last_request_at,
                "requests": {
                    "total": self._total_requests,
                    "successful": self._successful,
                    "failed": self._failed,
                    "by_method": {m: dict(v) for m, v in self._by_method.items()},
                },
                "response_times": {
                    "samples": len(samples),
                    "min_ms": min(samples) if samples else 0.0,
                    "max_ms": max(samples) if samples else 0.0,
                    "avg_ms": self._average(),
                },
                "tools": {
                    "total_invocations": sum(t["invocations"] for t in self._tools.values()),
                    "by_name": tools,
                },
                "resources": {
                    "total_reads": sum(self._resources.values()),
                    "by_uri": dict(self._resources),
                },
                "prompts": {
                    "total_generations": sum(self._prompts.values()),
                    "by_name": dict(self._prompts),
                },
                "errors": {
                    "total": self._total_errors,
                    "by_code": dict(self._errors_by_code),
                    "last_error": dict(self._last_error) if self._last_error else None,
                },
            }

    def reset(self) -> None:
        """Zero all counters and clear the timing window. Uptime is kept."""
        with self._lock:
            self._init_counters()
