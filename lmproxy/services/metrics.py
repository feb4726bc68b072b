"""Request metrics for the proxy."""
import logging
import math
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List

logger = logging.getLogger(__name__)

# Most recent response times kept for percentile computation
MAX_SAMPLES = 1000


def percentile(sorted_values: List[float], p: float) -> float:
    """Nearest-rank percentile over an ascending list (0 when empty)."""
    if not sorted_values:
        return 0
    index = max(math.ceil(p / 100 * len(sorted_values)) - 1, 0)
    return sorted_values[index]


@dataclass
class RequestMetrics:
    """Request counters."""
    total: int = 0
    successful: int = 0
    failed: int = 0
    by_endpoint: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class ErrorMetrics:
    """Error counters by type (client_error / server_error)."""
    total: int = 0
    by_type: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


class MetricsCollector:
    """Collects request counts, response times and error counts."""

    def __init__(self):
        self._lock = threading.Lock()
        self._started = time.monotonic()
        self.requests = RequestMetrics()
        self.errors = ErrorMetrics()
        self.response_times: Deque[float] = deque(maxlen=MAX_SAMPLES)

    def record_request(self, endpoint: str, method: str) -> None:
        """Count an incoming request under ``"METHOD /path"``."""
        with self._lock:
            self.requests.total += 1
            self.requests.by_endpoint[f"{method} {endpoint}"] += 1

    def record_success(self, response_time_ms: float) -> None:
        with self._lock:
            self.requests.successful += 1
            self.response_times.append(response_time_ms)

    def record_error(self, error_type: str) -> None:
        with self._lock:
            self.requests.failed += 1
            self.errors.total += 1
            self.errors.by_type[error_type] += 1
        logger.debug(f"Recorded error: {error_type}")

    @property
    def uptime(self) -> float:
        """Seconds since the collector was created or reset."""
        return time.monotonic() - self._started

    def get_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics."""
        with self._lock:
            times = sorted(self.response_times)
            summary = {
                "requests": {
                    "total": self.requests.total,
                    "successful": self.requests.successful,
                    "failed": self.requests.failed,
                    "by_endpoint": dict(self.requests.by_endpoint),
                },
                "response_time": {
                    "average": sum(times) / len(times) if times else 0,
                    "min": times[0] if times else 0,
                    "max": times[-1] if times else 0,
                    "p50": percentile(times, 50),
                    "p95": percentile(times, 95),
                    "p99": percentile(times, 99),
                },
                "errors": {
                    "total": self.errors.total,
                    "by_type": dict(self.errors.by_type),
                },
            }
        summary["uptime"] = self.uptime
        summary["timestamp"] = datetime.now(timezone.utc).isoformat()
        return summary

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self.requests = RequestMetrics()
            self.errors = ErrorMetrics()
            self.response_times.clear()
            self._started = time.monotonic()
        logger.info("Metrics reset")
