"""
Metrics Collection
==================
Thread-safe sink for request outcomes.

Every worker records into one MetricsCollector. The collector keeps the full
ordered result log plus an HDR histogram of latencies, and derives:

- LiveSnapshot: cumulative-to-date figures for the once-per-second display
- Summary: final statistics with percentile latencies

Percentiles come from the histogram (1ms - 60s range, 3 significant digits).
Latencies outside that range are clamped to the nearest bound.
"""

import threading
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from hdrh.histogram import HdrHistogram


@dataclass
class RequestOutcome:
    """Result of one executed request or scenario step."""
    scenario_name: Optional[str]  # None in simple mode
    latency_ms: int
    status_code: int  # 0 = transport-level failure
    error: Optional[str]
    request_start_timestamp: datetime
    request_end_timestamp: datetime

    @property
    def failed(self) -> bool:
        return bool(self.error)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["request_start_timestamp"] = self.request_start_timestamp.isoformat()
        data["request_end_timestamp"] = self.request_end_timestamp.isoformat()
        return data


@dataclass
class LiveSnapshot:
    """Cumulative statistics for live display."""
    current_rps: float = 0.0
    avg_latency_ms: float = 0.0
    error_count: int = 0
    total_requests: int = 0

    @property
    def error_percent(self) -> float:
        return (self.error_count / self.total_requests * 100) if self.total_requests > 0 else 0.0


@dataclass
class Summary:
    """Final run statistics."""
    total_requests: int
    successful_requests: int
    failed_requests: int
    total_duration_secs: float
    throughput_rps: float
    min_latency_ms: int
    max_latency_ms: int
    mean_latency_ms: float
    p50_latency_ms: int
    p90_latency_ms: int
    p95_latency_ms: int
    p99_latency_ms: int
    error_rate: float
    start_time: datetime
    end_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["start_time"] = self.start_time.isoformat()
        data["end_time"] = self.end_time.isoformat()
        return data


class MetricsCollector:
    """
    Aggregates RequestOutcomes from all workers.

    All state sits behind one lock; record() holds it for an append and a
    histogram update, readers hold it while computing their view.
    """

    LOWEST_LATENCY_MS = 1
    HIGHEST_LATENCY_MS = 60_000
    SIGNIFICANT_FIGURES = 3

    def __init__(self):
        self._lock = threading.Lock()
        self._results: List[RequestOutcome] = []
        self._histogram = HdrHistogram(
            self.LOWEST_LATENCY_MS,
            self.HIGHEST_LATENCY_MS,
            self.SIGNIFICANT_FIGURES,
        )
        self.start_time = datetime.now(timezone.utc)
        self._started = time.monotonic()

    def _clamp(self, latency_ms: float) -> int:
        return min(max(int(latency_ms), self.LOWEST_LATENCY_MS), self.HIGHEST_LATENCY_MS)

    def elapsed(self) -> float:
        """Seconds since the collector was created."""
        return time.monotonic() - self._started

    def record(self, outcome: RequestOutcome):
        """Store an outcome and add its latency to the histogram."""
        value = self._clamp(outcome.latency_ms)
        with self._lock:
            self._results.append(outcome)
            self._histogram.record_value(value)

    def live_snapshot(self) -> LiveSnapshot:
        """Cumulative rate, mean latency and error count over everything recorded so far."""
        with self._lock:
            total = len(self._results)
            if total == 0:
                return LiveSnapshot()
            error_count = sum(1 for r in self._results if r.error)
            latency_sum = sum(r.latency_ms for r in self._results)

        elapsed = self.elapsed()
        return LiveSnapshot(
            current_rps=total / elapsed if elapsed > 0 else 0.0,
            avg_latency_ms=latency_sum / total,
            error_count=error_count,
            total_requests=total,
        )

    def summary(self) -> Summary:
        """Final statistics. Safe to call with nothing recorded."""
        with self._lock:
            total = len(self._results)
            failed = sum(1 for r in self._results if r.error)
            if total > 0:
                h = self._histogram
                min_latency = h.get_min_value()
                max_latency = h.get_max_value()
                mean_latency = h.get_mean_value()
                p50 = h.get_value_at_percentile(50.0)
                p90 = h.get_value_at_percentile(90.0)
                p95 = h.get_value_at_percentile(95.0)
                p99 = h.get_value_at_percentile(99.0)
            else:
                min_latency = max_latency = p50 = p90 = p95 = p99 = 0
                mean_latency = 0.0

        duration = self.elapsed()
        end_time = datetime.now(timezone.utc)

        return Summary(
            total_requests=total,
            successful_requests=total - failed,
            failed_requests=failed,
            total_duration_secs=duration,
            throughput_rps=total / duration if duration > 0 else 0.0,
            min_latency_ms=min_latency,
            max_latency_ms=max_latency,
            mean_latency_ms=mean_latency,
            p50_latency_ms=p50,
            p90_latency_ms=p90,
            p95_latency_ms=p95,
            p99_latency_ms=p99,
            error_rate=(failed / total * 100) if total > 0 else 0.0,
            start_time=self.start_time,
            end_time=end_time,
        )

    def results(self) -> List[RequestOutcome]:
        """Copy of the ordered result log."""
        with self._lock:
            return list(self._results)
