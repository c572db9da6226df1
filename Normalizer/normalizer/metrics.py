"""
Normalizer Metrics - Lightweight in-memory tracking.

Exposed on /metrics; nothing here does I/O.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List


@dataclass
class NormalizerMetrics:
    """
    Lightweight in-memory metrics collector.

    Counters per outcome, a rolling latency window per record and the last
    10 errors.
    """

    # Counters
    records_received: int = 0
    events_normalized: int = 0
    records_deleted: int = 0
    records_skipped: int = 0
    unknown_events: int = 0
    sink_writes_success: int = 0
    sink_writes_failed: int = 0
    sink_writes_filtered: int = 0
    redeliveries_requested: int = 0
    last_attempt_records: int = 0
    joins_matched: int = 0
    joins_unmatched: int = 0

    by_message_type: Dict[str, int] = field(default_factory=dict)

    # Latency tracking (rolling window, last 1000)
    processing_latencies_ms: List[float] = field(default_factory=list)

    # Errors (last 10 only)
    recent_errors: List[Dict] = field(default_factory=list)

    # Tracking
    start_time: float = field(default_factory=time.time)
    last_reset: float = field(default_factory=time.time)

    def record_received(self, message_type: str):
        self.records_received += 1
        self.by_message_type[message_type] = self.by_message_type.get(message_type, 0) + 1

    def record_normalized(self, unknown: bool):
        self.events_normalized += 1
        if unknown:
            self.unknown_events += 1

    def record_deleted(self):
        self.records_deleted += 1

    def record_skipped(self):
        self.records_skipped += 1

    def record_sink_write(self, success: bool, filtered: bool = False):
        if filtered:
            self.sink_writes_filtered += 1
        elif success:
            self.sink_writes_success += 1
        else:
            self.sink_writes_failed += 1

    def record_redelivery(self):
        self.redeliveries_requested += 1

    def record_last_attempt(self):
        self.last_attempt_records += 1

    def record_join(self, matched: bool):
        if matched:
            self.joins_matched += 1
        else:
            self.joins_unmatched += 1

    def record_latency(self, duration_ms: float):
        self.processing_latencies_ms.append(duration_ms)
        if len(self.processing_latencies_ms) > 1000:
            self.processing_latencies_ms.pop(0)

    def record_error(self, error_type: str, message: str, event_id: str = None):
        """Record error (keep last 10)."""
        error = {
            "time": datetime.utcnow().isoformat(),
            "type": error_type,
            "message": message,
            "event_id": event_id
        }
        self.recent_errors.append(error)
        if len(self.recent_errors) > 10:
            self.recent_errors.pop(0)

    def get_summary(self) -> Dict:
        elapsed = time.time() - self.last_reset

        summary = {
            "period_seconds": elapsed,
            "uptime_seconds": time.time() - self.start_time,
            "records_received": self.records_received,
            "events_normalized": self.events_normalized,
            "records_deleted": self.records_deleted,
            "records_skipped": self.records_skipped,
            "unknown_events": self.unknown_events,
            "unknown_rate": self.unknown_events / max(self.events_normalized, 1),
            "by_message_type": dict(self.by_message_type),

            "sink_writes_success": self.sink_writes_success,
            "sink_writes_failed": self.sink_writes_failed,
            "sink_writes_filtered": self.sink_writes_filtered,
            "write_success_rate": self.sink_writes_success / max(
                self.sink_writes_success + self.sink_writes_failed, 1
            ),

            "redeliveries_requested": self.redeliveries_requested,
            "last_attempt_records": self.last_attempt_records,
            "joins_matched": self.joins_matched,
            "joins_unmatched": self.joins_unmatched,

            "records_per_second": self.records_received / max(elapsed, 1),

            "error_count": len(self.recent_errors),
            "recent_errors": self.recent_errors.copy()
        }

        if self.processing_latencies_ms:
            sorted_latencies = sorted(self.processing_latencies_ms)
            n = len(sorted_latencies)
            summary["avg_latency_ms"] = sum(sorted_latencies) / n
            summary["p50_latency_ms"] = sorted_latencies[n // 2]
            summary["p95_latency_ms"] = sorted_latencies[int(n * 0.95)] if n > 20 else 0
        else:
            summary["avg_latency_ms"] = 0
            summary["p50_latency_ms"] = 0
            summary["p95_latency_ms"] = 0

        return summary

    def reset(self):
        """Reset counters for next period. Latencies and errors are rolling windows."""
        self.records_received = 0
        self.events_normalized = 0
        self.records_deleted = 0
        self.records_skipped = 0
        self.unknown_events = 0
        self.sink_writes_success = 0
        self.sink_writes_failed = 0
        self.sink_writes_filtered = 0
        self.redeliveries_requested = 0
        self.last_attempt_records = 0
        self.joins_matched = 0
        self.joins_unmatched = 0
        self.by_message_type = {}

        self.last_reset = time.time()


# Global singleton
_normalizer_metrics = NormalizerMetrics()


def get_metrics() -> NormalizerMetrics:
    """Get global metrics instance."""
    return _normalizer_metrics
