"""In-process metrics collector.

Counters and gauges kept in memory and exported in the Prometheus
text exposition format.  Values are per process; with several gunicorn
workers each worker reports its own.
"""

from __future__ import annotations

import threading
import time

# Metric name -> HELP text for the series the service emits.
KNOWN_METRICS: dict[str, str] = {
    "certdesk_transitions_total": "Applied request status transitions",
    "certdesk_transition_rejections_total": "Transition requests refused by a precondition",
    "certdesk_generation_total": "Document generation outcomes",
    "certdesk_dispatch_total": "Notification dispatch outcomes",
    "certdesk_retry_attempts_total": "Retry queue delivery attempts",
    "certdesk_retry_exhausted_total": "Retry entries closed after the last allowed attempt",
    "certdesk_alerts_total": "Delivery alerts raised",
    "certdesk_bulk_items_total": "Bulk operation item outcomes",
    "certdesk_worker_errors_total": "Unexpected errors inside background workers",
    "certdesk_http_requests_total": "HTTP requests by method and status",
}


class MetricsCollector:
    """Thread-safe counter and gauge store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, tuple], int] = {}
        self._gauges: dict[tuple[str, tuple], float] = {}
        self._started = time.time()

    @staticmethod
    def _key(name: str, labels: dict | None) -> tuple[str, tuple]:
        return name, tuple(sorted((labels or {}).items()))

    def increment(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def set_gauge(self, name: str, value: float, labels: dict | None = None) -> None:
        with self._lock:
            self._gauges[self._key(name, labels)] = value

    def get(self, name: str, labels: dict | None = None) -> float:
        """Current value of a counter or gauge (0 if never touched)."""
        key = self._key(name, labels)
        with self._lock:
            if key in self._counters:
                return self._counters[key]
            return self._gauges.get(key, 0)

    def export(self) -> str:
        """All series in Prometheus text format."""
        out = [
            "# HELP certdesk_uptime_seconds Seconds since process start",
            "# TYPE certdesk_uptime_seconds gauge",
            f"certdesk_uptime_seconds {time.time() - self._started:.1f}",
        ]
        with self._lock:
            counters = sorted(self._counters.items())
            gauges = sorted(self._gauges.items())
        out.extend(self._render(counters, "counter"))
        out.extend(self._render(gauges, "gauge"))
        return "\n".join(out) + "\n"

    @staticmethod
    def _render(series: list, metric_type: str) -> list[str]:
        lines: list[str] = []
        current = None
        for (name, labels), value in series:
            if name != current:
                current = name
                if name in KNOWN_METRICS:
                    lines.append(f"# HELP {name} {KNOWN_METRICS[name]}")
                lines.append(f"# TYPE {name} {metric_type}")
            if labels:
                rendered = ",".join(f'{k}="{v}"' for k, v in labels)
                lines.append(f"{name}{{{rendered}}} {value}")
            else:
                lines.append(f"{name} {value}")
        return lines
