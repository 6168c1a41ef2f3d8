"""
Prometheus metrics for the SLA engine.

Tracks HTTP traffic and SLA monitor activity (cycles, warnings, escalations,
breaches, per-ticket errors). Collectors live on a dedicated registry so the
module can be imported more than once in a process without clashing.
"""

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from helpdesk_sla.core.config import settings

logger = logging.getLogger(__name__)


# Histogram buckets for response times (in seconds)
RESPONSE_TIME_BUCKETS = (
    0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0
)

# Histogram buckets for SLA cycle durations (in seconds)
SLA_CYCLE_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)


@dataclass
class RequestStats:
    """Statistics for a single endpoint."""
    total_requests: int = 0
    total_errors: int = 0
    total_duration_seconds: float = 0.0
    max_duration_seconds: float = 0.0
    status_codes: Dict[int, int] = field(default_factory=lambda: defaultdict(int))
    last_request_time: Optional[datetime] = None

    def record(self, duration_seconds: float, status_code: int):
        self.total_requests += 1
        self.total_duration_seconds += duration_seconds
        self.max_duration_seconds = max(self.max_duration_seconds, duration_seconds)
        self.status_codes[status_code] += 1
        self.last_request_time = datetime.utcnow()

        if status_code >= 500:
            self.total_errors += 1

    @property
    def avg_duration_seconds(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.total_duration_seconds / self.total_requests

    @property
    def error_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.total_errors / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "total_errors": self.total_errors,
            "error_rate": round(self.error_rate, 4),
            "avg_duration_ms": round(self.avg_duration_seconds * 1000, 2),
            "max_duration_ms": round(self.max_duration_seconds * 1000, 2),
            "status_codes": dict(self.status_codes),
            "last_request_time": self.last_request_time.isoformat() if self.last_request_time else None
        }


@dataclass
class SlaStats:
    """Running totals of SLA monitor activity."""
    cycles: int = 0
    cycles_skipped: int = 0
    tickets_checked: int = 0
    warnings_fired: int = 0
    escalations_fired: int = 0
    breaches_detected: int = 0
    ticket_errors: int = 0
    last_cycle_duration_seconds: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


class MetricsCollector:
    """
    Collects and exports application metrics.

    Provides Prometheus text export plus a JSON summary for the stats endpoint.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self._lock = threading.Lock()
        self._start_time = datetime.utcnow()
        self.registry = registry or CollectorRegistry()

        self._endpoint_stats: Dict[str, RequestStats] = defaultdict(RequestStats)
        self._global_stats = RequestStats()
        self._sla_stats = SlaStats()

        self._init_prometheus_metrics()

    def _init_prometheus_metrics(self):
        self.app_info = Info(
            "helpdesk_sla_app",
            "SLA engine application information",
            registry=self.registry,
        )
        self.app_info.info({
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "app_name": settings.APP_NAME,
        })

        # HTTP
        self.request_counter = Counter(
            "http_requests_total",
            "Total number of HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry,
        )
        self.request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            buckets=RESPONSE_TIME_BUCKETS,
            registry=self.registry,
        )
        self.uptime_gauge = Gauge(
            "uptime_seconds",
            "Application uptime in seconds",
            registry=self.registry,
        )

        # SLA monitor
        self.sla_cycles = Counter(
            "sla_cycles_total",
            "Completed SLA monitor cycles",
            registry=self.registry,
        )
        self.sla_cycle_duration = Histogram(
            "sla_cycle_duration_seconds",
            "SLA monitor cycle duration in seconds",
            buckets=SLA_CYCLE_BUCKETS,
            registry=self.registry,
        )
        self.sla_warnings = Counter(
            "sla_warnings_fired_total",
            "SLA warnings fired",
            registry=self.registry,
        )
        self.sla_escalations = Counter(
            "sla_escalations_fired_total",
            "SLA escalations fired",
            ["action"],
            registry=self.registry,
        )
        self.sla_breaches = Counter(
            "sla_breaches_detected_total",
            "SLA breaches detected for the first time",
            ["breach_type"],
            registry=self.registry,
        )
        self.sla_ticket_errors = Counter(
            "sla_ticket_errors_total",
            "Tickets that failed SLA evaluation",
            registry=self.registry,
        )
        self.sla_cycles_skipped = Counter(
            "sla_cycles_skipped_total",
            "SLA cycles skipped because a previous one was still running",
            registry=self.registry,
        )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def record_request(
        self,
        method: str,
        endpoint: str,
        status_code: int,
        duration_seconds: float
    ):
        normalized_endpoint = self._normalize_endpoint(endpoint)

        with self._lock:
            self._global_stats.record(duration_seconds, status_code)
            self._endpoint_stats[normalized_endpoint].record(duration_seconds, status_code)

        self.request_counter.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code)
        ).inc()
        self.request_duration.labels(
            method=method,
            endpoint=normalized_endpoint
        ).observe(duration_seconds)

    def _normalize_endpoint(self, endpoint: str) -> str:
        """Replace ID-like path segments with a placeholder to bound label cardinality."""
        segments = [s for s in (endpoint or "").split("/") if s]
        normalized = ["{id}" if self._is_dynamic_segment(s) else s for s in segments]
        return "/" + "/".join(normalized) if normalized else "/"

    def _is_dynamic_segment(self, segment: str) -> bool:
        # UUID
        if len(segment) == 36 and segment.count("-") == 4:
            return True
        if segment.isdigit():
            return True
        return False

    # ------------------------------------------------------------------
    # SLA monitor
    # ------------------------------------------------------------------

    def record_sla_cycle(self, summary: Dict[str, Any]):
        duration = summary.get("duration_seconds") or 0.0
        with self._lock:
            self._sla_stats.cycles += 1
            self._sla_stats.tickets_checked += summary.get("tickets_checked", 0)
            self._sla_stats.ticket_errors += summary.get("errors_count", 0)
            self._sla_stats.last_cycle_duration_seconds = duration

        self.sla_cycles.inc()
        self.sla_cycle_duration.observe(duration)
        if summary.get("errors_count"):
            self.sla_ticket_errors.inc(summary["errors_count"])

    def record_sla_warning(self):
        with self._lock:
            self._sla_stats.warnings_fired += 1
        self.sla_warnings.inc()

    def record_sla_escalation(self, action: str):
        with self._lock:
            self._sla_stats.escalations_fired += 1
        self.sla_escalations.labels(action=action).inc()

    def record_sla_breach(self, breach_type: str):
        with self._lock:
            self._sla_stats.breaches_detected += 1
        self.sla_breaches.labels(breach_type=breach_type).inc()

    def record_sla_skip(self):
        with self._lock:
            self._sla_stats.cycles_skipped += 1
        self.sla_cycles_skipped.inc()

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def get_prometheus_metrics(self) -> bytes:
        """Generate Prometheus-format metrics output."""
        self.uptime_gauge.set((datetime.utcnow() - self._start_time).total_seconds())
        return generate_latest(self.registry)

    def get_prometheus_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def get_stats_summary(self) -> Dict[str, Any]:
        """JSON-serializable summary of request and SLA statistics."""
        with self._lock:
            uptime_seconds = (datetime.utcnow() - self._start_time).total_seconds()

            slowest_endpoints = sorted(
                [
                    {"endpoint": ep, **stats.to_dict()}
                    for ep, stats in self._endpoint_stats.items()
                ],
                key=lambda x: x["avg_duration_ms"],
                reverse=True
            )[:5]

            return {
                "application": {
                    "name": settings.APP_NAME,
                    "version": settings.APP_VERSION,
                    "environment": settings.ENVIRONMENT,
                    "uptime_seconds": round(uptime_seconds, 2),
                    "start_time": self._start_time.isoformat() + "Z"
                },
                "requests": self._global_stats.to_dict(),
                "slowest_endpoints": slowest_endpoints,
                "sla": self._sla_stats.to_dict(),
            }

    def reset_stats(self):
        """Reset internal statistics (for testing purposes)."""
        with self._lock:
            self._endpoint_stats.clear()
            self._global_stats = RequestStats()
            self._sla_stats = SlaStats()
            self._start_time = datetime.utcnow()


# Global metrics collector instance
metrics_collector = MetricsCollector()
