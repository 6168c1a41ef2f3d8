"""
Tests for the metrics collector
"""
import pytest

from helpdesk_sla.services.metrics_service import MetricsCollector


@pytest.fixture
def collector() -> MetricsCollector:
    return MetricsCollector()


class TestMetricsCollector:
    """Tests for request and SLA metric recording."""

    def test_endpoint_ids_are_normalized(self, collector):
        collector.record_request("GET", "/api/v1/sla/tickets/123e4567-e89b-12d3-a456-426614174000", 200, 0.01)
        collector.record_request("GET", "/api/v1/sla/policies/42", 404, 0.02)

        output = collector.get_prometheus_metrics().decode()

        assert 'endpoint="/api/v1/sla/tickets/{id}"' in output
        assert 'endpoint="/api/v1/sla/policies/{id}"' in output

    def test_sla_cycle_recording(self, collector):
        collector.record_sla_cycle({"tickets_checked": 5, "errors_count": 2, "duration_seconds": 0.4})
        collector.record_sla_warning()
        collector.record_sla_escalation("assign")
        collector.record_sla_breach("resolution")
        collector.record_sla_skip()

        sla = collector.get_stats_summary()["sla"]
        assert sla["cycles"] == 1
        assert sla["tickets_checked"] == 5
        assert sla["ticket_errors"] == 2
        assert sla["warnings_fired"] == 1
        assert sla["escalations_fired"] == 1
        assert sla["breaches_detected"] == 1
        assert sla["cycles_skipped"] == 1

        output = collector.get_prometheus_metrics().decode()
        assert 'sla_escalations_fired_total{action="assign"} 1.0' in output
        assert 'sla_breaches_detected_total{breach_type="resolution"} 1.0' in output
        assert "sla_ticket_errors_total 2.0" in output

    def test_reset_stats(self, collector):
        collector.record_request("GET", "/health", 500, 0.1)
        collector.record_sla_warning()

        collector.reset_stats()

        summary = collector.get_stats_summary()
        assert summary["requests"]["total_requests"] == 0
        assert summary["sla"]["warnings_fired"] == 0
