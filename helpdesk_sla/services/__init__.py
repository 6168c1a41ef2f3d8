"""
SLA Services Module

Policy resolution, deadline and breach computation, monitoring and queries.
"""

from helpdesk_sla.services.sla_service import SlaService
from helpdesk_sla.services.sla_monitor import SlaMonitor
from helpdesk_sla.services.metrics_service import MetricsCollector, metrics_collector

__all__ = [
    "SlaService",
    "SlaMonitor",
    "MetricsCollector",
    "metrics_collector",
]
