"""
SLA Jobs Module

Background jobs of the SLA engine.
"""

from helpdesk_sla.jobs.sla_batch import SlaJobScheduler, get_sla_scheduler

__all__ = [
    "SlaJobScheduler",
    "get_sla_scheduler",
]
