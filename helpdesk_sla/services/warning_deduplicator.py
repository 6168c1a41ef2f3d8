"""
SLA Warning Deduplicator

Decides which warnings and escalations still have to fire for a ticket, given
what the sla_events ledger says has already fired.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Set

from helpdesk_sla.models.sla import BreachType, SlaEvent, SlaEventKind
from helpdesk_sla.models.ticket import Ticket
from helpdesk_sla.services.sla_policy import (
    EscalationLevelConfig,
    PolicyConfig,
    WarningLevelConfig,
    get_escalation_level,
)


def pending_warnings(
    policy: PolicyConfig,
    percentage: int,
    already_sent: Iterable[int]
) -> List[WarningLevelConfig]:
    """Warning levels reached at this percentage that have not fired yet, ascending."""
    if not policy.warnings_enabled:
        return []
    sent = set(already_sent)
    return sorted(
        (
            warning for warning in policy.warning_levels
            if warning.percentage <= percentage and warning.percentage not in sent
        ),
        key=lambda w: w.percentage,
    )


def pending_escalation(
    policy: PolicyConfig,
    breach_type: Optional[str],
    percentage: int,
    history: Iterable[int]
) -> Optional[EscalationLevelConfig]:
    """
    Escalation level to fire for this breach, if any.

    Only applies when auto escalation is enabled and configured for the
    breach type. Returns None when the reached level already fired.
    """
    auto = policy.auto_escalation
    if not auto.enabled or breach_type is None:
        return None
    if breach_type == BreachType.RESPONSE.value and not auto.on_response_breach:
        return None
    if breach_type == BreachType.RESOLUTION.value and not auto.on_resolution_breach:
        return None

    level = get_escalation_level(policy, percentage)
    if level is None or level.level in set(history):
        return None
    return level


class WarningDeduplicator:
    """Ledger view for a single ticket; records new events as they fire."""

    def __init__(self, ticket: Ticket):
        self.ticket = ticket

    def _identifiers(self, kind: SlaEventKind) -> Set[int]:
        return {event.identifier for event in self.ticket.sla_events if event.kind == kind}

    @property
    def fired_warnings(self) -> Set[int]:
        return self._identifiers(SlaEventKind.WARNING)

    @property
    def fired_levels(self) -> Set[int]:
        return self._identifiers(SlaEventKind.ESCALATION)

    def record_warning(
        self,
        warning: WarningLevelConfig,
        percentage: int,
        fired_at: datetime
    ) -> SlaEvent:
        event = SlaEvent(
            kind=SlaEventKind.WARNING,
            identifier=warning.percentage,
            percentage=percentage,
            notify_users=list(warning.notify_users),
            notify_channels=list(warning.notify_channels),
            fired_at=fired_at,
        )
        self.ticket.sla_events.append(event)
        return event

    def record_escalation(
        self,
        level: EscalationLevelConfig,
        percentage: int,
        breach_type: Optional[str],
        fired_at: datetime,
        assigned_to: Optional[str] = None,
    ) -> SlaEvent:
        event = SlaEvent(
            kind=SlaEventKind.ESCALATION,
            identifier=level.level,
            percentage=percentage,
            breach_type=breach_type,
            action=level.action,
            notify_users=list(level.notify_users),
            notify_channels=[],
            assigned_to=assigned_to,
            reason=f"SLA {breach_type} breach at {percentage}%: {level.name}",
            fired_at=fired_at,
        )
        self.ticket.sla_events.append(event)
        return event
