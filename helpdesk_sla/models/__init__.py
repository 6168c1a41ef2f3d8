from helpdesk_sla.core.database import Base
from helpdesk_sla.models.ticket import Ticket, TicketPriority, TicketStatus, TERMINAL_STATUSES
from helpdesk_sla.models.sla import (
    SlaPolicy,
    SlaEscalationLevel,
    SlaWarningLevel,
    SlaEvent,
    SlaEventKind,
    EscalationAction,
    NotifyChannel,
    BreachType,
)

__all__ = [
    "Base",
    "Ticket",
    "TicketPriority",
    "TicketStatus",
    "TERMINAL_STATUSES",
    "SlaPolicy",
    "SlaEscalationLevel",
    "SlaWarningLevel",
    "SlaEvent",
    "SlaEventKind",
    "EscalationAction",
    "NotifyChannel",
    "BreachType",
]
