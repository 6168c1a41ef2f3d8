from sqlalchemy import Column, String, Boolean, DateTime, Float, ForeignKey, Enum as SQLEnum, Integer
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum
from helpdesk_sla.core.database import Base


class TicketPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"
    RESOLVED = "resolved"
    CLOSED = "closed"
    CANCELLED = "cancelled"


# SLA monitoring stops permanently once a ticket reaches one of these
TERMINAL_STATUSES = (
    TicketStatus.RESOLVED,
    TicketStatus.CLOSED,
    TicketStatus.CANCELLED,
)


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # Ticket info
    ticket_number = Column(String, unique=True, nullable=False, index=True)  # Human-readable ID
    title = Column(String, nullable=False)

    # Classification
    category = Column(String, index=True)
    priority = Column(SQLEnum(TicketPriority), nullable=False, default=TicketPriority.MEDIUM)
    status = Column(SQLEnum(TicketStatus), nullable=False, default=TicketStatus.OPEN, index=True)

    # SLA snapshot taken at policy assignment time
    sla_policy_id = Column(String, ForeignKey("sla_policies.id"), index=True)
    sla_priority = Column(String)
    sla_response_time_hours = Column(Float)
    sla_resolution_time_hours = Column(Float)
    due_date = Column(DateTime)

    # Lifecycle timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    first_response_at = Column(DateTime)
    resolved_at = Column(DateTime)
    closed_at = Column(DateTime)

    # Assignment
    assigned_to = Column(String, index=True)
    assigned_at = Column(DateTime)

    # Metrics (hours)
    response_time_hours = Column(Float)
    resolution_time_hours = Column(Float)
    escalation_count = Column(Integer, default=0, nullable=False)

    # Escalation / breach state
    escalation_level = Column(Integer)
    escalated_at = Column(DateTime)
    sla_breach_at = Column(DateTime)  # First detected breach

    is_deleted = Column(Boolean, default=False, nullable=False, index=True)

    # Relationships
    sla_events = relationship(
        "SlaEvent",
        back_populates="ticket",
        cascade="all, delete-orphan",
        order_by="SlaEvent.fired_at",
        lazy="selectin",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def sla_warnings_sent(self) -> list:
        """Warning thresholds already fired for this ticket, ascending."""
        from helpdesk_sla.models.sla import SlaEventKind
        return sorted(
            event.identifier for event in self.sla_events
            if event.kind == SlaEventKind.WARNING
        )

    @property
    def escalation_history(self) -> list:
        """Escalations already fired for this ticket, oldest first."""
        from helpdesk_sla.models.sla import SlaEventKind
        return [
            {
                "level": event.identifier,
                "action": event.action,
                "timestamp": event.fired_at,
                "percentage": event.percentage,
                "breach_type": event.breach_type,
                "assigned_to": event.assigned_to,
                "reason": event.reason,
            }
            for event in self.sla_events
            if event.kind == SlaEventKind.ESCALATION
        ]
