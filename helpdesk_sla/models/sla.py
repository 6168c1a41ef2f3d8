from sqlalchemy import (
    Column, String, DateTime, ForeignKey, Integer, Enum as SQLEnum, Boolean, JSON, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
import enum
from helpdesk_sla.core.database import Base


class EscalationAction(str, enum.Enum):
    NOTIFY = "notify"
    ESCALATE = "escalate"
    ASSIGN = "assign"
    ALERT = "alert"


class NotifyChannel(str, enum.Enum):
    EMAIL = "email"
    TELEGRAM = "telegram"
    WEB = "web"


class BreachType(str, enum.Enum):
    RESPONSE = "response"
    RESOLUTION = "resolution"


class SlaEventKind(str, enum.Enum):
    WARNING = "warning"
    ESCALATION = "escalation"


# Targets (hours) applied to priorities omitted when a policy is created
DEFAULT_PRIORITY_RULES = {
    "low": {"response_time_hours": 48, "resolution_time_hours": 120, "enabled": True},
    "medium": {"response_time_hours": 24, "resolution_time_hours": 72, "enabled": True},
    "high": {"response_time_hours": 4, "resolution_time_hours": 24, "enabled": True},
    "urgent": {"response_time_hours": 1, "resolution_time_hours": 8, "enabled": True},
}


def default_priority_rules() -> dict:
    return {priority: dict(rule) for priority, rule in DEFAULT_PRIORITY_RULES.items()}


class SlaPolicy(Base):
    """SLA policy: per-priority targets, warnings and escalation levels."""
    __tablename__ = "sla_policies"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), unique=True, nullable=False)
    description = Column(Text)

    # Optional category scope (ticket category key)
    category = Column(String, index=True)

    # {"low": {"response_time_hours", "resolution_time_hours", "enabled"}, ...}
    priorities = Column(JSON, nullable=False, default=default_priority_rules)

    # Warnings
    warnings_enabled = Column(Boolean, default=True, nullable=False)

    # Automatic escalation
    auto_escalation_enabled = Column(Boolean, default=False, nullable=False)
    escalate_on_response_breach = Column(Boolean, default=False, nullable=False)
    escalate_on_resolution_breach = Column(Boolean, default=True, nullable=False)
    auto_escalation_level = Column(Integer, default=1, nullable=False)

    # Status
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_default = Column(Boolean, default=False, nullable=False, index=True)

    # Authorship
    created_by = Column(String)
    updated_by = Column(String)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    escalation_levels = relationship(
        "SlaEscalationLevel",
        back_populates="policy",
        cascade="all, delete-orphan",
        order_by="SlaEscalationLevel.level",
        lazy="selectin",
    )
    warning_levels = relationship(
        "SlaWarningLevel",
        back_populates="policy",
        cascade="all, delete-orphan",
        order_by="SlaWarningLevel.percentage",
        lazy="selectin",
    )


class SlaEscalationLevel(Base):
    """Percentage-triggered escalation step of a policy."""
    __tablename__ = "sla_escalation_levels"
    __table_args__ = (
        UniqueConstraint("policy_id", "level", name="uq_sla_escalation_levels_policy_level"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    policy_id = Column(String, ForeignKey("sla_policies.id", ondelete="CASCADE"), nullable=False, index=True)

    level = Column(Integer, nullable=False)  # 1-5
    name = Column(String(100), nullable=False)
    percentage_threshold = Column(Integer, nullable=False)  # 0-100
    action = Column(SQLEnum(EscalationAction), nullable=False, default=EscalationAction.NOTIFY)
    notify_users = Column(JSON, nullable=False, default=list)
    assign_to = Column(String)

    policy = relationship("SlaPolicy", back_populates="escalation_levels")


class SlaWarningLevel(Base):
    """Soft warning fired when a ticket has used a percentage of its time."""
    __tablename__ = "sla_warning_levels"
    __table_args__ = (
        UniqueConstraint("policy_id", "percentage", name="uq_sla_warning_levels_policy_percentage"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    policy_id = Column(String, ForeignKey("sla_policies.id", ondelete="CASCADE"), nullable=False, index=True)

    percentage = Column(Integer, nullable=False)  # 0-100
    notify_users = Column(JSON, nullable=False, default=list)
    notify_channels = Column(JSON, nullable=False, default=lambda: [NotifyChannel.WEB.value])

    policy = relationship("SlaPolicy", back_populates="warning_levels")


class SlaEvent(Base):
    """
    Append-only ledger of fired SLA warnings and escalations.

    The unique (ticket_id, kind, identifier) key guarantees a warning threshold
    or escalation level fires at most once per ticket.
    """
    __tablename__ = "sla_events"
    __table_args__ = (
        UniqueConstraint("ticket_id", "kind", "identifier", name="uq_sla_events_ticket_kind_identifier"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    ticket_id = Column(String, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)

    kind = Column(SQLEnum(SlaEventKind), nullable=False)
    identifier = Column(Integer, nullable=False)  # warning percentage or escalation level

    percentage = Column(Integer, nullable=False)  # time used when fired
    breach_type = Column(String)
    action = Column(String)
    notify_users = Column(JSON, nullable=False, default=list)
    notify_channels = Column(JSON, nullable=False, default=list)
    assigned_to = Column(String)
    reason = Column(Text)

    fired_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    ticket = relationship("Ticket", back_populates="sla_events")
