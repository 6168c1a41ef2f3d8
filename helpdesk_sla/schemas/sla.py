"""
SLA Schemas Module

Pydantic schemas for SLA policy management, ticket SLA status and monitor
reporting.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime
from typing import Optional, List, Dict, Any
from helpdesk_sla.models.sla import EscalationAction, NotifyChannel, DEFAULT_PRIORITY_RULES


# ============================================================================
# SLA Policy Schemas
# ============================================================================

class PriorityRuleSchema(BaseModel):
    """Response/resolution targets for one priority."""
    response_time_hours: float = Field(..., gt=0, description="Target first response time in hours")
    resolution_time_hours: float = Field(..., gt=0, description="Target resolution time in hours")
    enabled: bool = Field(True, description="Disabled rules fall back to 24h/72h")

    @model_validator(mode="after")
    def resolution_not_shorter_than_response(self):
        if self.resolution_time_hours < self.response_time_hours:
            raise ValueError("resolution_time_hours must not be shorter than response_time_hours")
        return self


def _default_rule(priority: str) -> PriorityRuleSchema:
    return PriorityRuleSchema(**DEFAULT_PRIORITY_RULES[priority])


class PriorityRulesSchema(BaseModel):
    """Per-priority targets; omitted priorities get the standard defaults."""
    low: PriorityRuleSchema = Field(default_factory=lambda: _default_rule("low"))
    medium: PriorityRuleSchema = Field(default_factory=lambda: _default_rule("medium"))
    high: PriorityRuleSchema = Field(default_factory=lambda: _default_rule("high"))
    urgent: PriorityRuleSchema = Field(default_factory=lambda: _default_rule("urgent"))


class EscalationLevelSchema(BaseModel):
    level: int = Field(..., ge=1, le=5, description="Escalation level (1-5)")
    name: str = Field(..., min_length=1, max_length=100)
    percentage_threshold: int = Field(..., ge=0, le=100, description="Percentage of resolution time used")
    action: EscalationAction = EscalationAction.NOTIFY
    notify_users: List[str] = Field(default_factory=list)
    assign_to: Optional[str] = Field(None, description="User to assign when action is 'assign'")

    class Config:
        from_attributes = True


class WarningLevelSchema(BaseModel):
    percentage: int = Field(..., ge=0, le=100)
    notify_users: List[str] = Field(default_factory=list)
    notify_channels: List[NotifyChannel] = Field(default_factory=lambda: [NotifyChannel.WEB])

    class Config:
        from_attributes = True


def _check_unique_levels(levels: Optional[List[EscalationLevelSchema]]):
    if levels is not None:
        numbers = [level.level for level in levels]
        if len(numbers) != len(set(numbers)):
            raise ValueError("Escalation level numbers must be unique")
    return levels


def _check_unique_warnings(levels: Optional[List[WarningLevelSchema]]):
    if levels is not None:
        percentages = [warning.percentage for warning in levels]
        if len(percentages) != len(set(percentages)):
            raise ValueError("Warning percentages must be unique")
    return levels


class SlaPolicyCreate(BaseModel):
    """Schema for creating a new SLA policy."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    category: Optional[str] = Field(None, description="Ticket category this policy applies to")
    priorities: PriorityRulesSchema = Field(default_factory=PriorityRulesSchema)
    escalation_levels: List[EscalationLevelSchema] = Field(default_factory=list)
    warnings_enabled: bool = True
    warning_levels: List[WarningLevelSchema] = Field(default_factory=list)
    auto_escalation_enabled: bool = False
    escalate_on_response_breach: bool = False
    escalate_on_resolution_breach: bool = True
    auto_escalation_level: int = Field(1, ge=1, le=5)
    is_active: bool = True
    is_default: bool = False
    created_by: Optional[str] = None

    @field_validator("escalation_levels")
    @classmethod
    def unique_level_numbers(cls, v):
        return _check_unique_levels(v)

    @field_validator("warning_levels")
    @classmethod
    def unique_warning_percentages(cls, v):
        return _check_unique_warnings(v)


class SlaPolicyUpdate(BaseModel):
    """Schema for updating an SLA policy. Level lists are replaced as a whole."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    category: Optional[str] = None
    priorities: Optional[PriorityRulesSchema] = None
    escalation_levels: Optional[List[EscalationLevelSchema]] = None
    warnings_enabled: Optional[bool] = None
    warning_levels: Optional[List[WarningLevelSchema]] = None
    auto_escalation_enabled: Optional[bool] = None
    escalate_on_response_breach: Optional[bool] = None
    escalate_on_resolution_breach: Optional[bool] = None
    auto_escalation_level: Optional[int] = Field(None, ge=1, le=5)
    is_active: Optional[bool] = None
    updated_by: Optional[str] = None

    @field_validator("escalation_levels")
    @classmethod
    def unique_level_numbers(cls, v):
        return _check_unique_levels(v)

    @field_validator("warning_levels")
    @classmethod
    def unique_warning_percentages(cls, v):
        return _check_unique_warnings(v)


class SlaPolicyResponse(BaseModel):
    """Schema for SLA policy response."""
    id: str
    name: str
    description: Optional[str]
    category: Optional[str]
    priorities: Dict[str, PriorityRuleSchema]
    escalation_levels: List[EscalationLevelSchema]
    warnings_enabled: bool
    warning_levels: List[WarningLevelSchema]
    auto_escalation_enabled: bool
    escalate_on_response_breach: bool
    escalate_on_resolution_breach: bool
    auto_escalation_level: int
    is_active: bool
    is_default: bool
    created_by: Optional[str]
    updated_by: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


# ============================================================================
# Ticket SLA Status Schemas
# ============================================================================

class SlaPolicySummary(BaseModel):
    id: str
    name: str
    is_fallback: bool


class EscalationHistoryEntry(BaseModel):
    level: int
    action: Optional[str]
    timestamp: datetime
    percentage: int
    breach_type: Optional[str]
    assigned_to: Optional[str]
    reason: Optional[str]


class TicketSlaStatusResponse(BaseModel):
    """Live SLA state of a single ticket."""
    ticket_id: str
    ticket_number: str
    status: str
    priority: str
    category: Optional[str]
    policy: SlaPolicySummary
    response_time_hours: float
    resolution_time_hours: float
    response_deadline: datetime
    resolution_deadline: datetime
    due_date: Optional[datetime]
    created_at: datetime
    first_response_at: Optional[datetime]
    resolved_at: Optional[datetime]
    closed_at: Optional[datetime]
    elapsed_hours: float
    percentage: int
    is_breached: bool
    breach_type: Optional[str]
    sla_breach_at: Optional[datetime]
    response_time_metric_hours: Optional[float]
    resolution_time_metric_hours: Optional[float]
    assigned_to: Optional[str]
    escalation_count: int
    escalation_level: Optional[int]
    escalated_at: Optional[datetime]
    sla_warnings_sent: List[int]
    escalation_history: List[EscalationHistoryEntry]


class SlaBreachItem(BaseModel):
    ticket_id: str
    ticket_number: str
    title: str
    priority: str
    status: str
    breach_type: str
    percentage: int
    sla_breach_at: Optional[datetime]
    escalation_level: Optional[int]
    assigned_to: Optional[str]


class SlaStatisticsResponse(BaseModel):
    period_days: int
    total_tickets: int
    open_tickets: int
    breached_tickets: int
    response_breaches: int
    resolution_breaches: int
    warned_tickets: int
    escalated_tickets: int
    breach_rate: float
    avg_response_time_hours: Optional[float]
    avg_resolution_time_hours: Optional[float]


# ============================================================================
# Monitor Schemas
# ============================================================================

class SlaCycleError(BaseModel):
    ticket_id: str
    error: str


class SlaCycleSummary(BaseModel):
    tickets_checked: int
    breaches_found: int
    warnings_sent: int
    escalations_performed: int
    errors_count: int
    errors: List[SlaCycleError]
    started_at: datetime
    finished_at: datetime
    duration_seconds: float


class SchedulerStatusResponse(BaseModel):
    running: bool
    busy: bool
    interval_seconds: int
    last_run: Optional[datetime]
    last_success: Optional[datetime]
    last_summary: Optional[Dict[str, Any]]
    run_count: int
    error_count: int
    skipped_count: int
    next_run_in_seconds: Optional[float]
    stale: bool
