"""
SLA Deadline Calculator and Breach Detector

Pure functions over a ticket and its effective policy. Nothing here touches the
database; callers persist whatever they decide to change.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from helpdesk_sla.models.sla import BreachType
from helpdesk_sla.models.ticket import Ticket
from helpdesk_sla.services.sla_policy import (
    PolicyConfig,
    PriorityRule,
    build_fallback_policy,
    get_rules_for_priority,
)

SECONDS_PER_HOUR = 3600


@dataclass(frozen=True)
class Deadlines:
    response_deadline: datetime
    resolution_deadline: datetime


@dataclass(frozen=True)
class BreachResult:
    is_breached: bool
    breach_type: Optional[str]
    percentage: int


def _hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_HOUR


def get_ticket_rules(ticket: Ticket, policy: Optional[PolicyConfig] = None) -> PriorityRule:
    """
    Get the SLA targets that apply to a ticket.

    The snapshot stored on the ticket wins; otherwise the policy rule for the
    ticket's priority is used (the built-in fallback when no policy is given).
    """
    if ticket.sla_response_time_hours and ticket.sla_resolution_time_hours:
        return PriorityRule(
            response_time_hours=ticket.sla_response_time_hours,
            resolution_time_hours=ticket.sla_resolution_time_hours,
        )
    return get_rules_for_priority(policy or build_fallback_policy(), ticket.priority)


def compute_deadlines(ticket: Ticket, policy: Optional[PolicyConfig] = None) -> Deadlines:
    rules = get_ticket_rules(ticket, policy)
    return Deadlines(
        response_deadline=ticket.created_at + timedelta(hours=rules.response_time_hours),
        resolution_deadline=ticket.created_at + timedelta(hours=rules.resolution_time_hours),
    )


def compute_elapsed_hours(ticket: Ticket, now: datetime) -> float:
    return max(0.0, _hours_between(ticket.created_at, now))


def percentage_of(elapsed_hours: float, resolution_time_hours: float) -> int:
    """Time used as an integer percentage, rounded half-up and clamped to 0-100."""
    if resolution_time_hours <= 0:
        return 100
    raw = elapsed_hours / resolution_time_hours * 100
    return max(0, min(100, math.floor(raw + 0.5)))


def termination_time(ticket: Ticket) -> Optional[datetime]:
    return ticket.resolved_at or ticket.closed_at


def _measured_until(ticket: Ticket, now: datetime) -> datetime:
    """The clock stops when a terminal ticket was resolved or closed."""
    if ticket.is_terminal:
        return min(termination_time(ticket) or now, now)
    return now


def compute_percentage(
    ticket: Ticket,
    now: datetime,
    policy: Optional[PolicyConfig] = None
) -> int:
    rules = get_ticket_rules(ticket, policy)
    return percentage_of(
        compute_elapsed_hours(ticket, _measured_until(ticket, now)),
        rules.resolution_time_hours,
    )


def check_breach(
    ticket: Ticket,
    now: datetime,
    policy: Optional[PolicyConfig] = None
) -> BreachResult:
    """
    Classify a ticket's SLA state at a point in time.

    A resolution breach takes precedence over a response breach; a response
    breach only applies while the ticket has no first response. Terminal
    tickets are never breached, and their percentage is frozen at the moment
    they were resolved or closed.

    Args:
        ticket: Ticket to check
        now: Evaluation time
        policy: Effective policy (only used when the ticket has no snapshot)

    Returns:
        BreachResult
    """
    rules = get_ticket_rules(ticket, policy)

    if ticket.is_terminal:
        percentage = compute_percentage(ticket, now, policy)
        return BreachResult(is_breached=False, breach_type=None, percentage=percentage)

    elapsed = compute_elapsed_hours(ticket, now)
    percentage = percentage_of(elapsed, rules.resolution_time_hours)

    if elapsed > rules.resolution_time_hours:
        return BreachResult(True, BreachType.RESOLUTION.value, percentage)

    if ticket.first_response_at is None and elapsed > rules.response_time_hours:
        return BreachResult(True, BreachType.RESPONSE.value, percentage)

    return BreachResult(False, None, percentage)


def snapshot_sla(ticket: Ticket, policy: PolicyConfig) -> PriorityRule:
    """
    Copy the policy targets for the ticket's priority onto the ticket.

    Also records the originating policy (unless it is the built-in fallback)
    and sets the due date to creation time plus the resolution target.
    """
    rules = get_rules_for_priority(policy, ticket.priority)
    ticket.sla_policy_id = None if policy.is_fallback else policy.id
    ticket.sla_priority = getattr(ticket.priority, "value", ticket.priority)
    ticket.sla_response_time_hours = rules.response_time_hours
    ticket.sla_resolution_time_hours = rules.resolution_time_hours
    ticket.due_date = ticket.created_at + timedelta(hours=rules.resolution_time_hours)
    return rules


def refresh_sla_metrics(ticket: Ticket) -> None:
    """Update response and resolution time (hours) from the ticket timestamps."""
    if ticket.first_response_at is not None:
        ticket.response_time_hours = round(
            _hours_between(ticket.created_at, ticket.first_response_at), 2
        )
    finished_at = termination_time(ticket)
    if finished_at is not None:
        ticket.resolution_time_hours = round(
            _hours_between(ticket.created_at, finished_at), 2
        )
