"""
SLA Monitor

Runs one evaluation pass over every open ticket: resolves the policy, takes
the SLA snapshot when missing, detects breaches, fires pending warnings and
escalations into the sla_events ledger and refreshes the SLA metrics.

Each ticket is evaluated in its own session and committed on its own; a
failure on one ticket is rolled back, logged and counted without stopping the
pass. Notifications go out only after the ticket's commit succeeded.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from helpdesk_sla.core.config import settings
from helpdesk_sla.core.database import AsyncSessionLocal
from helpdesk_sla.core.exceptions import PersistenceError
from helpdesk_sla.models.sla import EscalationAction
from helpdesk_sla.models.ticket import TERMINAL_STATUSES, Ticket
from helpdesk_sla.services.metrics_service import metrics_collector
from helpdesk_sla.services.notification_dispatch import (
    ESCALATION_EVENT,
    WARNING_EVENT,
    NotificationDispatcher,
    SlaNotification,
    SseNotificationDispatcher,
)
from helpdesk_sla.services.policy_resolver import PolicyResolver, load_policies
from helpdesk_sla.services.sla_calculator import (
    BreachResult,
    check_breach,
    refresh_sla_metrics,
    snapshot_sla,
)
from helpdesk_sla.services.sla_policy import EscalationLevelConfig, PolicyConfig
from helpdesk_sla.services.warning_deduplicator import (
    WarningDeduplicator,
    pending_escalation,
    pending_warnings,
)

logger = logging.getLogger(__name__)


@dataclass
class TicketEvaluation:
    """What one evaluation changed on a ticket."""
    breach: BreachResult
    new_breach: bool = False
    snapshot_taken: bool = False
    warnings: List[int] = field(default_factory=list)
    escalation: Optional[EscalationLevelConfig] = None
    notifications: List[SlaNotification] = field(default_factory=list)


def evaluate_ticket(ticket: Ticket, policy: PolicyConfig, now: datetime) -> TicketEvaluation:
    """
    Apply one SLA evaluation to a loaded ticket.

    Mutates the ticket (snapshot, breach time, ledger rows, escalation state,
    metrics) but does not commit. Returns the notifications to send once the
    caller has persisted the changes.

    Args:
        ticket: Open ticket with its sla_events loaded
        policy: Effective policy for the ticket
        now: Evaluation time

    Returns:
        TicketEvaluation
    """
    snapshot_taken = False
    if not (ticket.sla_response_time_hours and ticket.sla_resolution_time_hours):
        snapshot_sla(ticket, policy)
        snapshot_taken = True

    breach = check_breach(ticket, now, policy)
    evaluation = TicketEvaluation(breach=breach, snapshot_taken=snapshot_taken)

    if breach.is_breached and ticket.sla_breach_at is None:
        ticket.sla_breach_at = now
        evaluation.new_breach = True

    ledger = WarningDeduplicator(ticket)

    for warning in pending_warnings(policy, breach.percentage, ledger.fired_warnings):
        ledger.record_warning(warning, breach.percentage, now)
        evaluation.warnings.append(warning.percentage)
        evaluation.notifications.append(SlaNotification(
            event_type=WARNING_EVENT,
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            percentage=breach.percentage,
            threshold=warning.percentage,
            notify_users=list(warning.notify_users),
            notify_channels=list(warning.notify_channels),
            breach_type=breach.breach_type,
            timestamp=now,
        ))

    level = pending_escalation(policy, breach.breach_type, breach.percentage, ledger.fired_levels)
    if level is not None:
        assigned_to = None
        if level.action == EscalationAction.ASSIGN.value and level.assign_to:
            ticket.assigned_to = level.assign_to
            ticket.assigned_at = now
            assigned_to = level.assign_to

        ticket.escalation_count = (ticket.escalation_count or 0) + 1
        ticket.escalation_level = level.level
        ticket.escalated_at = now
        ledger.record_escalation(level, breach.percentage, breach.breach_type, now, assigned_to)

        evaluation.escalation = level
        evaluation.notifications.append(SlaNotification(
            event_type=ESCALATION_EVENT,
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            percentage=breach.percentage,
            level=level.level,
            level_name=level.name,
            action=level.action,
            breach_type=breach.breach_type,
            notify_users=list(level.notify_users),
            assigned_to=assigned_to,
            timestamp=now,
        ))

    refresh_sla_metrics(ticket)
    return evaluation


class SlaMonitor:
    """Evaluates SLA state for all open tickets."""

    def __init__(
        self,
        session_factory=None,
        dispatcher: Optional[NotificationDispatcher] = None,
        concurrency: Optional[int] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.dispatcher = dispatcher or SseNotificationDispatcher()
        self.concurrency = max(1, concurrency or settings.SLA_MONITOR_CONCURRENCY)

    async def _load_open_ticket_ids(self) -> List[str]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(Ticket.id).where(
                    Ticket.status.notin_(TERMINAL_STATUSES),
                    Ticket.is_deleted == False,  # noqa: E712
                ).order_by(Ticket.created_at)
            )
            return list(result.scalars().all())

    async def _load_resolver(self) -> PolicyResolver:
        async with self.session_factory() as db:
            return PolicyResolver(await load_policies(db))

    async def process_ticket(
        self,
        ticket_id: str,
        resolver: PolicyResolver,
        now: datetime
    ) -> Optional[TicketEvaluation]:
        """
        Evaluate and persist one ticket.

        Returns:
            TicketEvaluation, or None if the ticket was closed or removed
            since the pass started

        Raises:
            PersistenceError: If the commit failed
            InvalidPolicyError: If the resolved policy is malformed
        """
        async with self.session_factory() as db:
            try:
                ticket = await db.get(Ticket, ticket_id)
                if ticket is None or ticket.is_deleted or ticket.is_terminal:
                    return None

                policy = resolver.resolve(ticket)
                evaluation = evaluate_ticket(ticket, policy, now)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise PersistenceError(
                    f"Failed to persist SLA state for ticket {ticket_id}: {e}",
                    {"ticket_id": ticket_id},
                ) from e
            except Exception:
                await db.rollback()
                raise

        self._after_commit(ticket, evaluation)
        return evaluation

    def _after_commit(self, ticket: Ticket, evaluation: TicketEvaluation):
        if evaluation.new_breach:
            metrics_collector.record_sla_breach(evaluation.breach.breach_type)
            logger.warning(
                f"SLA {evaluation.breach.breach_type} breach detected for ticket "
                f"{ticket.ticket_number} ({evaluation.breach.percentage}%)"
            )

        for _ in evaluation.warnings:
            metrics_collector.record_sla_warning()

        if evaluation.escalation is not None:
            metrics_collector.record_sla_escalation(evaluation.escalation.action)
            logger.warning(
                f"Ticket {ticket.ticket_number} escalated to level {evaluation.escalation.level} "
                f"({evaluation.escalation.name}, action={evaluation.escalation.action})"
            )

        for notification in evaluation.notifications:
            self.dispatcher.emit(notification)

    async def run_cycle(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Run one SLA evaluation pass over all open tickets.

        Args:
            now: Evaluation time (defaults to the current UTC time)

        Returns:
            Cycle summary with counters and per-ticket errors
        """
        started_at = datetime.utcnow()
        now = now or started_at

        ticket_ids = await self._load_open_ticket_ids()
        resolver = await self._load_resolver()

        summary = {
            "tickets_checked": 0,
            "breaches_found": 0,
            "warnings_sent": 0,
            "escalations_performed": 0,
            "errors_count": 0,
            "errors": [],
        }

        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(ticket_id: str):
            async with semaphore:
                try:
                    return ticket_id, await self.process_ticket(ticket_id, resolver, now), None
                except Exception as e:
                    logger.error(f"SLA evaluation failed for ticket {ticket_id}: {e}")
                    return ticket_id, None, e

        for ticket_id, evaluation, error in await asyncio.gather(
            *(guarded(ticket_id) for ticket_id in ticket_ids)
        ):
            if error is not None:
                summary["errors_count"] += 1
                summary["errors"].append({"ticket_id": ticket_id, "error": str(error)})
                continue
            if evaluation is None:
                continue

            summary["tickets_checked"] += 1
            if evaluation.breach.is_breached:
                summary["breaches_found"] += 1
            summary["warnings_sent"] += len(evaluation.warnings)
            if evaluation.escalation is not None:
                summary["escalations_performed"] += 1

        finished_at = datetime.utcnow()
        summary.update(
            started_at=started_at,
            finished_at=finished_at,
            duration_seconds=round((finished_at - started_at).total_seconds(), 3),
        )
        metrics_collector.record_sla_cycle(summary)

        logger.info(
            f"SLA cycle completed: checked={summary['tickets_checked']}, "
            f"breaches={summary['breaches_found']}, warnings={summary['warnings_sent']}, "
            f"escalations={summary['escalations_performed']}, errors={summary['errors_count']}, "
            f"duration={summary['duration_seconds']}s"
        )
        return summary
